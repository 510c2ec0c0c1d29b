import hmac
import os
from functools import wraps
from flask import request, jsonify


def get_bot_api_key() -> str:
    """Read the shared key per request so tests and reloads see env changes"""
    return os.getenv("BOT_API_KEY", "")


def api_key_required(view_func):
    """
    Decorator for internal bot-to-bot endpoints.

    - Expects X-API-Key header.
    - 401 if missing.
    - 403 if present but wrong.
    """
    @wraps(view_func)
    def wrapper(*args, **kwargs):
        expected = get_bot_api_key()
        header_key = request.headers.get("X-API-Key")

        if not expected:
            # Misconfigured service, fail closed
            return jsonify({"error": "BOT_API_KEY not configured"}), 500

        if not header_key:
            return jsonify({"error": "Missing API key"}), 401

        if not hmac.compare_digest(header_key, expected):
            return jsonify({"error": "Invalid API key"}), 403

        return view_func(*args, **kwargs)

    return wrapper
