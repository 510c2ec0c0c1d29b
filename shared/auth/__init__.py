"""
Shared authentication for bot-to-bot calls.

Usage:
    from shared.auth import api_key_required

    @api_bp.route('/sync/run', methods=['POST'])
    @api_key_required
    def run_sync():
        ...
"""

from shared.auth.bot_api import api_key_required, get_bot_api_key

__all__ = [
    'api_key_required',
    'get_bot_api_key',
]
