"""
Shared error handlers for Flask bots.

Usage:
    from shared.error_handlers import register_error_handlers
    register_error_handlers(app, logger)

API requests (X-API-Key header, an /api/ path, or Accept: application/json)
get {'success': False, 'error': ...}; browsers get a plain HTML page.
"""

import logging
from flask import jsonify, request, render_template_string
from werkzeug.exceptions import HTTPException


ERROR_TEMPLATE = '''
<!DOCTYPE html>
<html>
<head>
    <title>{{ code }} - {{ title }}</title>
    <style>
        body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", sans-serif;
               max-width: 600px; margin: 80px auto; padding: 20px; text-align: center; }
        h1 { color: #991b1b; }
    </style>
</head>
<body>
    <h1>{{ code }} - {{ title }}</h1>
    <p>{{ message }}</p>
</body>
</html>
'''

MESSAGES = {
    400: 'The request was invalid or malformed.',
    401: 'Authentication is required to access this resource.',
    403: 'You do not have permission to access this resource.',
    404: 'The requested resource could not be found.',
    405: 'The method is not allowed for this endpoint.',
    409: 'The request conflicts with work already in progress.',
    429: 'Rate limit exceeded. Please try again later.',
    500: 'An unexpected error occurred. Please try again later.',
    502: 'The server received an invalid response from an upstream service.',
    503: 'The service is temporarily unavailable. Please try again later.',
}


def _wants_json():
    """Check if the request expects a JSON response."""
    if request.headers.get('X-API-Key') or request.path.startswith('/api/'):
        return True
    best = request.accept_mimetypes.best_match(['application/json', 'text/html'])
    return best == 'application/json'


def error_response(code, title, message):
    """Return a JSON or HTML error body depending on the caller."""
    if _wants_json():
        return jsonify({'success': False, 'error': message}), code
    return render_template_string(
        ERROR_TEMPLATE,
        code=code,
        title=title,
        message=message
    ), code


def register_error_handlers(app, logger=None):
    """
    Register standard error handlers on a Flask app.

    Args:
        app: Flask application instance
        logger: Optional logger instance. If not provided, uses module-level logger.
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    @app.errorhandler(HTTPException)
    def http_error(error):
        code = error.code or 500
        if code >= 500:
            logger.error(f"{code} {error.name}: {error.description}")
        return error_response(code, error.name, MESSAGES.get(code, error.description))

    @app.errorhandler(Exception)
    def unhandled_error(error):
        logger.error(f"Unhandled error: {error}", exc_info=True)
        return error_response(500, 'Internal Server Error', MESSAGES[500])
