"""Celia - Zureo catalog sync bot for the storefront."""
import os
import atexit
import logging

from flask import Flask, jsonify
from werkzeug.middleware.proxy_fix import ProxyFix

from celia.config import config
from celia.api.routes import api_bp
from celia.database.db import get_db
from celia.services.scheduler import scheduler_service
from celia.services.sync_service import get_sync_service
from shared.error_handlers import register_error_handlers

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = Flask(__name__)

# Trust proxy headers (nginx forwards X-Forwarded-Proto, X-Forwarded-Host, etc.)
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

app.secret_key = config.flask_secret_key

app.register_blueprint(api_bp, url_prefix='/api')

register_error_handlers(app, logger)


@app.route('/robots.txt')
def robots():
    """Robots.txt to block all search engine crawlers"""
    return """User-agent: *
Disallow: /
""", 200, {'Content-Type': 'text/plain'}


@app.route('/health')
def health():
    """
    Health check endpoint.

    Returns 200 while the app can reach its database. A failed last sync
    reports 'degraded' rather than an error.
    """
    try:
        sync_status = get_sync_service().get_status()
        row_count = get_db().get_catalog_count()

        status = 'healthy'
        if sync_status['status'] == 'failed':
            status = 'degraded'

        return jsonify({
            'status': status,
            'bot': config.name,
            'version': config.version,
            'catalog_rows': row_count,
            'scheduler_running': scheduler_service.is_running(),
            'zureo_sync': {
                'status': sync_status['status'],
                'last_synced_at': sync_status['last_synced_at'],
                'last_run_started_at': sync_status['last_run_started_at'],
                'last_run_finished_at': sync_status['last_run_finished_at'],
                'last_error': sync_status['last_error']
            }
        })
    except Exception as e:
        logger.exception("Health check error")
        return jsonify({
            'status': 'unhealthy',
            'bot': config.name,
            'version': config.version,
            'error': str(e)
        }), 500


@app.route('/info')
def info():
    """Bot information endpoint"""
    return jsonify({
        'name': config.name,
        'description': config.description,
        'version': config.version,
        'emoji': '🛍️',
        'endpoints': {
            'api': {
                'GET /api/intro': 'Bot introduction and capabilities',
                'POST /api/sync/run': 'Trigger a product sync from Zureo',
                'GET /api/sync/status': 'Get current sync status',
                'GET /api/sync/history': 'Get sync history',
                'GET /api/products': 'Get catalog rows by code (?code=XXX)',
                'GET /api/products/stats': 'Get catalog statistics',
                'GET|PUT|DELETE /api/overrides': 'Merchandising overrides',
                'POST /api/brands/sync': 'Sync brands from Zureo',
                'GET /api/zureo/connection': 'Check the Zureo login'
            },
            'system': {
                '/health': 'Health check with sync status',
                '/info': 'Bot information'
            }
        },
        'dependencies': []
    })


def start_scheduler():
    """Start the sync scheduler when enabled (never under tests)."""
    if not config.schedule_enabled or os.environ.get('TESTING'):
        return
    if not scheduler_service.is_running():
        scheduler_service.start()


def stop_scheduler():
    """Stop the scheduler on app shutdown."""
    if scheduler_service.is_running():
        scheduler_service.stop()


atexit.register(stop_scheduler)

# Runs on import for gunicorn, or when running directly
start_scheduler()


if __name__ == '__main__':
    print("\n" + "="*50)
    print("🛍️ Hi! I'm Celia")
    print("   Zureo Catalog Sync Bot")
    print(f"   Running on http://localhost:{config.server_port}")
    print("="*50 + "\n")

    app.run(
        host=config.server_host,
        port=config.server_port,
        debug=os.getenv('FLASK_DEBUG', 'False').lower() == 'true'
    )
