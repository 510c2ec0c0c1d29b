"""
API Routes for Celia

REST API for the Zureo catalog sync:
- Sync management
- Catalog lookups
- Merchandising overrides
"""

from flask import Blueprint, jsonify, request
import logging

from celia.database.db import get_db, utc_now_iso
from celia.services.errors import SyncInProgressError
from celia.services.sync_service import get_sync_service
from shared.auth.bot_api import api_key_required

logger = logging.getLogger(__name__)

api_bp = Blueprint('api', __name__)

TRUE_VALUES = ('1', 'true', 'yes')


def _flag(name: str) -> bool:
    return request.args.get(name, '').strip().lower() in TRUE_VALUES


# ─────────────────────────────────────────────────────────────────────────────
# Bot Introduction
# ─────────────────────────────────────────────────────────────────────────────

@api_bp.route('/intro', methods=['GET'])
@api_key_required
def intro():
    """Return Celia's introduction"""
    return jsonify({
        'name': 'Celia',
        'role': 'Zureo Catalog Sync Bot',
        'description': (
            'I pull the product catalog from Zureo and keep the storefront catalog table '
            'in step with it: one row per stocked variety, with prices, colors, sizes and '
            'subcategories worked out for you.'
        ),
        'capabilities': [
            'Sync products from Zureo (full or incremental)',
            'Sync brands from Zureo',
            'Lookup catalog rows by product code',
            'Manage merchandising overrides',
            'Track sync status and history'
        ],
        'endpoints': {
            'POST /api/sync/run': 'Trigger a product sync (?force=true&strategy=upsert|replace&since_days=N)',
            'GET /api/sync/status': 'Get current sync status',
            'GET /api/sync/history': 'Get sync history',
            'GET /api/products': 'Get catalog rows for a product code (?code=XXX)',
            'GET /api/products/stats': 'Get catalog statistics',
            'GET /api/overrides': 'List merchandising overrides',
            'PUT /api/overrides': 'Create or update an override',
            'DELETE /api/overrides': 'Remove an override',
            'POST /api/brands/sync': 'Sync brands from Zureo',
            'GET /api/zureo/connection': 'Check the Zureo login'
        }
    })


# ─────────────────────────────────────────────────────────────────────────────
# Sync Endpoints
# ─────────────────────────────────────────────────────────────────────────────

@api_bp.route('/sync/run', methods=['GET', 'POST'])
@api_key_required
def run_sync():
    """
    Trigger a product sync from Zureo.

    Query parameters:
        force: Run even if the catalog is fresh
        strategy: 'upsert' (default) or 'replace'
        since_days: Only fetch products modified in the last N days

    Returns 409 if a sync is already running, 500 if the run failed.
    """
    since_days = request.args.get('since_days')
    if since_days is not None:
        try:
            since_days = int(since_days)
        except ValueError:
            return jsonify({'success': False, 'error': "'since_days' must be an integer"}), 400

    try:
        result = get_sync_service().run_product_sync(
            force=_flag('force'),
            strategy=request.args.get('strategy') or None,
            since_days=since_days
        )
    except ValueError as e:
        return jsonify({'success': False, 'error': str(e)}), 400
    except SyncInProgressError as e:
        return jsonify({
            'success': False,
            'error': str(e),
            'errorType': type(e).__name__,
            'syncTime': utc_now_iso()
        }), 409
    except Exception as e:
        logger.exception("Error running sync")
        return jsonify({
            'success': False,
            'error': str(e),
            'errorType': type(e).__name__,
            'syncTime': utc_now_iso()
        }), 500

    if not result['success']:
        return jsonify(result), 500
    return jsonify(result)


@api_bp.route('/sync/status', methods=['GET'])
@api_key_required
def get_sync_status():
    """Get current sync status"""
    try:
        return jsonify(get_sync_service().get_status())
    except Exception as e:
        logger.exception("Error getting sync status")
        return jsonify({'error': str(e)}), 500


@api_bp.route('/sync/history', methods=['GET'])
@api_key_required
def get_sync_history():
    """Get sync history"""
    try:
        limit = request.args.get('limit', 10, type=int)
        limit = max(1, min(limit, 100))

        history = get_sync_service().get_sync_history(limit)
        return jsonify({
            'history': history,
            'count': len(history)
        })
    except Exception as e:
        logger.exception("Error getting sync history")
        return jsonify({'error': str(e)}), 500


@api_bp.route('/zureo/connection', methods=['GET'])
@api_key_required
def test_zureo_connection():
    """Log in to Zureo with the configured credentials"""
    result = get_sync_service().test_connection()
    if not result['success']:
        return jsonify(result), 502
    return jsonify(result)


@api_bp.route('/brands/sync', methods=['POST'])
@api_key_required
def run_brand_sync():
    """Fetch brands from Zureo into the brands table"""
    try:
        result = get_sync_service().run_brand_sync()
    except SyncInProgressError as e:
        return jsonify({'success': False, 'error': str(e)}), 409

    if not result['success']:
        return jsonify(result), 500
    return jsonify(result)


# ─────────────────────────────────────────────────────────────────────────────
# Catalog Endpoints
# ─────────────────────────────────────────────────────────────────────────────

def format_catalog_row(row: dict) -> dict:
    """Format a catalog row for API response, overrides applied (no raw_payload)"""
    return {
        'id': row['id'],
        'zureo_id': row['zureo_id'],
        'zureo_code': row['zureo_code'],
        'zureo_variety_id': row['zureo_variety_id'],
        'name': row['display_name'],
        'variety_name': row['variety_name'],
        'slug': row['slug'],
        'description': row['description'],
        'price': row['display_price'],
        'source_price': row['source_price'],
        'tax_multiplier': row['tax_multiplier'],
        'stock_quantity': row['stock_quantity'],
        'category': row['category'],
        'subcategory': row['subcategory'],
        'brand': row['brand'],
        'color': row['color'],
        'size': row['size'],
        'attributes_inferred': bool(row['attributes_inferred']),
        'image_url': row['display_image_url'],
        'is_featured': bool(row['featured']),
        'is_active': bool(row['is_active']),
        'last_synced_at': row['last_synced_at'],
        'updated_at': row['updated_at']
    }


@api_bp.route('/products', methods=['GET'])
@api_key_required
def get_product():
    """
    Get the catalog rows for a product code.

    Query parameters:
        code (required): Zureo product code
        include_inactive (optional): Also return soft-deleted rows
    """
    try:
        code = request.args.get('code')
        if not code or not code.strip():
            return jsonify({'error': "Missing required parameter 'code'"}), 400

        rows = get_db().get_rows_by_code(code, active_only=not _flag('include_inactive'))
        if not rows:
            return jsonify({'error': f"Product not found: {code.strip()}"}), 404

        return jsonify({
            'code': code.strip(),
            'rows': [format_catalog_row(r) for r in rows],
            'count': len(rows)
        })

    except Exception as e:
        logger.exception(f"Error getting product {request.args.get('code')}")
        return jsonify({'error': str(e)}), 500


@api_bp.route('/products/stats', methods=['GET'])
@api_key_required
def get_product_stats():
    """Get catalog statistics"""
    try:
        db = get_db()
        return jsonify({
            **db.get_catalog_stats(),
            'inactive': db.get_catalog_count(active_only=False) - db.get_catalog_count(),
            'brands': db.get_brand_count()
        })
    except Exception as e:
        logger.exception("Error getting product stats")
        return jsonify({'error': str(e)}), 500


# ─────────────────────────────────────────────────────────────────────────────
# Merchandising Overrides
# ─────────────────────────────────────────────────────────────────────────────

@api_bp.route('/overrides', methods=['GET'])
@api_key_required
def list_overrides():
    """List overrides, optionally for one product code (?code=XXX)"""
    try:
        overrides = get_db().list_overrides(request.args.get('code'))
        return jsonify({
            'overrides': overrides,
            'count': len(overrides)
        })
    except Exception as e:
        logger.exception("Error listing overrides")
        return jsonify({'error': str(e)}), 500


@api_bp.route('/overrides', methods=['PUT'])
@api_key_required
def put_override():
    """
    Create or update an override.

    Request body:
        {
            "code": "AB1",
            "variety_id": 11,          (optional, omit for the whole product)
            "custom_name": "...",
            "custom_price": 999,
            "custom_image_url": "...",
            "is_featured": true
        }
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'error': 'Request body must be a JSON object'}), 400
    if not data.get('code'):
        return jsonify({'error': "Missing required field 'code'"}), 400

    # unknown keys are passed through so the database rejects them
    fields = {name: value for name, value in data.items() if name not in ('code', 'variety_id')}
    if 'custom_price' in fields and fields['custom_price'] is not None:
        try:
            fields['custom_price'] = int(fields['custom_price'])
        except (TypeError, ValueError):
            return jsonify({'error': "'custom_price' must be an integer"}), 400

    try:
        override = get_db().upsert_override(data['code'], data.get('variety_id'), **fields)
        return jsonify({'success': True, 'override': override})
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        logger.exception("Error saving override")
        return jsonify({'error': str(e)}), 500


@api_bp.route('/overrides', methods=['DELETE'])
@api_key_required
def delete_override():
    """Remove an override (?code=XXX&variety_id=N)"""
    code = request.args.get('code')
    if not code:
        return jsonify({'error': "Missing required parameter 'code'"}), 400

    variety_id = request.args.get('variety_id')
    if variety_id is not None:
        try:
            variety_id = int(variety_id)
        except ValueError:
            return jsonify({'error': "'variety_id' must be an integer"}), 400

    try:
        if not get_db().delete_override(code, variety_id):
            return jsonify({'error': 'Override not found'}), 404
        return jsonify({'success': True})
    except Exception as e:
        logger.exception("Error deleting override")
        return jsonify({'error': str(e)}), 500
