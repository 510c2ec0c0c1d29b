"""
Shared pytest fixtures for Celia tests.

Environment variables are set before any celia module is imported because
celia.config builds its singleton at import time.
"""
import os
import sys
import pytest
from pathlib import Path

# Add project root to Python path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

os.environ['TESTING'] = '1'
os.environ['SKIP_ENV_VALIDATION'] = '1'
os.environ['FLASK_SECRET_KEY'] = 'test-secret-key-for-testing-only'
os.environ['BOT_API_KEY'] = 'test-bot-api-key'
os.environ['ZUREO_USERNAME'] = 'test-user'
os.environ['ZUREO_PASSWORD'] = 'test-password'
os.environ['ZUREO_DOMAIN'] = 'test-domain'
os.environ['ZUREO_COMPANY_ID'] = '1'
os.environ.pop('ZUREO_API_URL', None)

ZUREO_URL = 'https://api.zureo.com'


# ==============================================================================
# Database Fixtures
# ==============================================================================

@pytest.fixture
def temp_db_path(tmp_path):
    """Path for a throwaway SQLite database."""
    return str(tmp_path / 'celia-test.db')


@pytest.fixture
def db(temp_db_path):
    """A migrated Celia database in a temp directory."""
    from celia.database.db import Database
    return Database(temp_db_path)


# ==============================================================================
# Zureo Fixtures
# ==============================================================================

@pytest.fixture
def login_payload():
    """A login response valid well into the future."""
    return {'token': 'test-token', 'valid_to': '2099-01-01T00:00:00Z'}


@pytest.fixture
def zureo_session():
    from celia.services.zureo_client import ZureoSession
    return ZureoSession(
        username='test-user',
        password='test-password',
        domain='test-domain',
        company_id='1',
        base_url=ZUREO_URL,
        timeout=5
    )


@pytest.fixture
def zureo_client(zureo_session):
    """A client with small pages and no real sleeping between pages."""
    from celia.services.zureo_client import ZureoClient
    return ZureoClient(
        zureo_session,
        page_size=2,
        timeout=5,
        page_delay=0,
        long_pause_every=0,
        long_pause=0,
        rate_limit_cooldown=1,
        max_rate_limit_retries=3,
        max_backoff=4
    )


# ==============================================================================
# Test Data Factories
# ==============================================================================

@pytest.fixture
def ab1_product():
    """Product AB1: two varieties, one out of stock."""
    return {
        'id': 1,
        'codigo': 'AB1',
        'nombre': 'Remera Básica',
        'descripcion_corta': 'Remera de algodón',
        'precio': 100,
        'impuesto': 1.22,
        'stock': 5,
        'tipo': {'id': 7, 'nombre': 'Remera'},
        'marca': {'id': 3, 'nombre': 'Acme'},
        'baja': False,
        'variedades': [
            {
                'id': 11,
                'nombre': 'Negro M',
                'stock': 3,
                'precio': None,
                'atributos': [
                    {'atributo': 'Color', 'valor': 'Negro'},
                    {'atributo': 'Talle', 'valor': 'M'}
                ]
            },
            {
                'id': 12,
                'nombre': 'Blanco L',
                'stock': 0,
                'precio': None,
                'atributos': [
                    {'atributo': 'Color', 'valor': 'Blanco'},
                    {'atributo': 'Talle', 'valor': 'L'}
                ]
            }
        ]
    }


@pytest.fixture
def rojo_product():
    """Product AB1 with 10% tax and attributes sent as single-key objects."""
    return {
        'id': 1,
        'codigo': 'AB1',
        'nombre': 'Remera',
        'precio': 100,
        'impuesto': 1.1,
        'stock': 5,
        'variedades': [
            {'id': 1, 'stock': 5, 'precio': None, 'atributos': [{'color': 'rojo'}, {'talle': 'S'}]},
            {'id': 2, 'stock': 0, 'precio': None, 'atributos': [{'color': 'azul'}, {'talle': 'M'}]},
        ]
    }


@pytest.fixture
def simple_product():
    """A product sold without varieties."""
    return {
        'id': 2,
        'codigo': 'GOR1',
        'nombre': 'Gorra Lisa',
        'precio': 50,
        'impuesto': None,
        'stock': 4,
        'tipo': {'id': 9, 'nombre': 'Gorros'},
        'marca': None,
        'variedades': []
    }
