"""
Record Flattener

Expands a Zureo product and its varieties into flat catalog rows, one per
stocked variety, or one for the whole product when it sells without
varieties.
"""

import json
import logging
import re
import unicodedata
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote

from celia.services.attributes import extract_attributes
from celia.services.errors import MalformedProductError
from celia.services.pricing import (
    DEFAULT_TAX_MULTIPLIER,
    compute_price,
    normalize_tax_multiplier,
    resolve_source_price,
)

logger = logging.getLogger(__name__)

PLACEHOLDER_IMAGE = "/placeholder.svg?height=400&width=400&query={query}"


@dataclass
class CatalogRow:
    """One sellable unit: a product, or a product + variety"""
    zureo_id: Optional[int]
    zureo_code: str
    zureo_variety_id: Optional[int]
    name: str
    slug: str
    description: str = ''
    variety_name: Optional[str] = None
    price: Optional[int] = None
    source_price: Optional[float] = None
    tax_multiplier: Optional[float] = None
    stock_quantity: float = 0
    category: Optional[str] = None
    subcategory: Optional[str] = None
    brand: Optional[str] = None
    color: Optional[str] = None
    size: Optional[str] = None
    attributes_inferred: bool = False
    image_url: Optional[str] = None
    is_featured: bool = False
    raw_payload: Optional[str] = None
    last_synced_at: Optional[str] = None

    @property
    def variant_key(self) -> str:
        return '' if self.zureo_variety_id is None else str(self.zureo_variety_id)

    @property
    def natural_key(self):
        return (self.zureo_code, self.variant_key)

    def to_record(self) -> Dict[str, Any]:
        record = asdict(self)
        record['variant_key'] = self.variant_key
        return record


@dataclass
class FlattenResult:
    rows: List[CatalogRow] = field(default_factory=list)
    products_seen: int = 0
    products_with_stock: int = 0
    malformed: int = 0
    discontinued: int = 0


def slugify(text: str) -> str:
    """Lowercase ASCII slug; runs of anything else collapse to one hyphen"""
    ascii_text = unicodedata.normalize('NFKD', text or '').encode('ascii', 'ignore').decode('ascii')
    return re.sub(r'[^a-z0-9]+', '-', ascii_text.lower()).strip('-')


def build_slug(name: str, variety_id=None) -> str:
    base = slugify(name) or 'producto'
    if variety_id is None:
        return base
    return f"{base}-{variety_id}"


def _to_number(value) -> float:
    if value is None or isinstance(value, bool):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    return int(number) if number.is_integer() else number


def _nested_name(value) -> Optional[str]:
    """Zureo nests labels like {'id': 3, 'nombre': 'Remeras'}"""
    if isinstance(value, dict):
        value = value.get('nombre')
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _placeholder_image(name: str) -> str:
    return PLACEHOLDER_IMAGE.format(query=quote(name or 'producto'))


def _as_float(value) -> Optional[float]:
    return None if value is None else float(value)


def flatten_product(
    product: Dict[str, Any],
    subcategory: Optional[str] = None,
    synced_at: Optional[str] = None,
    default_tax: float = DEFAULT_TAX_MULTIPLIER
) -> List[CatalogRow]:
    """
    Turn one Zureo product into zero or more catalog rows.

    Raises:
        MalformedProductError: the product has no code
    """
    if not isinstance(product, dict):
        raise MalformedProductError(f"Product is not an object: {product!r}")

    code = str(product.get('codigo') or '').strip()
    if not code:
        raise MalformedProductError(f"Product {product.get('id')} has no code")

    name = str(product.get('nombre') or '').strip() or 'Sin nombre'
    description = product.get('descripcion_larga') or product.get('descripcion_corta') or ''
    brand = _nested_name(product.get('marca'))
    tax = normalize_tax_multiplier(product.get('impuesto'), default_tax)
    raw_payload = json.dumps(product, ensure_ascii=False, default=str)

    common = {
        'zureo_id': product.get('id'),
        'zureo_code': code,
        'name': name,
        'description': description,
        'tax_multiplier': float(tax),
        'category': _nested_name(product.get('tipo')),
        'subcategory': subcategory,
        'brand': brand.upper() if brand else None,
        'image_url': _placeholder_image(name),
        'raw_payload': raw_payload,
        'last_synced_at': synced_at,
    }

    rows = []
    for variety in product.get('variedades') or []:
        if not isinstance(variety, dict):
            continue
        stock = _to_number(variety.get('stock'))
        if stock <= 0:
            continue
        variety_id = variety.get('id')
        if variety_id is None:
            logger.warning(f"Skipping stocked variety without id on product {code}")
            continue

        attributes = extract_attributes(variety)
        source = resolve_source_price(product.get('precio'), variety.get('precio'))
        rows.append(CatalogRow(
            zureo_variety_id=variety_id,
            slug=build_slug(name, variety_id),
            variety_name=variety.get('nombre'),
            price=compute_price(product.get('precio'), variety.get('precio'), tax),
            source_price=_as_float(source),
            stock_quantity=stock,
            color=attributes.color,
            size=attributes.size,
            attributes_inferred=attributes.inferred,
            **common
        ))

    if rows:
        return rows

    stock = _to_number(product.get('stock'))
    if stock <= 0:
        return []

    source = resolve_source_price(product.get('precio'))
    return [CatalogRow(
        zureo_variety_id=None,
        slug=build_slug(name),
        price=compute_price(product.get('precio'), None, tax),
        source_price=_as_float(source),
        stock_quantity=stock,
        **common
    )]


def flatten_products(
    products: Iterable[Dict[str, Any]],
    mapper=None,
    synced_at: Optional[str] = None,
    default_tax: float = DEFAULT_TAX_MULTIPLIER
) -> FlattenResult:
    """
    Flatten a whole Zureo catalog.

    Discontinued products ('baja') are dropped. Products that cannot be
    flattened are counted as malformed and skipped.
    """
    result = FlattenResult()

    for product in products:
        result.products_seen += 1

        if isinstance(product, dict) and product.get('baja'):
            result.discontinued += 1
            continue

        try:
            label = _nested_name(product.get('tipo')) if isinstance(product, dict) else None
            subcategory = mapper.map_to_subcategory(label) if mapper else None
            rows = flatten_product(product, subcategory, synced_at, default_tax)
        except MalformedProductError as e:
            logger.warning(f"Skipping malformed product: {e}")
            result.malformed += 1
            continue

        if rows:
            result.products_with_stock += 1
            result.rows.extend(rows)

    logger.info(
        f"Flattened {result.products_seen} products into {len(result.rows)} rows "
        f"({result.malformed} malformed, {result.discontinued} discontinued)"
    )
    return result
