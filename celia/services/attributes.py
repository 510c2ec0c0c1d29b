"""
Color and size extraction for Zureo varieties.

Structured attributes are authoritative. When a variety has none, the
variety name is scanned for a size token and a known color word; those
results are flagged as inferred and may be wrong.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple

COLOR_ATTRIBUTE_NAMES = ('color', 'colour')
SIZE_ATTRIBUTE_NAMES = ('talle', 'size', 'talla')

SIZE_TOKEN = re.compile(r'^(?:xs|s|m|l|xl|xxl|\d{1,3})$')

COLOR_WORDS = frozenset({
    # Spanish
    'negro', 'negra', 'blanco', 'blanca', 'rojo', 'roja', 'azul', 'verde',
    'amarillo', 'amarilla', 'gris', 'rosa', 'rosado', 'rosada', 'marron',
    'marrón', 'beige', 'celeste', 'violeta', 'lila', 'naranja', 'bordo',
    'bordó', 'crema', 'fucsia', 'dorado', 'dorada', 'plateado', 'plateada',
    'turquesa', 'coral', 'camel', 'natural', 'arena', 'marino', 'oliva',
    # English
    'black', 'white', 'red', 'blue', 'green', 'yellow', 'grey', 'gray',
    'pink', 'brown', 'purple', 'orange', 'navy', 'cream', 'gold', 'silver',
})

# Split on anything that is not a letter or digit (accented letters included)
_TOKEN_SPLIT = re.compile(r'[^\w]+|_+')


@dataclass(frozen=True)
class VarietyAttributes:
    color: Optional[str] = None
    size: Optional[str] = None
    inferred: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {'color': self.color, 'size': self.size, 'inferred': self.inferred}


def _attribute_pair(attribute: Dict[str, Any]) -> Tuple[str, Any]:
    """Zureo sends {atributo, valor}; {name, value} and {color: 'rojo'} are accepted as well"""
    if 'atributo' not in attribute and 'name' not in attribute and len(attribute) == 1:
        return next(iter(attribute.items()))
    name = attribute.get('atributo', attribute.get('name'))
    value = attribute.get('valor', attribute.get('value'))
    return (str(name or ''), value)


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def extract_structured(attributes: Iterable[Dict[str, Any]]) -> Tuple[Optional[str], Optional[str]]:
    """Read color and size from a variety's attribute list; last match wins"""
    color = None
    size = None
    for attribute in attributes or []:
        if not isinstance(attribute, dict):
            continue
        name, value = _attribute_pair(attribute)
        name = name.lower()
        value = _clean(value)
        if value is None:
            continue
        if any(key in name for key in COLOR_ATTRIBUTE_NAMES):
            color = value
        elif any(key in name for key in SIZE_ATTRIBUTE_NAMES):
            size = value
    return color, size


def tokenize(text: str):
    return [token for token in _TOKEN_SPLIT.split(text.lower()) if token]


def infer_size(tokens) -> Optional[str]:
    """
    Size token from a lowercased name.

    A token right after 'talle'/'talla'/'size' wins, otherwise the last
    size-looking token.
    """
    for i, token in enumerate(tokens[:-1]):
        if token in SIZE_ATTRIBUTE_NAMES and SIZE_TOKEN.match(tokens[i + 1]):
            return tokens[i + 1]

    matches = [token for token in tokens if SIZE_TOKEN.match(token)]
    return matches[-1] if matches else None


def infer_color(tokens) -> Optional[str]:
    for token in tokens:
        if token in COLOR_WORDS:
            return token
    return None


def extract_attributes(variety: Dict[str, Any]) -> VarietyAttributes:
    """
    Extract color and size from a Zureo variety.

    Structured values keep their source casing. Inferred values are
    lowercase. None means unknown, not absent.
    """
    color, size = extract_structured(variety.get('atributos') or variety.get('attributes') or [])
    if color is not None or size is not None:
        return VarietyAttributes(color=color, size=size, inferred=False)

    name = _clean(variety.get('nombre') or variety.get('name'))
    if not name:
        return VarietyAttributes()

    tokens = tokenize(name)
    color = infer_color(tokens)
    size = infer_size(tokens)
    return VarietyAttributes(
        color=color,
        size=size,
        inferred=color is not None or size is not None
    )
