"""
Maps Zureo product type labels to the store's subcategories.
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, Optional

import yaml

logger = logging.getLogger(__name__)


def normalize_label(label: Optional[str]) -> str:
    if label is None:
        return ''
    return ' '.join(str(label).split()).lower()


def load_synonyms(path) -> Dict[str, str]:
    """
    Load the synonym table from YAML.

    The file maps each canonical subcategory to the labels Zureo uses for it:

        Remeras: [remera, remeras, camiseta]

    Returns a flat {normalized alias: canonical name} dict.
    """
    path = Path(path)
    if not path.exists():
        logger.warning(f"Synonyms file not found: {path}")
        return {}

    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}

    synonyms = {}
    for canonical, aliases in data.items():
        canonical = str(canonical).strip()
        synonyms[normalize_label(canonical)] = canonical
        if isinstance(aliases, str):
            aliases = [aliases]
        for alias in aliases or []:
            key = normalize_label(alias)
            if key in synonyms and synonyms[key] != canonical:
                logger.warning(
                    f"Synonym '{alias}' maps to both {synonyms[key]} and {canonical}; keeping {canonical}"
                )
            synonyms[key] = canonical

    return synonyms


class CategoryMapper:
    """
    Resolves a Zureo product type label to a canonical subcategory name.

    Exact matches against the store's subcategories win over the synonym
    table. Labels that match neither map to None.
    """

    def __init__(self, subcategories: Iterable[str], synonyms: Dict[str, str] = None):
        self._subcategories = {
            normalize_label(name): name for name in subcategories if name
        }
        self._synonyms = synonyms or {}

    def map_to_subcategory(self, label: Optional[str]) -> Optional[str]:
        key = normalize_label(label)
        if not key:
            return None

        if key in self._subcategories:
            return self._subcategories[key]

        return self._synonyms.get(key)
