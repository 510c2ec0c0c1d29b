"""
Unit tests for Celia's variety attribute extraction.
"""

import pytest

from celia.services.attributes import (
    VarietyAttributes,
    extract_attributes,
    extract_structured,
    infer_size,
    tokenize,
)


@pytest.mark.unit
@pytest.mark.celia
class TestStructuredAttributes:
    """Attributes Zureo sends as {atributo, valor} pairs."""

    def test_color_and_size_from_attributes(self):
        variety = {
            'nombre': 'Negro M',
            'atributos': [
                {'atributo': 'Color', 'valor': 'Negro'},
                {'atributo': 'Talle', 'valor': 'M'}
            ]
        }

        result = extract_attributes(variety)

        assert result == VarietyAttributes(color='Negro', size='M', inferred=False)

    def test_attribute_names_match_by_substring(self):
        color, size = extract_structured([
            {'atributo': 'COLOUR principal', 'valor': 'Azul'},
            {'atributo': 'Talla EU', 'valor': '42'}
        ])

        assert color == 'Azul'
        assert size == '42'

    def test_last_matching_attribute_wins(self):
        color, _ = extract_structured([
            {'atributo': 'Color', 'valor': 'Rojo'},
            {'atributo': 'Color secundario', 'valor': 'Blanco'}
        ])

        assert color == 'Blanco'

    def test_name_value_spelling_is_accepted(self):
        result = extract_attributes({
            'name': 'Rojo 40',
            'attributes': [{'name': 'size', 'value': ' 40 '}]
        })

        assert result.size == '40'
        assert result.color is None
        assert result.inferred is False

    def test_blank_values_are_ignored(self):
        color, size = extract_structured([
            {'atributo': 'Color', 'valor': '   '},
            {'atributo': 'Talle', 'valor': None}
        ])

        assert color is None
        assert size is None


@pytest.mark.unit
@pytest.mark.celia
class TestInferredAttributes:
    """Fallback scan of the variety name."""

    def test_infers_from_name_when_no_attributes(self):
        result = extract_attributes({'nombre': 'Remera Básica Negro Talle M', 'atributos': []})

        assert result.color == 'negro'
        assert result.size == 'm'
        assert result.inferred is True

    def test_structured_value_blocks_fallback(self):
        """One structured value is enough; the name is not scanned"""
        result = extract_attributes({
            'nombre': 'Negro M',
            'atributos': [{'atributo': 'Talle', 'valor': 'L'}]
        })

        assert result.size == 'L'
        assert result.color is None
        assert result.inferred is False

    def test_size_after_keyword_beats_last_token(self):
        assert infer_size(tokenize('Size 38 Pack 2')) == '38'

    def test_last_size_token_without_keyword(self):
        assert infer_size(tokenize('Pack 2 Azul XL')) == 'xl'

    def test_long_numbers_are_not_sizes(self):
        assert infer_size(tokenize('Modelo 2024')) is None

    def test_english_color_words(self):
        result = extract_attributes({'nombre': 'Hoodie Navy'})

        assert result.color == 'navy'
        assert result.inferred is True

    def test_nothing_found(self):
        result = extract_attributes({'nombre': 'Edición Especial'})

        assert result == VarietyAttributes()

    def test_missing_name(self):
        assert extract_attributes({'atributos': None}) == VarietyAttributes()

    def test_extraction_is_idempotent(self):
        variety = {'nombre': 'Buzo Gris Talle 12', 'atributos': []}

        assert extract_attributes(variety) == extract_attributes(variety)
        assert variety == {'nombre': 'Buzo Gris Talle 12', 'atributos': []}

    def test_to_dict(self):
        assert VarietyAttributes('rojo', 's', True).to_dict() == {
            'color': 'rojo', 'size': 's', 'inferred': True
        }
