"""Seed the store's category tree used to map Zureo product types."""

CATEGORY_TREE = {
    'Vestimenta': [
        'Remeras', 'Camisas', 'Blusas', 'Buzos', 'Canguros', 'Camperas', 'Chalecos',
        'Abrigos', 'Jeans', 'Polleras', 'Pantalones', 'Vestidos', 'Enteritos', 'Deportivos',
    ],
    'Calzado': ['Zapatillas', 'Zapatos', 'Botas', 'Sandalias', 'Ojotas'],
    'Accesorios': ['Carteras', 'Mochilas', 'Cinturones', 'Gorros', 'Anteojos', 'Relojes'],
}


def up(conn):
    """Insert any missing subcategories."""
    cursor = conn.cursor()
    for category, names in CATEGORY_TREE.items():
        for name in names:
            cursor.execute('''
                INSERT OR IGNORE INTO subcategories (name, slug, category)
                VALUES (?, ?, ?)
            ''', (name, name.lower(), category))


def down(conn):
    """Remove the seeded subcategories."""
    cursor = conn.cursor()
    for names in CATEGORY_TREE.values():
        cursor.executemany('DELETE FROM subcategories WHERE name = ?', [(n,) for n in names])
