"""
Migration Units
===============
Versioned migration files, loaded by path as `<version>_<name>.py`.

Each file defines one `database.registry.Migration` subclass. Create
new ones with `db-migrate create --name="..."`; never renumber an
applied file.
"""
