"""
Seed Units
==========
Environment-scoped fixture data, loaded by path as `<order>_<name>.py`.

Each file defines one `database.registry.Seed` subclass declaring the
environments it runs in and whether a failure aborts the run.
"""
