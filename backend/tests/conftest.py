"""
Root conftest for all tests.

Test-specific fixtures are defined in:
- tests/unit/conftest.py - Unit tests with an in-memory Supabase client
- tests/integration/conftest.py - Integration tests with real local Supabase

The backend directory is put on sys.path by `pythonpath` in pyproject.toml.
"""
