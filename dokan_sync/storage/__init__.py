"""dokan_sync storage backends.

Local-first storage using SQLite.
"""

from .schema import SCHEMA_VERSION, validate_table_name
from .sqlite import LocalStore

__all__ = [
    "LocalStore",
    "SCHEMA_VERSION",
    "validate_table_name",
]
