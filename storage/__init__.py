"""
Storage Package.

The persistence boundary of the deals pipeline.

Modules:
- database: Engine and session management
- models/: ORM models (deals, ingestion jobs)
- repositories/: Data access layer
"""

from storage.database import Database, DatabaseConfig

__all__ = ["Database", "DatabaseConfig"]
