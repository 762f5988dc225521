"""
Storage Repositories Package.

Data access layer for the deals pipeline. Repositories wrap
SQLAlchemy errors in the exceptions defined in
storage.repositories.exceptions.

Repositories:
- DealRepository: deals persistence boundary
- JobRepository: persistent job queue rows
"""

from storage.repositories.base import BaseRepository
from storage.repositories.deals import UPDATABLE_FIELDS, DealRepository
from storage.repositories.exceptions import (
    ConnectionError,
    DuplicateRecordError,
    IntegrityError,
    QueryError,
    RecordNotFoundError,
    RepositoryException,
    TransactionError,
)
from storage.repositories.jobs import JobRepository

__all__ = [
    "BaseRepository",
    "DealRepository",
    "JobRepository",
    "UPDATABLE_FIELDS",
    "ConnectionError",
    "DuplicateRecordError",
    "IntegrityError",
    "QueryError",
    "RecordNotFoundError",
    "RepositoryException",
    "TransactionError",
]
