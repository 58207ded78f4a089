"""
Service modules for the pipeline scheduler.
"""

from .repository import MemoryRepository, PostgresRepository, Repository
from .access_service import AccessService
from .storage_service import DbStorage, StorageService
from .email_service import EmailService

__all__ = [
    "Repository",
    "MemoryRepository",
    "PostgresRepository",
    "AccessService",
    "StorageService",
    "DbStorage",
    "EmailService",
]
