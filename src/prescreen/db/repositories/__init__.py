"""Database repositories for clean data access."""

from .audit import AuditLogRepository
from .base import BaseRepository
from .batch import BatchRepository, ProgramRepository
from .lead import LeadFilter, LeadRepository

__all__ = [
    "BaseRepository",
    "AuditLogRepository",
    "BatchRepository",
    "ProgramRepository",
    "LeadFilter",
    "LeadRepository",
]
