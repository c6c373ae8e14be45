"""Database models for the prescreen service."""

from .audit import AuditAction, AuditLogEntry
from .base import Base, PortableJSON, PortableUUID, TimestampMixin
from .prescreen import (
    Batch,
    BatchStatus,
    Bureau,
    HardPull,
    Lead,
    LeadStatus,
    MatchStatus,
    Program,
    ProgramStatus,
    Result,
    Tier,
)

__all__ = [
    "Base",
    "PortableJSON",
    "PortableUUID",
    "TimestampMixin",
    "Program",
    "ProgramStatus",
    "Batch",
    "BatchStatus",
    "Lead",
    "LeadStatus",
    "Tier",
    "MatchStatus",
    "Result",
    "Bureau",
    "HardPull",
    "AuditLogEntry",
    "AuditAction",
]
