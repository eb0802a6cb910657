"""
Database Package - SQLAlchemy
=============================

Persistence layer for the immigration case portal.
"""

from .models import (
    Base,
    User, Case, CaseNote, TimelineEntry,
    Document, DocumentRequest, Automation,
    UserRole, STAFF_ROLES, VisaType, CaseStatus, Priority,
    DocumentType, DocumentStatus, CaseEvent,
)
from .session import get_db, init_db, get_engine, reset_engine

__all__ = [
    # Base
    "Base",
    # Identity
    "User",
    # Case Management
    "Case", "CaseNote", "TimelineEntry",
    # Documents
    "Document", "DocumentRequest",
    # Automation
    "Automation",
    # Enums
    "UserRole", "STAFF_ROLES", "VisaType", "CaseStatus", "Priority",
    "DocumentType", "DocumentStatus", "CaseEvent",
    # Session
    "get_db", "init_db", "get_engine", "reset_engine",
]
