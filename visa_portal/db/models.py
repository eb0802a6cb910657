"""
SQLAlchemy Models for Database
==============================

Schema for the immigration case portal:
- Users with a single role (client / coordinator / manager / admin)
- Cases with intake data, assignment, status, notes and timeline
- Documents bound to a case and a fixed document-type taxonomy
- First-class document requests
- Automation rules fired on case lifecycle events

Supports both PostgreSQL and SQLite via SQLAlchemy.
"""

import enum
from datetime import datetime
from sqlalchemy import (
    Column, String, Text, Integer, Boolean, DateTime, Enum, ForeignKey, JSON, Index
)
from sqlalchemy.orm import relationship, declarative_base
import uuid

# Use JSON for cross-database compatibility (works with both PostgreSQL and SQLite)
JSONB = JSON

Base = declarative_base()


def generate_uuid():
    return str(uuid.uuid4())


# =============================================================================
# ENUMS
# =============================================================================

class UserRole(str, enum.Enum):
    """Organization roles, lowest privilege first"""
    CLIENT = "client"
    COORDINATOR = "coordinator"
    MANAGER = "manager"
    ADMIN = "admin"


STAFF_ROLES = frozenset({UserRole.COORDINATOR, UserRole.MANAGER, UserRole.ADMIN})


class VisaType(str, enum.Enum):
    TOURIST = "tourist"
    BUSINESS = "business"
    STUDENT = "student"
    WORK = "work"
    FAMILY = "family"
    OTHER = "other"


class CaseStatus(str, enum.Enum):
    """
    Case lifecycle status.

    draft -> submitted -> under_review -> processing -> approved | rejected -> completed

    approved/rejected are not terminal: completed follows approved.
    """
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    PROCESSING = "processing"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


class Priority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class DocumentType(str, enum.Enum):
    """Closed document taxonomy; only part of it is required for case progress"""
    PASSPORT = "passport"
    VISAS = "visas"
    WORK_PERMITS = "work_permits"
    CERTIFICATES = "certificates"
    PRIOR_APPLICATIONS = "prior_applications"
    TAX_FINANCIALS = "tax_financials"
    ID_PROOF = "id_proof"
    FINANCIAL = "financial"
    EDUCATIONAL = "educational"
    OTHER = "other"
    CLIENT_UPLOAD = "client_upload"


class DocumentStatus(str, enum.Enum):
    """Staff review status of an uploaded document"""
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class CaseEvent(str, enum.Enum):
    """Lifecycle events automations can subscribe to"""
    CASE_CREATED = "case_created"
    STATUS_CHANGE = "status_change"


# =============================================================================
# IDENTITY
# =============================================================================

class User(Base):
    """Portal account"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    role = Column(Enum(UserRole), default=UserRole.CLIENT, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    profile = Column(JSONB, default=dict)


# =============================================================================
# CASE MANAGEMENT
# =============================================================================

class Case(Base):
    """One client's immigration matter"""
    __tablename__ = "cases"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    case_number = Column(String(64), nullable=False, unique=True)
    client_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    assigned_coordinator_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_manager_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    visa_type = Column(Enum(VisaType), nullable=False)
    status = Column(Enum(CaseStatus), default=CaseStatus.DRAFT, nullable=False)
    priority = Column(Enum(Priority), default=Priority.MEDIUM, nullable=False)

    application_details = Column(JSONB, default=dict)
    intake_form = Column(JSONB, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_cases_client", "client_id"),
        Index("ix_cases_coordinator", "assigned_coordinator_id"),
        Index("ix_cases_manager", "assigned_manager_id"),
    )

    # Relationships
    client = relationship("User", foreign_keys=[client_id])
    assigned_coordinator = relationship("User", foreign_keys=[assigned_coordinator_id])
    assigned_manager = relationship("User", foreign_keys=[assigned_manager_id])
    documents = relationship(
        "Document", back_populates="case", cascade="all, delete-orphan",
        order_by=lambda: [Document.created_at, Document.id],
    )
    notes = relationship(
        "CaseNote", back_populates="case", cascade="all, delete-orphan",
        order_by="CaseNote.id",
    )
    timeline = relationship(
        "TimelineEntry", back_populates="case", cascade="all, delete-orphan",
        order_by="TimelineEntry.id",
    )
    document_requests = relationship(
        "DocumentRequest", back_populates="case", cascade="all, delete-orphan",
        order_by="DocumentRequest.created_at",
    )


class CaseNote(Base):
    """Free-text note on a case (append-only)"""
    __tablename__ = "case_notes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    created_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    case = relationship("Case", back_populates="notes")
    created_by = relationship("User", foreign_keys=[created_by_id])


class TimelineEntry(Base):
    """Status snapshot on a case (append-only audit log)"""
    __tablename__ = "case_timeline"

    id = Column(Integer, primary_key=True, autoincrement=True)
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False)
    status = Column(Enum(CaseStatus), nullable=False)
    updated_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    note = Column(Text, nullable=True)
    timestamp = Column(DateTime, default=datetime.utcnow)

    case = relationship("Case", back_populates="timeline")
    updated_by = relationship("User", foreign_keys=[updated_by_id])


class Document(Base):
    """Uploaded file bound to one case and one document type"""
    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False)
    document_type = Column(Enum(DocumentType), default=DocumentType.OTHER, nullable=False)
    status = Column(Enum(DocumentStatus), default=DocumentStatus.PENDING, nullable=False)

    file_name = Column(String(500), nullable=False)
    file_type = Column(String(100), nullable=False)
    file_size = Column(Integer, nullable=True)
    file_url = Column(Text, nullable=False)
    storage_id = Column(String(1000), nullable=False)
    storage_provider = Column(String(50), default="s3")

    uploaded_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_documents_case_type", "case_id", "document_type"),
    )

    case = relationship("Case", back_populates="documents")
    uploaded_by = relationship("User", foreign_keys=[uploaded_by_id])


class DocumentRequest(Base):
    """Staff request for a client to supply a document"""
    __tablename__ = "document_requests"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False)
    document_type = Column(Enum(DocumentType), nullable=False)
    message = Column(Text, nullable=True)
    requested_by_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    fulfilled_at = Column(DateTime, nullable=True)

    case = relationship("Case", back_populates="document_requests")
    requested_by = relationship("User", foreign_keys=[requested_by_id])


# =============================================================================
# AUTOMATION
# =============================================================================

class Automation(Base):
    """
    Stored automation rule.

    trigger_conditions: {"status": "<case status>"} narrows status_change rules
    actions: [{"type": "add_note", "content": "..."}, {"type": "set_priority", "priority": "high"}]
    """
    __tablename__ = "automations"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    trigger_type = Column(Enum(CaseEvent), nullable=False)
    trigger_conditions = Column(JSONB, default=dict)
    actions = Column(JSONB, default=list)
    created_at = Column(DateTime, default=datetime.utcnow)
