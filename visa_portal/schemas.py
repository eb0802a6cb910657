"""
Pydantic Schemas for the Visa Portal case service
=================================================

Input schemas accept the portal's camelCase payloads (``visaType``,
``intakeForm.generalInformation`` ...) as well as snake_case field names.
Intake data is persisted as snake_case JSON.

Case edits are explicit per-role commands:
- ClientCaseEdit: fields a client may change on their own draft case
- StaffCaseEdit: client fields plus assignment (status is unrestricted for staff)
"""

from typing import List, Optional, Dict, Any
from datetime import date, datetime
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from .db.models import (
    Case, Document, User, CaseNote, TimelineEntry, DocumentRequest,
    VisaType, CaseStatus, Priority, DocumentType, DocumentStatus, UserRole,
)


class PortalModel(BaseModel):
    """Base for payloads coming from the portal frontend"""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


# =============================================================================
# INTAKE FORM
# =============================================================================

class Address(PortalModel):
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = None


class GeneralInformation(PortalModel):
    full_legal_name: Optional[str] = None
    other_names: Optional[str] = None
    date_of_birth: Optional[str] = None
    birth_city_country: Optional[str] = None
    citizenship_countries: List[str] = Field(default_factory=list)
    education_level: Optional[str] = None
    gender: Optional[str] = None
    marital_status: Optional[str] = None
    address: Address = Field(default_factory=Address)
    phone_mobile: Optional[str] = None
    phone_other: Optional[str] = None
    email: Optional[str] = None
    preferred_contact_method: Optional[str] = None


class ImmigrationHistory(PortalModel):
    been_to_us: bool = Field(False, alias="beenToUS")
    last_entry_date: Optional[str] = None
    last_entry_place: Optional[str] = None
    manner_of_last_entry: Optional[str] = None
    class_of_admission: Optional[str] = None
    current_status: Optional[str] = None
    i94_number: Optional[str] = None


class PassportInformation(PortalModel):
    passport_country: Optional[str] = None
    passport_number: Optional[str] = None
    issued_date: Optional[str] = None
    expiration_date: Optional[str] = None
    place_of_issue: Optional[str] = None
    alien_number: Optional[str] = None
    ssn: Optional[str] = None


class CurrentEmployer(PortalModel):
    company_name: Optional[str] = None
    position: Optional[str] = None


class EducationEmployment(PortalModel):
    highest_education: Optional[str] = None
    current_employer: CurrentEmployer = Field(default_factory=CurrentEmployer)


class Consultation(PortalModel):
    purposes: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    how_heard: Optional[str] = None


class DocumentsProvided(PortalModel):
    """Client's declaration of which required documents they can supply (None = not answered)"""
    passport: Optional[bool] = None
    visas: Optional[bool] = None
    work_permits: Optional[bool] = None
    certificates: Optional[bool] = None
    prior_applications: Optional[bool] = None
    tax_financials: Optional[bool] = None


class Acknowledgment(PortalModel):
    agreed: bool = False


class IntakeForm(PortalModel):
    """Structured questionnaire captured from the client"""
    general_information: GeneralInformation = Field(default_factory=GeneralInformation)
    immigration_history: ImmigrationHistory = Field(default_factory=ImmigrationHistory)
    passport_information: PassportInformation = Field(default_factory=PassportInformation)
    education_employment: EducationEmployment = Field(default_factory=EducationEmployment)
    consultation: Consultation = Field(default_factory=Consultation)
    documents_provided: DocumentsProvided = Field(default_factory=DocumentsProvided)
    acknowledgment: Acknowledgment = Field(default_factory=Acknowledgment)


class FinancialInfo(PortalModel):
    employment_status: Optional[str] = None
    monthly_income: Optional[float] = None
    savings: Optional[float] = None


class ApplicationDetails(PortalModel):
    destination_country: Optional[str] = Field(None, min_length=2)
    purpose_of_visit: Optional[str] = None
    intended_date_of_entry: Optional[date] = None
    intended_length_of_stay: Optional[int] = Field(None, ge=1, le=365)
    accommodation_details: Optional[str] = None
    financial_info: Optional[FinancialInfo] = None


def dump_json(model: Optional[BaseModel]) -> Dict[str, Any]:
    """Serialize a nested schema for a JSON column"""
    if model is None:
        return {}
    return model.model_dump(mode="json", exclude_none=True)


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class CreateCaseRequest(PortalModel):
    """Request to open a case (client for themselves, admin on behalf of a client)"""
    visa_type: VisaType = Field(..., description="Visa category")
    application_details: Optional[ApplicationDetails] = None
    intake_form: Optional[IntakeForm] = None
    priority: Priority = Priority.MEDIUM
    client_id: Optional[str] = Field(None, description="Target client (admin only)")


class ClientCaseEdit(PortalModel):
    """Fields a client may change while the case is draft; status may only be set to 'submitted'"""
    visa_type: Optional[VisaType] = None
    application_details: Optional[ApplicationDetails] = None
    intake_form: Optional[IntakeForm] = None
    priority: Optional[Priority] = None
    status: Optional[CaseStatus] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "forbid"


class StaffCaseEdit(ClientCaseEdit):
    """Client fields plus assignment; any allowed status"""
    assigned_coordinator_id: Optional[str] = Field(None, alias="assignedCoordinator")
    assigned_manager_id: Optional[str] = Field(None, alias="assignedManager")


STAFF_ONLY_FIELDS = frozenset({
    "assigned_coordinator_id", "assignedCoordinator",
    "assigned_manager_id", "assignedManager",
})


class AddNoteRequest(BaseModel):
    content: str = Field(..., description="Note text")


class AssignManagerRequest(BaseModel):
    application_id: str
    manager_id: Optional[str] = None


class DocumentRequestCreate(BaseModel):
    application_id: str
    document_type: str
    message: Optional[str] = None


class UserEdit(PortalModel):
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None
    profile: Optional[Dict[str, Any]] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "ignore"


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class UserSummary(BaseModel):
    id: str
    name: str
    email: str
    role: Optional[UserRole] = None


class UserResponse(UserSummary):
    is_active: bool
    created_at: Optional[datetime] = None


class DocumentResponse(BaseModel):
    id: str
    file_name: str
    document_type: DocumentType
    status: DocumentStatus
    file_type: str
    file_size: Optional[int] = None
    uploaded_at: Optional[datetime] = None
    access_url: Optional[str] = None


class NoteResponse(BaseModel):
    id: int
    content: str
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None


class TimelineEntryResponse(BaseModel):
    status: CaseStatus
    updated_by: Optional[str] = None
    note: Optional[str] = None
    timestamp: Optional[datetime] = None


class DocumentRequestResponse(BaseModel):
    id: str
    application_id: str
    document_type: DocumentType
    message: str = ""
    created_by: Optional[UserSummary] = None
    created_at: Optional[datetime] = None
    fulfilled_at: Optional[datetime] = None


class CaseResponse(BaseModel):
    id: str
    case_number: str
    client: Optional[UserSummary] = None
    assigned_coordinator: Optional[UserSummary] = None
    assigned_manager: Optional[UserSummary] = None
    visa_type: VisaType
    status: CaseStatus
    priority: Priority
    application_details: Dict[str, Any] = Field(default_factory=dict)
    intake_form: Dict[str, Any] = Field(default_factory=dict)
    documents: List[DocumentResponse] = Field(default_factory=list)
    missing_documents: List[DocumentType] = Field(default_factory=list)
    notes: List[NoteResponse] = Field(default_factory=list)
    timeline: List[TimelineEntryResponse] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class CaseListResponse(BaseModel):
    applications: List[CaseResponse]
    pagination: Pagination


class ErrorResponse(BaseModel):
    """Error body returned for case service failures"""
    message: str
    missing_documents: Optional[List[str]] = Field(None, alias="missingDocuments")


class HealthResponse(BaseModel):
    status: str
    version: str
    timestamp: datetime


# =============================================================================
# SERIALIZERS
# =============================================================================

def user_summary(user: Optional[User]) -> Optional[UserSummary]:
    if user is None:
        return None
    return UserSummary(id=user.id, name=user.name, email=user.email, role=user.role)


def user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        role=user.role,
        is_active=user.is_active,
        created_at=user.created_at,
    )


def document_response(document: Document, access_url: Optional[str] = None) -> DocumentResponse:
    return DocumentResponse(
        id=document.id,
        file_name=document.file_name,
        document_type=document.document_type,
        status=document.status,
        file_type=document.file_type,
        file_size=document.file_size,
        uploaded_at=document.created_at,
        access_url=access_url,
    )


def _note_response(note: CaseNote) -> NoteResponse:
    return NoteResponse(
        id=note.id,
        content=note.content,
        created_by=note.created_by_id,
        created_at=note.created_at,
    )


def _timeline_response(entry: TimelineEntry) -> TimelineEntryResponse:
    return TimelineEntryResponse(
        status=entry.status,
        updated_by=entry.updated_by_id,
        note=entry.note,
        timestamp=entry.timestamp,
    )


def document_request_response(request: DocumentRequest) -> DocumentRequestResponse:
    return DocumentRequestResponse(
        id=request.id,
        application_id=request.case_id,
        document_type=request.document_type,
        message=request.message or "",
        created_by=user_summary(request.requested_by),
        created_at=request.created_at,
        fulfilled_at=request.fulfilled_at,
    )


def case_response(case: Case) -> CaseResponse:
    """Shape a Case row into the portal contract"""
    from .documents import missing_required_types

    return CaseResponse(
        id=case.id,
        case_number=case.case_number,
        client=user_summary(case.client),
        assigned_coordinator=user_summary(case.assigned_coordinator),
        assigned_manager=user_summary(case.assigned_manager),
        visa_type=case.visa_type,
        status=case.status,
        priority=case.priority,
        application_details=case.application_details or {},
        intake_form=case.intake_form or {},
        documents=[document_response(d) for d in case.documents],
        missing_documents=missing_required_types(case),
        notes=[_note_response(n) for n in case.notes],
        timeline=[_timeline_response(t) for t in case.timeline],
        created_at=case.created_at,
        updated_at=case.updated_at,
    )
