"""
Case documents: required-document completeness and upload/replacement.

At most one current document exists per (case, document type). An upload of a
type already present replaces the previous document. The new file is stored
first; old documents are only removed once the store succeeded, so a storage
failure never leaves a case without the document it already had.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .auth import AuthContext
from .config import Settings, get_settings
from .db.models import Case, Document, DocumentRequest, DocumentType, DocumentStatus
from .errors import Forbidden, NotFound, StorageError, ValidationFailed
from .storage import FileStorage, build_case_folder

logger = logging.getLogger(__name__)


# Canonical order, used when reporting missing documents
REQUIRED_DOCUMENT_TYPES = (
    DocumentType.PASSPORT,
    DocumentType.VISAS,
    DocumentType.WORK_PERMITS,
    DocumentType.CERTIFICATES,
    DocumentType.PRIOR_APPLICATIONS,
    DocumentType.TAX_FINANCIALS,
)


def missing_required_types(case: Case) -> List[DocumentType]:
    """Required document types with no current document on the case"""
    present = {doc.document_type for doc in case.documents}
    return [t for t in REQUIRED_DOCUMENT_TYPES if t not in present]


def parse_document_type(value, default: Optional[DocumentType] = None) -> DocumentType:
    """Resolve a raw document type, raising ValidationFailed for unknown values"""
    if value is None or value == "":
        if default is None:
            raise ValidationFailed("Document type is required")
        return default
    try:
        return DocumentType(value)
    except ValueError:
        raise ValidationFailed(f"Invalid document type: {value}")


def client_can_provide(case: Case, document_type: DocumentType) -> bool:
    """
    False only when the client's intake form explicitly says they cannot
    supply this document type. Unanswered flags and non-required types pass.
    """
    intake = case.intake_form or {}
    provided = intake.get("documents_provided") or {}
    return provided.get(document_type.value) is not False


@dataclass
class UploadResult:
    document: Document
    access_url: Optional[str]


def _check_payload(data: bytes, content_type: str, settings: Settings) -> None:
    if not data:
        raise ValidationFailed("No file uploaded")
    if len(data) > settings.max_file_size_bytes:
        raise ValidationFailed(f"File too large (max {settings.max_file_size_bytes} bytes)")
    if content_type not in settings.allowed_file_type_list:
        raise ValidationFailed("Invalid file type. Only JPEG, PNG, GIF and PDF files are allowed.")


def discard_stored_file(storage: FileStorage, storage_id: str) -> None:
    try:
        storage.delete(storage_id)
    except StorageError as e:
        logger.warning(f"[documents] Could not delete stored file {storage_id}: {e.message}")


def access_url_for(storage: FileStorage, document: Document, settings: Optional[Settings] = None) -> Optional[str]:
    """Signed URL for a document, None when signing fails"""
    settings = settings or get_settings()
    try:
        return storage.signed_url(document.storage_id, settings.signed_url_ttl)
    except StorageError as e:
        logger.warning(f"[documents] Could not sign URL for document {document.id}: {e.message}")
        return None


def upload_document(
    db: Session,
    auth: AuthContext,
    case_id: str,
    document_type,
    file_name: str,
    content_type: str,
    data: bytes,
    storage: FileStorage,
    settings: Optional[Settings] = None,
) -> UploadResult:
    """
    Upload a document to a case, replacing any current document of the same type.

    Raises:
        ValidationFailed: unknown type, bad payload, or a type the client said they cannot provide
        NotFound: case does not exist
        Forbidden: caller is neither the case's client nor staff
        StorageError: the new file could not be stored (existing documents are kept)
    """
    settings = settings or get_settings()

    if not case_id:
        raise ValidationFailed("Application ID is required")
    doc_type = parse_document_type(document_type, default=DocumentType.CLIENT_UPLOAD)

    case = db.query(Case).filter(Case.id == case_id).first()
    if not case:
        raise NotFound("Application not found")

    is_owner = case.client_id == auth.user_id
    if not is_owner and not auth.is_staff:
        logger.warning(f"[documents] {auth.user_id} denied upload to case {case.id}")
        raise Forbidden("Access denied")

    if auth.is_client and not client_can_provide(case, doc_type):
        raise ValidationFailed(
            f"You indicated you cannot provide {doc_type.value}; update your intake form first"
        )

    _check_payload(data, content_type, settings)

    stored = storage.store(data, build_case_folder(case.id, settings), file_name, content_type)

    replaced = [doc for doc in case.documents if doc.document_type == doc_type]
    replaced_storage_ids = [doc.storage_id for doc in replaced]
    for doc in replaced:
        case.documents.remove(doc)

    document = Document(
        document_type=doc_type,
        status=DocumentStatus.PENDING,
        file_name=file_name or "upload",
        file_type=content_type,
        file_size=stored.size_bytes,
        file_url=stored.url,
        storage_id=stored.id,
        storage_provider=getattr(storage, "provider", "s3"),
        uploaded_by_id=auth.user_id,
        created_at=datetime.utcnow(),
    )
    case.documents.append(document)
    case.updated_at = datetime.utcnow()

    fulfilled = (
        db.query(DocumentRequest)
        .filter(
            DocumentRequest.case_id == case.id,
            DocumentRequest.document_type == doc_type,
            DocumentRequest.fulfilled_at.is_(None),
        )
        .all()
    )
    for request in fulfilled:
        request.fulfilled_at = datetime.utcnow()

    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.error(f"[documents] Commit failed for upload to case {case.id}, discarding {stored.id}")
        discard_stored_file(storage, stored.id)
        raise

    for storage_id in replaced_storage_ids:
        discard_stored_file(storage, storage_id)

    if replaced:
        logger.info(f"[documents] Replaced {len(replaced)} {doc_type.value} document(s) on case {case.id}")
    logger.info(f"[documents] Uploaded {doc_type.value} ({stored.size_bytes} bytes) to case {case.id}")

    return UploadResult(document=document, access_url=access_url_for(storage, document, settings))
