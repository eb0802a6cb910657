"""
Visa Portal Case API
====================

FastAPI endpoints for the immigration case portal.

Applications:
- GET    /api/applications                 - List visible cases
- GET    /api/applications/my-application  - Client's own case
- POST   /api/applications                 - Create case
- GET    /api/applications/{id}            - Get case
- PUT    /api/applications/{id}            - Edit case / change status
- DELETE /api/applications/{id}            - Delete case (admin)
- POST   /api/applications/{id}/notes      - Add note

Documents & assignment:
- POST   /api/documents/upload             - Upload or replace a document
- POST   /api/assignments                  - Assign manager
- GET    /api/assignments/coordinators     - Active coordinators
- GET    /api/assignments/workload         - Open cases per coordinator
- GET    /api/document-requests            - List document requests
- POST   /api/document-requests            - Request a document

Administration:
- GET    /api/users, PUT/DELETE /api/users/{id}, PATCH /api/users/{id}/status
- GET    /api/admin/stats
- GET    /health

The caller is identified by the `X-User-Id` header (credentials are checked upstream).

Run with:
    uvicorn visa_portal.api:app --host 0.0.0.0 --port 8000
"""

import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, APIRouter, Body, Depends, File, Form, Header, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .auth import AuthContext, get_auth_service
from .automation import AutomationTrigger, get_automation_trigger
from .config import get_settings
from .db.session import get_db, init_db
from .errors import CaseServiceError, ValidationFailed
from .schemas import (
    AddNoteRequest,
    AssignManagerRequest,
    CaseListResponse,
    DocumentRequestCreate,
    ErrorResponse,
    HealthResponse,
    Pagination,
    case_response,
    document_request_response,
    document_response,
    user_response,
    user_summary,
)
from .storage import FileStorage, get_storage
from . import assignments, cases, document_requests, documents, stats, users

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# =============================================================================
# FastAPI App
# =============================================================================

app = FastAPI(
    title="Visa Portal Case Service",
    description="Case management core for an immigration consultancy",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS - get allowed origins from environment, default to localhost for development
def _parse_cors_origins(raw: str) -> List[str]:
    origins: List[str] = []
    for item in raw.split(","):
        origin = item.strip().strip('"').strip("'").rstrip("/")
        if origin:
            origins.append(origin)
    return origins

_cors_raw = os.environ.get(
    "CORS_ALLOW_ORIGINS",
    "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173"
)
CORS_ALLOW_ORIGINS = _parse_cors_origins(_cors_raw)
logger.info(f"CORS allow origins: {CORS_ALLOW_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
)

router = APIRouter()


# =============================================================================
# Dependencies
# =============================================================================

async def get_current_user(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    db: Session = Depends(get_db),
) -> AuthContext:
    """Resolve the authenticated principal; inactive or unknown users are rejected"""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")

    auth = get_auth_service(db).get_auth_context(x_user_id)
    if not auth:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return auth


def get_file_storage() -> FileStorage:
    return get_storage()


def get_trigger(db: Session = Depends(get_db)) -> AutomationTrigger:
    return get_automation_trigger(db)


def _pagination(page: int, limit: int, total: int) -> Pagination:
    return Pagination(page=page, limit=limit, total=total, pages=cases.page_count(total, limit))


def _effective_limit(limit: Optional[int]) -> int:
    settings = get_settings()
    return min(max(int(limit or settings.default_page_limit), 1), settings.max_page_limit)


# =============================================================================
# Health
# =============================================================================

@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint"""
    settings = get_settings()
    return HealthResponse(
        status="healthy",
        version=settings.service_version,
        timestamp=datetime.now(),
    )


# =============================================================================
# Applications
# =============================================================================

@router.get("/applications", response_model=CaseListResponse, tags=["Applications"])
async def list_applications(
    status: Optional[str] = Query(None),
    priority: Optional[str] = Query(None),
    assigned_to: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    found, total = cases.list_cases(
        db, auth, status=status, priority=priority, assigned_to=assigned_to, page=page, limit=limit,
    )
    effective = _effective_limit(limit)
    return CaseListResponse(
        applications=[case_response(c) for c in found],
        pagination=_pagination(page, effective, total),
    )


@router.get("/applications/my-application", tags=["Applications"])
async def my_application(
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    case = cases.get_my_case(db, auth)
    return {"application": case_response(case) if case else None}


@router.post("/applications", status_code=201, tags=["Applications"])
async def create_application(
    payload: Dict[str, Any] = Body(...),
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
    trigger: AutomationTrigger = Depends(get_trigger),
):
    case = cases.create_case(db, auth, payload, trigger)
    return {"message": "Application created successfully", "application": case_response(case)}


@router.get("/applications/{case_id}", tags=["Applications"])
async def get_application(
    case_id: str,
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return {"application": case_response(cases.get_case(db, auth, case_id))}


@router.put("/applications/{case_id}", tags=["Applications"])
async def update_application(
    case_id: str,
    payload: Dict[str, Any] = Body(...),
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
    trigger: AutomationTrigger = Depends(get_trigger),
):
    case = cases.update_case(db, auth, case_id, payload, trigger)
    return {"message": "Application updated successfully", "application": case_response(case)}


@router.delete("/applications/{case_id}", tags=["Applications"])
async def delete_application(
    case_id: str,
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: FileStorage = Depends(get_file_storage),
):
    cases.delete_case(db, auth, case_id, storage)
    return {"message": "Application deleted successfully"}


@router.post("/applications/{case_id}/notes", status_code=201, tags=["Applications"])
async def add_application_note(
    case_id: str,
    request: AddNoteRequest,
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    note = cases.add_note(db, auth, case_id, request.content)
    return {
        "message": "Note added successfully",
        "note": {
            "id": note.id,
            "content": note.content,
            "created_by": note.created_by_id,
            "created_at": note.created_at,
        },
    }


# =============================================================================
# Documents
# =============================================================================

@router.post("/documents/upload", status_code=201, tags=["Documents"])
async def upload_document(
    application_id: str = Form(...),
    document_type: Optional[str] = Form(None),
    file: UploadFile = File(...),
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: FileStorage = Depends(get_file_storage),
):
    # one byte past the limit is enough for the size check to reject
    content = await file.read(get_settings().max_file_size_bytes + 1)
    result = documents.upload_document(
        db,
        auth,
        application_id,
        document_type,
        file.filename or "upload",
        file.content_type or "application/octet-stream",
        content,
        storage,
    )
    return {
        "message": "Document uploaded successfully",
        "document": document_response(result.document, result.access_url),
    }


# =============================================================================
# Assignments
# =============================================================================

@router.post("/assignments", tags=["Assignments"])
async def assign_application(
    request: AssignManagerRequest,
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    case = assignments.assign_manager(db, auth, request.application_id, request.manager_id)
    return {"message": "Application assigned successfully", "application": case_response(case)}


@router.get("/assignments/coordinators", tags=["Assignments"])
async def available_coordinators(
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    found = assignments.list_available_coordinators(db, auth)
    return {"coordinators": [user_summary(c) for c in found]}


@router.get("/assignments/workload", tags=["Assignments"])
async def workload(
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    rows = assignments.coordinator_workload(db, auth)
    return {
        "workload": [
            {"coordinator": user_summary(r["coordinator"]), "assigned_cases": r["assigned_cases"]}
            for r in rows
        ]
    }


# =============================================================================
# Document requests
# =============================================================================

@router.get("/document-requests", tags=["Document Requests"])
async def get_document_requests(
    application_id: Optional[str] = Query(None),
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    found = document_requests.list_document_requests(db, auth, application_id)
    return {"requests": [document_request_response(r) for r in found]}


@router.post("/document-requests", status_code=201, tags=["Document Requests"])
async def create_document_request(
    request: DocumentRequestCreate,
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    created = document_requests.request_document(
        db, auth, request.application_id, request.document_type, request.message,
    )
    return {"message": "Document request sent successfully", "request": document_request_response(created)}


# =============================================================================
# Users & admin
# =============================================================================

@router.get("/users", tags=["Users"])
async def get_users(
    role: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    found, total = users.list_users(db, auth, role=role, is_active=is_active, page=page, limit=limit)
    return {
        "users": [user_response(u) for u in found],
        "pagination": _pagination(page, _effective_limit(limit), total),
    }


@router.put("/users/{user_id}", tags=["Users"])
async def update_user(
    user_id: str,
    payload: Dict[str, Any] = Body(...),
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    user = users.update_user(db, auth, user_id, payload)
    return {"message": "User updated successfully", "user": user_response(user)}


@router.patch("/users/{user_id}/status", tags=["Users"])
async def toggle_user_status(
    user_id: str,
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    user = users.toggle_user_status(db, auth, user_id)
    state = "activated" if user.is_active else "deactivated"
    return {"message": f"User {state} successfully", "user": user_response(user)}


@router.delete("/users/{user_id}", tags=["Users"])
async def delete_user(
    user_id: str,
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    users.delete_user(db, auth, user_id)
    return {"message": "User deleted successfully"}


@router.get("/admin/stats", tags=["Admin"])
async def admin_stats(
    auth: AuthContext = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    data = stats.dashboard_stats(db, auth)
    data["recent_cases"] = [case_response(c) for c in data["recent_cases"]]
    return data


app.include_router(router, prefix="/api")


# =============================================================================
# Lifecycle & errors
# =============================================================================

@app.on_event("startup")
async def startup_event():
    """Initialize on startup"""
    settings = get_settings()
    logger.info(f"Starting Visa Portal Case Service v{settings.service_version}")
    logger.info(
        "Storage: bucket=%s endpoint=%s folder=%s",
        settings.storage_bucket,
        settings.storage_endpoint_url or "(aws default)",
        settings.storage_folder,
    )
    for warning in settings.validate_storage_config():
        logger.warning(warning)

    try:
        init_db()
    except Exception as e:
        logger.warning(f"Database initialization failed: {e}")


@app.exception_handler(CaseServiceError)
async def case_service_exception_handler(request: Request, exc: CaseServiceError):
    """Map domain failures to JSON responses"""
    if exc.status_code >= 500:
        logger.error(f"{exc.__class__.__name__} on {request.url.path}: {exc.message}")
    body = ErrorResponse(message=exc.message)
    if isinstance(exc, ValidationFailed) and exc.missing_documents:
        body.missing_documents = exc.missing_documents
    return JSONResponse(
        status_code=exc.status_code,
        content=body.model_dump(by_alias=True, exclude_none=True),
    )


@app.exception_handler(HTTPException)
async def api_http_exception_handler(request: Request, exc: HTTPException):
    """Same body shape as domain errors"""
    body = ErrorResponse(message=str(exc.detail))
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(by_alias=True, exclude_none=True))


# =============================================================================
# Main (for direct execution)
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "visa_portal.api:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
