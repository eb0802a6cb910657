"""
Document Tests
==============

Tests for required-document completeness and upload/replacement semantics.
"""

import pytest
from unittest.mock import patch

from sqlalchemy.exc import SQLAlchemyError

from visa_portal.db.models import Case, Document, DocumentRequest, DocumentType
from visa_portal.documents import (
    REQUIRED_DOCUMENT_TYPES, client_can_provide, missing_required_types, parse_document_type, upload_document,
)
from visa_portal.errors import Forbidden, NotFound, StorageError, ValidationFailed

from conftest import REQUIRED_TYPES


def _documents_of(db, case_id, doc_type):
    return db.query(Document).filter(Document.case_id == case_id, Document.document_type == doc_type).all()


class TestMissingRequiredTypes:

    def test_new_case_misses_all_in_canonical_order(self, make_case):
        assert [t.value for t in missing_required_types(make_case())] == REQUIRED_TYPES

    def test_optional_types_do_not_count(self, make_case, upload, auth):
        case = make_case()
        upload(auth["client"], case, "id_proof")
        upload(auth["client"], case, "financial")
        assert len(missing_required_types(case)) == len(REQUIRED_DOCUMENT_TYPES)

    def test_recomputed_after_each_upload(self, make_case, upload, auth):
        case = make_case()
        upload(auth["client"], case, "passport")
        upload(auth["client"], case, "tax_financials")
        assert [t.value for t in missing_required_types(case)] == [
            "visas", "work_permits", "certificates", "prior_applications",
        ]

    def test_complete_case_misses_nothing(self, complete_case):
        assert missing_required_types(complete_case) == []


class TestDocumentTypes:

    def test_parse_known_type(self):
        assert parse_document_type("work_permits") == DocumentType.WORK_PERMITS

    def test_parse_unknown_type(self):
        with pytest.raises(ValidationFailed):
            parse_document_type("selfie")

    def test_parse_default(self):
        assert parse_document_type(None, default=DocumentType.CLIENT_UPLOAD) == DocumentType.CLIENT_UPLOAD

    def test_client_can_provide_respects_explicit_false(self, make_case):
        case = make_case(intakeForm={"documentsProvided": {"passport": True, "visas": False}})
        assert client_can_provide(case, DocumentType.PASSPORT)
        assert not client_can_provide(case, DocumentType.VISAS)
        assert client_can_provide(case, DocumentType.CERTIFICATES)


class TestUpload:

    def test_upload_creates_document_with_signed_url(self, db, make_case, upload, auth, storage):
        case = make_case()
        result = upload(auth["client"], case, "passport")

        doc = result.document
        assert doc.document_type == DocumentType.PASSPORT
        assert doc.file_type == "application/pdf"
        assert doc.uploaded_by_id == auth["client"].user_id
        assert doc.storage_id in storage.objects
        assert doc.storage_id.startswith(f"glojourn/documents/cases/{case.id}/")
        assert result.access_url.startswith("https://signed.test/")
        assert "ttl=900" in result.access_url

    def test_default_type_is_client_upload(self, db, make_case, auth, storage):
        case = make_case()
        result = upload_document(
            db, auth["client"], case.id, None, "scan.png", "image/png", b"\x89PNG", storage,
        )
        assert result.document.document_type == DocumentType.CLIENT_UPLOAD

    def test_unknown_type_rejected(self, make_case, upload, auth, storage):
        with pytest.raises(ValidationFailed):
            upload(auth["client"], make_case(), "selfie")
        assert storage.objects == {}

    def test_missing_case(self, db, auth, storage):
        with pytest.raises(NotFound):
            upload_document(db, auth["admin"], "missing", "passport", "p.pdf", "application/pdf", b"x", storage)

    def test_other_client_forbidden(self, make_case, upload, auth):
        with pytest.raises(Forbidden):
            upload(auth["client2"], make_case(), "passport")

    def test_any_staff_may_upload(self, make_case, upload, auth):
        case = make_case()
        for key in ("coordinator", "manager", "admin"):
            upload(auth[key], case, "certificates")
        assert len([d for d in case.documents if d.document_type == DocumentType.CERTIFICATES]) == 1

    def test_client_declared_cannot_provide(self, make_case, upload, auth):
        case = make_case(intakeForm={"documentsProvided": {"visas": False}})
        with pytest.raises(ValidationFailed):
            upload(auth["client"], case, "visas")
        # staff may still attach it
        upload(auth["coordinator"], case, "visas")

    @pytest.mark.parametrize("data,content_type", [
        (b"", "application/pdf"),
        (b"x" * (5 * 1024 * 1024 + 1), "application/pdf"),
        (b"MZ", "application/x-msdownload"),
    ])
    def test_payload_checks(self, db, make_case, auth, storage, data, content_type):
        with pytest.raises(ValidationFailed):
            upload_document(db, auth["client"], make_case().id, "passport", "f", content_type, data, storage)
        assert storage.objects == {}

    def test_fulfils_open_requests(self, db, make_case, upload, auth):
        from visa_portal.document_requests import request_document

        case = make_case()
        case.assigned_coordinator_id = auth["coordinator"].user_id
        db.commit()
        request = request_document(db, auth["coordinator"], case.id, "passport", "Please upload")
        other = request_document(db, auth["coordinator"], case.id, "visas")

        upload(auth["client"], case, "passport")

        db.expire_all()
        assert db.get(DocumentRequest, request.id).fulfilled_at is not None
        assert db.get(DocumentRequest, other.id).fulfilled_at is None


class TestReplacement:

    def test_replacement_keeps_single_document_of_type(self, db, make_case, upload, auth, storage):
        case = make_case()
        first = upload(auth["client"], case, "passport", file_name="old.pdf").document
        upload(auth["client"], case, "visas")
        count_before = len(case.documents)

        second = upload(auth["coordinator"], case, "passport", file_name="new.pdf").document

        assert len(case.documents) == count_before
        assert first.id not in [d.id for d in case.documents]
        assert second.id in [d.id for d in case.documents]
        assert [d.id for d in _documents_of(db, case.id, DocumentType.PASSPORT)] == [second.id]
        assert first.storage_id in storage.deleted

    def test_store_failure_keeps_previous_document(self, db, make_case, upload, auth, storage):
        case = make_case()
        first = upload(auth["client"], case, "passport").document

        storage.fail_store = True
        with pytest.raises(StorageError):
            upload(auth["client"], case, "passport")

        db.expire_all()
        reloaded = db.query(Case).filter(Case.id == case.id).first()
        assert [d.id for d in reloaded.documents] == [first.id]
        assert storage.deleted == []

    def test_old_file_delete_failure_is_not_fatal(self, db, make_case, upload, auth, storage):
        case = make_case()
        first = upload(auth["client"], case, "passport").document

        storage.fail_delete = True
        second = upload(auth["client"], case, "passport").document

        assert [d.id for d in _documents_of(db, case.id, DocumentType.PASSPORT)] == [second.id]
        assert first.storage_id in storage.objects

    def test_sign_failure_returns_document_without_url(self, make_case, upload, auth, storage):
        storage.fail_sign = True
        result = upload(auth["client"], make_case(), "passport")
        assert result.document.id is not None
        assert result.access_url is None

    def test_commit_failure_discards_new_object(self, db, make_case, upload, auth, storage):
        case = make_case()
        with patch.object(db, "commit", side_effect=SQLAlchemyError("disk full")):
            with pytest.raises(SQLAlchemyError):
                upload(auth["client"], case, "passport")
        assert len(storage.deleted) == 1
        assert storage.objects == {}
