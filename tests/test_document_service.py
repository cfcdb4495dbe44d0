"""
Document service tests — upload validation, storage coordination and
signed download links. Storage is the in-memory FakeStorage from conftest.
"""

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from backoffice.core.exceptions import AuthorizationError, NotFoundError, SystemError, ValidationError
from backoffice.models import db
from backoffice.models.audit import AuditLog
from backoffice.models.document import MAX_DOCUMENT_SIZE, Document
from backoffice.services import document_service
from backoffice.services.document_service import sanitize_filename
from conftest import ctx_for, make_project, make_tenant, make_user

PDF = "application/pdf"


def _setup():
    t = make_tenant()
    pm = make_user(t, "pm@acme.example.com", roles=("pm",))
    member = make_user(t, "member@acme.example.com")
    outsider = make_user(t, "outsider@acme.example.com")
    p = make_project(t, pm, members=(member,))
    db.session.commit()
    return t, pm, member, outsider, p


def _upload(t, user, project, name="proposal.pdf", content=b"%PDF-1.7", mime=PDF):
    return document_service.upload_document(ctx_for(user, t), project.id, name, content, mime)


def _doc_count():
    return db.session.execute(select(func.count(Document.id))).scalar()


class TestSanitizeFilename:
    def test_replaces_unsafe_characters(self):
        assert sanitize_filename("../etc/passwd") == ".._etc_passwd"
        assert sanitize_filename("report (final).pdf") == "report__final_.pdf"

    def test_keeps_japanese(self):
        assert sanitize_filename("見積書.pdf") == "見積書.pdf"


class TestUpload:
    def test_upload_stores_bytes_and_row(self, fake_storage):
        t, pm, _, _, p = _setup()
        doc = _upload(t, pm, p)

        assert doc["name"] == "proposal.pdf"
        assert doc["file_size"] == 8
        assert doc["file_path"].startswith(f"{t.id}/{p.id}/")
        assert fake_storage.objects[doc["file_path"]] == (b"%PDF-1.7", PDF)
        log = db.session.execute(select(AuditLog)).scalar_one()
        assert log.action == "document.upload"

    def test_member_cannot_upload(self, fake_storage):
        t, _, member, _, p = _setup()
        with pytest.raises(AuthorizationError) as exc_info:
            _upload(t, member, p)
        assert exc_info.value.code == "ERR-AUTH-F02"
        assert fake_storage.objects == {}

    @pytest.mark.parametrize("kwargs,code", [
        ({"content": None}, "ERR-VAL-F01"),
        ({"content": b"x" * (MAX_DOCUMENT_SIZE + 1)}, "ERR-VAL-F02"),
        ({"mime": "application/x-msdownload"}, "ERR-VAL-F03"),
    ])
    def test_validation(self, fake_storage, kwargs, code):
        t, pm, _, _, p = _setup()
        with pytest.raises(ValidationError) as exc_info:
            _upload(t, pm, p, **kwargs)
        assert exc_info.value.code == code
        assert fake_storage.objects == {}

    def test_unknown_project(self, fake_storage):
        t, pm, _, _, _ = _setup()
        with pytest.raises(ValidationError) as exc_info:
            document_service.upload_document(ctx_for(pm, t), 999, "a.pdf", b"x", PDF)
        assert exc_info.value.code == "ERR-VAL-F01"

    def test_storage_failure_writes_no_row(self, fake_storage):
        t, pm, _, _, p = _setup()
        fake_storage.fail_on = "save"
        with pytest.raises(SystemError) as exc_info:
            _upload(t, pm, p)
        assert exc_info.value.code == "ERR-SYS-F01"
        assert _doc_count() == 0

    def test_db_failure_removes_stored_object(self, fake_storage, monkeypatch):
        t, pm, _, _, p = _setup()

        def _boom(*args, **kwargs):
            raise SQLAlchemyError("insert failed")

        monkeypatch.setattr(document_service, "write_audit", _boom)
        with pytest.raises(SystemError):
            _upload(t, pm, p)
        assert fake_storage.objects == {}
        assert _doc_count() == 0


class TestListDelete:
    def test_member_lists(self, fake_storage):
        t, pm, member, outsider, p = _setup()
        _upload(t, pm, p)
        assert len(document_service.list_documents(ctx_for(member, t), p.id)) == 1
        with pytest.raises(AuthorizationError) as exc_info:
            document_service.list_documents(ctx_for(outsider, t), p.id)
        assert exc_info.value.code == "ERR-AUTH-F01"

    def test_delete_removes_bytes(self, fake_storage):
        t, pm, _, _, p = _setup()
        doc = _upload(t, pm, p)
        assert document_service.delete_document(ctx_for(pm, t), doc["id"]) == {"id": doc["id"], "deleted": True}
        assert fake_storage.objects == {}
        assert _doc_count() == 0

    def test_delete_survives_storage_failure(self, fake_storage):
        t, pm, _, _, p = _setup()
        doc = _upload(t, pm, p)
        fake_storage.fail_on = "remove"
        document_service.delete_document(ctx_for(pm, t), doc["id"])
        assert _doc_count() == 0

    def test_delete_missing(self, fake_storage):
        t, pm, _, _, _ = _setup()
        with pytest.raises(NotFoundError) as exc_info:
            document_service.delete_document(ctx_for(pm, t), 404)
        assert exc_info.value.code == "ERR-DOC-001"


class TestDownloadUrl:
    def test_member_gets_signed_url(self, fake_storage):
        t, pm, member, _, p = _setup()
        doc = _upload(t, pm, p)
        result = document_service.get_download_url(ctx_for(member, t), doc["id"])
        assert result["name"] == "proposal.pdf"
        assert doc["file_path"] in result["url"]
        actions = db.session.execute(select(AuditLog.action).order_by(AuditLog.id)).scalars().all()
        assert actions == ["document.upload", "document.download"]

    def test_outsider_refused(self, fake_storage):
        t, pm, _, outsider, p = _setup()
        doc = _upload(t, pm, p)
        with pytest.raises(AuthorizationError):
            document_service.get_download_url(ctx_for(outsider, t), doc["id"])
