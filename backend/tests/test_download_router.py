from conftest import auth_headers, make_note, make_user
from models.models import UserRole
from services.drive_service import StoredFile
from services.token_service import issue_attestation_token


def _seed(store, file_id="drive-original"):
    store.files[file_id] = StoredFile(content=b"%PDF-nota", content_type="application/pdf",
                                      name="[NOTA] nota.pdf")


def test_anonymous_without_token_is_401(client, db, store, requester):
    make_note(db, requester)
    _seed(store)
    assert client.get("/api/download/drive-original").status_code == 401


def test_token_grants_access_to_its_note_file(client, db, store, requester):
    note = make_note(db, requester)
    _seed(store)
    resp = client.get(f"/api/download/drive-original?token={issue_attestation_token(note.id)}")
    assert resp.status_code == 200
    assert resp.content == b"%PDF-nota"
    assert resp.headers["content-type"] == "application/pdf"
    assert "nota.pdf" in resp.headers["content-disposition"]


def test_token_for_another_note_is_401(client, db, store, requester):
    make_note(db, requester)
    other = make_note(db, requester, drive_file_id="drive-other")
    _seed(store)
    resp = client.get(f"/api/download/drive-original?token={issue_attestation_token(other.id)}")
    assert resp.status_code == 401


def test_owner_and_admin_sessions(client, db, store, requester):
    make_note(db, requester)
    _seed(store)
    manager = make_user(db, UserRole.manager, name="Gerente Silva")
    stranger = make_user(db, UserRole.member, name="Outro Membro")

    assert client.get("/api/download/drive-original",
                      headers=auth_headers(requester)).status_code == 200
    assert client.get("/api/download/drive-original",
                      headers=auth_headers(manager)).status_code == 200
    assert client.get("/api/download/drive-original",
                      headers=auth_headers(stranger)).status_code == 403


def test_unknown_file_is_404(client, db, requester):
    assert client.get("/api/download/nope", headers=auth_headers(requester)).status_code == 404
