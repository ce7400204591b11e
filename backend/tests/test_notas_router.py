from datetime import timedelta

import pytest

from conftest import PDF_BYTES, auth_headers, history_types, make_note, make_user
from models.models import FiscalNote, HistoryType, InvoiceStatus, UserRole

NOTE_FORM = {
    "project_title": "Projeto Piloto",
    "coordinator_name": "José Lima",
    "coordinator_email": "jose@fadex.org.br",
    "project_account_number": "12345-6",
    "description": "Serviço de manutenção predial",
    "numero_nota": "1001",
    "amount": "1.500,50",
    "cc_emails": "financeiro@fadex.org.br, compras@fadex.org.br",
}


def _upload(client, user, data=None, file=("nota.pdf", PDF_BYTES, "application/pdf")):
    return client.post("/api/notas/", data=data or NOTE_FORM, files={"file": file},
                       headers=auth_headers(user))


def test_create_note_emails_coordinator(client, db, store, mailer, requester):
    resp = _upload(client, requester)

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "PENDENTE"
    assert body["amount"] == 1500.5
    assert body["requester"] == requester.name
    assert body["original_file_url"].startswith("/api/download/drive-")
    assert history_types(db, body["id"]) == [HistoryType.created]

    sent = mailer.sent[0]
    assert sent["to"] == "jose@fadex.org.br"
    assert sent["cc"] == [requester.email, "financeiro@fadex.org.br", "compras@fadex.org.br"]
    assert "/attest/" in sent["body"]
    assert sent["attachment"].filename == "nota.pdf"


def test_deadline_follows_settings_at_creation(client, db, requester):
    owner = make_user(db, UserRole.owner, name="Dono Fadex")
    client.put("/api/settings/", json={"attestation_deadline_in_days": 10},
               headers=auth_headers(owner))
    body = _upload(client, requester).json()
    note = db.get(FiscalNote, body["id"])
    assert note.attestation_deadline - note.created_at == timedelta(days=10)

    client.put("/api/settings/", json={"attestation_deadline_in_days": 60},
               headers=auth_headers(owner))
    db.expire_all()
    note = db.get(FiscalNote, body["id"])
    assert note.attestation_deadline - note.created_at == timedelta(days=10)


def test_create_note_survives_email_failure(client, db, mailer, requester):
    mailer.fail = True
    resp = _upload(client, requester)
    assert resp.status_code == 200
    assert db.get(FiscalNote, resp.json()["id"]).status == InvoiceStatus.pendente


def test_duplicate_number_needs_force(client, db, requester):
    assert _upload(client, requester).status_code == 200
    assert _upload(client, requester).status_code == 409
    forced = _upload(client, requester, data={**NOTE_FORM, "force_create": "true"})
    assert forced.status_code == 200

    check = client.get("/api/notas/check-existing",
                       params={"numero_nota": "1001", "project_account_number": "12345-6"},
                       headers=auth_headers(requester))
    assert check.json() == {"exists": True}


def test_rejects_unsupported_file(client, requester):
    resp = _upload(client, requester, file=("nota.docx", b"doc", "application/msword"))
    assert resp.status_code == 400


def test_viewer_cannot_create(client, db):
    viewer = make_user(db, UserRole.viewer, name="Visitante")
    assert _upload(client, viewer).status_code == 403


def test_list_is_scoped_to_owner_unless_read_all(client, db, requester):
    other = make_user(db, UserRole.member, name="Outro Membro")
    manager = make_user(db, UserRole.manager, name="Gerente Silva")
    mine = make_note(db, requester)
    make_note(db, other)

    own = client.get("/api/notas/", headers=auth_headers(requester)).json()
    everything = client.get("/api/notas/", headers=auth_headers(manager)).json()

    assert [n["id"] for n in own] == [mine.id]
    assert len(everything) == 2
    assert client.get(f"/api/notas/{mine.id}", headers=auth_headers(other)).status_code == 404


def test_filter_by_status(client, db, requester):
    make_note(db, requester)
    attested = make_note(db, requester, status=InvoiceStatus.atestada)
    resp = client.get("/api/notas/", params={"status": "ATESTADA"},
                      headers=auth_headers(requester))
    assert [n["id"] for n in resp.json()] == [attested.id]


def test_edit_records_event_and_keeps_status(client, db, requester):
    note = make_note(db, requester)
    resp = client.put(f"/api/notas/{note.id}", json={"description": "Nova descrição",
                                                     "status": "ATESTADA"},
                      headers=auth_headers(requester))
    body = resp.json()
    assert body["description"] == "Nova descrição"
    assert body["status"] == "PENDENTE"
    assert [e["type"] for e in body["history"]] == ["CREATED", "EDITED"]
    assert "description" in body["history"][-1]["details"]


def test_delete_and_restore(client, db, requester):
    manager = make_user(db, UserRole.manager, name="Gerente Silva")
    note = make_note(db, requester)

    assert client.delete(f"/api/notas/{note.id}",
                         headers=auth_headers(requester)).status_code == 403
    assert client.delete(f"/api/notas/{note.id}",
                         headers=auth_headers(manager)).json() == {"ok": True}
    assert client.get("/api/notas/", headers=auth_headers(manager)).json() == []
    trash = client.get("/api/notas/", params={"trash": True}, headers=auth_headers(manager))
    assert [n["id"] for n in trash.json()] == [note.id]

    restored = client.post(f"/api/notas/{note.id}/restore", headers=auth_headers(manager))
    assert [e["type"] for e in restored.json()["history"]] == ["CREATED", "DELETED", "RESTORED"]
    assert restored.json()["status"] == "PENDENTE"


def test_export_csv(client, db, requester):
    make_note(db, requester)
    resp = client.get("/api/notas/export/csv", headers=auth_headers(requester))
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert "Serviço de manutenção predial" in resp.content.decode("utf-8-sig")


def test_requires_login(client):
    assert client.get("/api/notas/").status_code == 401


@pytest.mark.parametrize("payload", [
    {"description": None},
    {"description": "   "},
    {"project_title": None},
    {"project_account_number": ""},
    {"invoice_type": None},
    {"has_withholding_tax": None},
])
def test_edit_refuses_to_clear_required_field(client, db, requester, payload):
    note = make_note(db, requester)
    resp = client.put(f"/api/notas/{note.id}", json=payload, headers=auth_headers(requester))

    assert resp.status_code == 422
    db.expire_all()
    assert db.get(FiscalNote, note.id).description == "Serviço de manutenção predial"
    assert history_types(db, note.id) == [HistoryType.created]
