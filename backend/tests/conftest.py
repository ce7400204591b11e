"""Shared fixtures: a throwaway SQLite database and in-memory Drive/Gmail fakes."""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from db import Base, get_db
from main import app
from models.models import FiscalNote, HistoryType, InvoiceStatus, NoteHistoryEvent, User, UserRole
from routers.auth import create_access_token, get_password_hash
from services.drive_service import FileStore, FileStoreError, StoredFile, get_file_store
from services.email_service import EmailError, Mailer, get_mailer
from services.permission_service import Actor

PDF_BYTES = b"%PDF-1.4\n1 0 obj<<>>endobj\ntrailer<<>>\n%%EOF"


class FakeFileStore(FileStore):
    def __init__(self):
        self.files: dict[str, StoredFile] = {}
        self.deleted: list[str] = []
        self.fail = False
        self.on_upload: Optional[Callable[[], None]] = None
        self._seq = 0

    def upload_file(self, name, mime_type, content, folder=None):
        if self.fail:
            raise FileStoreError("Drive indisponível")
        hook, self.on_upload = self.on_upload, None
        if hook:
            hook()
        self._seq += 1
        file_id = f"drive-{self._seq}"
        self.files[file_id] = StoredFile(content=content, content_type=mime_type, name=name)
        return file_id

    def download_file(self, file_id):
        if file_id not in self.files:
            raise FileStoreError("not found")
        return self.files[file_id]

    def delete_file(self, file_id):
        self.deleted.append(file_id)
        self.files.pop(file_id, None)


class FakeMailer(Mailer):
    def __init__(self):
        self.sent: list[dict] = []
        self.fail = False

    def send(self, to, subject, body, cc=(), attachment=None):
        if self.fail:
            raise EmailError("SMTP fora do ar")
        self.sent.append({"to": to, "subject": subject, "body": body, "cc": list(cc),
                          "attachment": attachment})


@pytest.fixture(autouse=True)
def secrets(monkeypatch):
    monkeypatch.setenv("AUTH_SECRET", "test-auth-secret")
    monkeypatch.setenv("CRON_SECRET", "test-cron-secret")


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'test.db'}",
                           connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store():
    return FakeFileStore()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def client(session_factory, store, mailer):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_file_store] = lambda: store
    app.dependency_overrides[get_mailer] = lambda: mailer
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_user(db, role=UserRole.member, name="Ana Souza", email=None) -> User:
    user = User(name=name, email=email or f"{role.value.lower()}-{name.split()[0].lower()}@fadex.org.br",
                hashed_password=get_password_hash("senha123"), role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': user.id})}"}


def make_note(db, user: User, deadline_delta=timedelta(days=30),
              status=InvoiceStatus.pendente, **overrides) -> FiscalNote:
    now = datetime.now(timezone.utc)
    fields = dict(
        status=status,
        created_at=now,
        attestation_deadline=now + deadline_delta,
        description="Serviço de manutenção predial",
        requester=user.name,
        project_title="Projeto Piloto",
        project_account_number="12345-6",
        coordinator_name="José Lima",
        coordinator_email="jose@fadex.org.br",
        numero_nota="1001",
        amount=1500.0,
        file_name="nota.pdf",
        file_type="application/pdf",
        drive_file_id="drive-original",
        user_id=user.id,
    )
    fields.update(overrides)
    note = FiscalNote(**fields)
    db.add(note)
    db.flush()
    db.add(NoteHistoryEvent(fiscal_note_id=note.id, type=HistoryType.created,
                            details="Nota fiscal criada.", date=now,
                            user_id=user.id, user_name=user.name))
    db.commit()
    db.refresh(note)
    return note


def history_types(db, note_id):
    rows = db.query(NoteHistoryEvent.type).filter(
        NoteHistoryEvent.fiscal_note_id == note_id).order_by(NoteHistoryEvent.id).all()
    return [r.type for r in rows]


@pytest.fixture
def requester(db):
    return make_user(db, UserRole.member, name="Maria Requerente", email="maria@fadex.org.br")


@pytest.fixture
def requester_actor(requester):
    return Actor.from_user(requester)
