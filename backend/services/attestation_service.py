"""
Public, token-gated attestation and rejection.

Coordinators reach these handlers from the e-mailed link, without a session.
Each handler returns an ``ActionResult``; only a missing AUTH_SECRET escapes
as an exception, since it is a deployment fault rather than a user error.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, EmailStr, Field, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from config import MAX_ATTESTATION_FILE_SIZE
from models.models import FiscalNote, InvoiceStatus
from services import lifecycle_service
from services.drive_service import FileStore, FileStoreError
from services.email_service import (
    Mailer, send_attestation_confirmation, send_rejection_notification,
)
from services.lifecycle_service import InvalidTransition
from services.notification_service import NotificationOutcome, dispatch
from services.token_service import TokenExpired, TokenInvalid, verify_attestation_token

logger = logging.getLogger(__name__)

ATTESTATION_MIME_TYPE = "application/pdf"

MSG_TOKEN_EXPIRED = "Seu link de ateste expirou. Por favor, solicite um novo."
MSG_TOKEN_INVALID = "Seu link de ateste é inválido."
MSG_TOKEN_MISMATCH = "Token inválido ou não corresponde à nota."
MSG_SERVER_ERROR = "Ocorreu um erro no servidor. Tente novamente."


@dataclass
class UploadedDocument:
    filename: str
    content_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class ActionResult:
    success: bool
    message: str
    note: Optional[FiscalNote] = None
    notification: Optional[NotificationOutcome] = None


class AttachmentValidationError(ValueError):
    pass


class AttestForm(BaseModel):
    coordinator_name: str = Field(min_length=3)
    coordinator_email: EmailStr
    observation: Optional[str] = Field(default=None, max_length=1000)


class RejectForm(BaseModel):
    coordinator_name: str = Field(min_length=3)
    rejection_reason: str = Field(min_length=10, max_length=1000)
    note_id: str = Field(min_length=1)


_FIELD_MESSAGES = {
    "coordinator_name": "O nome do coordenador é obrigatório (mínimo 3 caracteres).",
    "coordinator_email": "Informe um e-mail válido.",
    "observation": "A observação deve ter no máximo 1000 caracteres.",
    "rejection_reason": "O motivo da rejeição deve ter entre 10 e 1000 caracteres.",
    "note_id": "ID da nota inválido.",
}


def first_error_message(exc: ValidationError) -> str:
    errors = exc.errors()
    field = str(errors[0]["loc"][0]) if errors and errors[0]["loc"] else ""
    return _FIELD_MESSAGES.get(field, "Dados inválidos.")


def validate_attestation_file(doc: Optional[UploadedDocument]) -> None:
    if doc is None or doc.size == 0:
        raise AttachmentValidationError("O arquivo de atesto (PDF) é obrigatório.")
    if doc.content_type != ATTESTATION_MIME_TYPE:
        raise AttachmentValidationError("Apenas arquivos PDF são permitidos.")
    if doc.size > MAX_ATTESTATION_FILE_SIZE:
        raise AttachmentValidationError(
            f"O tamanho máximo do arquivo é {MAX_ATTESTATION_FILE_SIZE // 1_000_000}MB.")


def _token_failure(exc: Exception) -> ActionResult:
    if isinstance(exc, TokenExpired):
        return ActionResult(False, MSG_TOKEN_EXPIRED)
    return ActionResult(False, MSG_TOKEN_INVALID)


def load_note_for_token(db: Session, token: str) -> ActionResult:
    """Resolve the note behind an attestation link for the public page."""
    try:
        note_id = verify_attestation_token(token)
    except (TokenExpired, TokenInvalid) as e:
        return _token_failure(e)
    note = db.get(FiscalNote, note_id)
    if note is None or note.deleted_at is not None:
        return ActionResult(False, "Nota fiscal não encontrada.")
    if note.status != InvoiceStatus.pendente:
        return ActionResult(False, "Esta nota não está mais pendente de ateste.", note=note)
    return ActionResult(True, "Nota pendente de ateste.", note=note)


def handle_attest(db: Session, store: FileStore, mailer: Mailer, *, token: str,
                  form: dict, file: Optional[UploadedDocument],
                  now: Optional[datetime] = None) -> ActionResult:
    try:
        note_id = verify_attestation_token(token)
    except (TokenExpired, TokenInvalid) as e:
        return _token_failure(e)

    try:
        validate_attestation_file(file)
    except AttachmentValidationError as e:
        return ActionResult(False, str(e))

    try:
        data = AttestForm(**form)
    except ValidationError as e:
        return ActionResult(False, first_error_message(e))

    note = db.get(FiscalNote, note_id)
    if note is None or note.deleted_at is not None:
        return ActionResult(False, "Nota fiscal não encontrada.")
    if note.status != InvoiceStatus.pendente:
        return ActionResult(False, "Esta nota não está mais pendente de ateste.")

    try:
        file_id = store.upload_file(f"[ATESTADO] {file.filename}", file.content_type,
                                    file.content, note.project_account_number)
    except FileStoreError as e:
        logger.error(f"Attest aborted for note {note_id}: upload failed: {e}")
        return ActionResult(False, "Falha ao enviar o arquivo de atesto. Tente novamente.")

    now = now or datetime.now(timezone.utc)
    observation = data.observation or None
    try:
        note = lifecycle_service.attest(
            db, note_id, coordinator_name=data.coordinator_name, attested_file_id=file_id,
            file_name=file.filename, observation=observation, now=now,
        )
    except InvalidTransition as e:
        _discard_upload(store, file_id, note_id)
        return ActionResult(False, str(e))
    except SQLAlchemyError:
        _discard_upload(store, file_id, note_id)
        return ActionResult(False, MSG_SERVER_ERROR)

    outcome = dispatch(
        f"attestation-confirmation:{note_id}", send_attestation_confirmation, mailer,
        note=note, coordinator_name=data.coordinator_name,
        coordinator_email=data.coordinator_email,
        requester_email=note.creator.email if note.creator else None,
        file_name=file.filename, attested_at=now, observation=observation,
    )
    return ActionResult(True, "Nota atestada com sucesso!", note=note, notification=outcome)


def _discard_upload(store: FileStore, file_id: str, note_id: str) -> None:
    try:
        store.delete_file(file_id)
    except FileStoreError as e:
        logger.warning(f"Orphan attestation file {file_id} for note {note_id}: {e}")


def handle_reject(db: Session, mailer: Mailer, *, token: str, form: dict,
                  now: Optional[datetime] = None) -> ActionResult:
    try:
        token_note_id = verify_attestation_token(token)
    except (TokenExpired, TokenInvalid) as e:
        return _token_failure(e)

    try:
        data = RejectForm(**form)
    except ValidationError as e:
        return ActionResult(False, first_error_message(e))

    if data.note_id != token_note_id:
        logger.warning(f"Reject token for {token_note_id} used with note {data.note_id}")
        return ActionResult(False, MSG_TOKEN_MISMATCH)

    now = now or datetime.now(timezone.utc)
    try:
        note = lifecycle_service.reject(
            db, data.note_id, coordinator_name=data.coordinator_name,
            reason=data.rejection_reason, now=now,
        )
    except InvalidTransition as e:
        return ActionResult(False, str(e))
    except SQLAlchemyError:
        return ActionResult(False, MSG_SERVER_ERROR)

    creator = note.creator
    if creator is None or not creator.email:
        outcome = NotificationOutcome.skipped("Solicitante sem e-mail cadastrado")
    else:
        outcome = dispatch(
            f"rejection-notification:{note.id}", send_rejection_notification, mailer,
            note=note, coordinator_name=data.coordinator_name, requester_name=creator.name,
            requester_email=creator.email, reason=data.rejection_reason, rejected_at=now,
        )
    return ActionResult(True, "Nota rejeitada com sucesso!", note=note, notification=outcome)
