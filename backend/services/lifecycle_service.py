"""
Fiscal note lifecycle.

    PENDENTE ──attest──▶ ATESTADA
             ──reject──▶ REJEITADA
             ──expire──▶ EXPIRADA

PENDENTE is the only non-terminal status. Every transition is one conditional
UPDATE (``WHERE id = ? AND status = 'PENDENTE'``) plus one history insert,
committed together; if the UPDATE matches no row the transaction is rolled
back and the caller gets NoteNotFound or NoteNotPending.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from models.models import FiscalNote, HistoryType, InvoiceStatus, NoteHistoryEvent
from services.permission_service import Actor

logger = logging.getLogger(__name__)

SYSTEM_CRON_USER = "Sistema (Cron Job)"
EXPIRED_MESSAGE = "A nota expirou em {date} pois não foi atestada até o prazo final."


class InvalidTransition(Exception):
    def __init__(self, note_id: str, message: str):
        super().__init__(message)
        self.note_id = note_id


class NoteNotFound(InvalidTransition):
    def __init__(self, note_id: str):
        super().__init__(note_id, "Nota fiscal não encontrada.")


class NoteNotPending(InvalidTransition):
    def __init__(self, note_id: str, status: Optional[InvoiceStatus] = None):
        super().__init__(note_id, "Esta nota não está mais pendente de ateste.")
        self.status = status


class NoteNotOverdue(InvalidTransition):
    def __init__(self, note_id: str):
        super().__init__(note_id, "O prazo de ateste desta nota ainda não terminou.")


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def compute_attestation_deadline(created_at: datetime, days: int) -> datetime:
    return created_at + timedelta(days=days)


def expired_message(now: datetime) -> str:
    return EXPIRED_MESSAGE.format(date=now.strftime("%d/%m/%Y"))


def create_note(db: Session, actor: Actor, fields: Dict, *, deadline_days: int,
                file_name: str, now: Optional[datetime] = None) -> FiscalNote:
    """Insert a PENDENTE note and its CREATED event.

    ``deadline_days`` is read from settings by the caller at creation time;
    later settings changes do not move existing deadlines.
    """
    created_at = _now(now)
    note = FiscalNote(
        **fields,
        status=InvoiceStatus.pendente,
        created_at=created_at,
        attestation_deadline=compute_attestation_deadline(created_at, deadline_days),
        requester=actor.name,
        user_id=actor.id,
        file_name=file_name,
    )
    db.add(note)
    db.flush()
    db.add(NoteHistoryEvent(
        fiscal_note_id=note.id,
        type=HistoryType.created,
        details=(f"Nota fiscal criada por {actor.name} e atribuída a {note.coordinator_name} "
                 f"para atesto. Arquivo '{file_name}' salvo na pasta da conta "
                 f"{note.project_account_number} no Drive."),
        date=created_at,
        user_id=actor.id,
        user_name=actor.name,
    ))
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.error(f"create_note failed for requester {actor.id}")
        raise
    db.refresh(note)
    logger.info(f"Note {note.id} created, deadline {note.attestation_deadline:%Y-%m-%d}")
    return note


def _classify_failure(db: Session, note_id: str) -> InvalidTransition:
    note = db.get(FiscalNote, note_id)
    if note is None or note.deleted_at is not None:
        return NoteNotFound(note_id)
    return NoteNotPending(note_id, note.status)


def _transition(db: Session, note_id: str, new_status: InvoiceStatus, values: Dict,
                event: Dict, *conditions) -> FiscalNote:
    stmt = (
        update(FiscalNote)
        .where(FiscalNote.id == note_id,
               FiscalNote.status == InvoiceStatus.pendente,
               FiscalNote.deleted_at.is_(None),
               *conditions)
        .values(status=new_status, **values)
        .execution_options(synchronize_session=False)
    )
    try:
        result = db.execute(stmt)
        if result.rowcount != 1:
            db.rollback()
            err = _classify_failure(db, note_id)
            if isinstance(err, NoteNotPending) and err.status == InvoiceStatus.pendente:
                # Still pending, so one of the extra conditions did not hold.
                err = NoteNotOverdue(note_id)
            logger.warning(f"Transition to {new_status.value} refused for note {note_id}: {err}")
            raise err
        db.add(NoteHistoryEvent(fiscal_note_id=note_id, **event))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.error(f"Transition to {new_status.value} failed for note {note_id}")
        raise
    note = db.get(FiscalNote, note_id)
    db.refresh(note)
    logger.info(f"Note {note_id} → {new_status.value}")
    return note


def attest(db: Session, note_id: str, *, coordinator_name: str, attested_file_id: str,
           file_name: str, observation: Optional[str] = None,
           actor: Optional[Actor] = None, now: Optional[datetime] = None) -> FiscalNote:
    now = _now(now)
    details = f"Nota atestada por {coordinator_name}"
    details += "." if actor else " (via link público)."
    if observation:
        details += f' Observação: "{observation}"'
    details += f" Documento de atesto '{file_name}' foi salvo."
    return _transition(
        db, note_id, InvoiceStatus.atestada,
        {
            "attested_at": now,
            "attested_by_id": actor.id if actor else None,
            "attested_by": coordinator_name,
            "observation": observation,
            "attested_drive_file_id": attested_file_id,
            "attested_file_url": f"/api/download/{attested_file_id}",
        },
        {
            "type": HistoryType.attested,
            "details": details,
            "date": now,
            "user_id": actor.id if actor else None,
            "user_name": actor.name if actor else f"{coordinator_name} (Ateste Público)",
        },
    )


def reject(db: Session, note_id: str, *, coordinator_name: str, reason: str,
           actor: Optional[Actor] = None, now: Optional[datetime] = None) -> FiscalNote:
    now = _now(now)
    return _transition(
        db, note_id, InvoiceStatus.rejeitada,
        {"observation": reason},
        {
            "type": HistoryType.rejected,
            "details": f'Nota rejeitada por {coordinator_name}. Motivo: "{reason}"',
            "date": now,
            "user_id": actor.id if actor else None,
            "user_name": actor.name if actor else coordinator_name,
        },
    )


def expire(db: Session, note_id: str, now: Optional[datetime] = None) -> FiscalNote:
    now = _now(now)
    return _transition(
        db, note_id, InvoiceStatus.expirada, {},
        {
            "type": HistoryType.expired,
            "details": expired_message(now),
            "date": now,
            "user_id": None,
            "user_name": SYSTEM_CRON_USER,
        },
        FiscalNote.attestation_deadline < now,
    )


def overdue_note_ids(db: Session, now: datetime) -> List[str]:
    rows = db.query(FiscalNote.id).filter(
        FiscalNote.status == InvoiceStatus.pendente,
        FiscalNote.deleted_at.is_(None),
        FiscalNote.attestation_deadline < now,
    ).all()
    return [r.id for r in rows]
