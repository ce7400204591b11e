import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from models.models import FiscalNote, HistoryType, InvoiceStatus, NoteHistoryEvent
from services.lifecycle_service import SYSTEM_CRON_USER, expired_message, overdue_note_ids

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    updated_count: int
    note_ids: List[str] = field(default_factory=list)


def _expire_bulk(db: Session, candidates: List[str], now: datetime) -> List[str]:
    stmt = (
        update(FiscalNote)
        .where(FiscalNote.id.in_(candidates),
               FiscalNote.status == InvoiceStatus.pendente,
               FiscalNote.attestation_deadline < now)
        .values(status=InvoiceStatus.expirada)
        .execution_options(synchronize_session=False)
    )
    if db.get_bind().dialect.update_returning:
        return list(db.execute(stmt.returning(FiscalNote.id)).scalars())
    # No UPDATE ... RETURNING: one conditional update per note, same transaction.
    won = []
    for note_id in candidates:
        if db.execute(stmt.where(FiscalNote.id == note_id)).rowcount == 1:
            won.append(note_id)
    return won


def check_expirations(db: Session, now: Optional[datetime] = None) -> SweepReport:
    """Move every overdue PENDENTE note to EXPIRADA with one EXPIRED event each.

    The status predicate is re-applied in the UPDATE itself, so a concurrent
    sweep (or an attest that commits first) only ever wins a note once.
    """
    now = now or datetime.now(timezone.utc)
    candidates = overdue_note_ids(db, now)
    if not candidates:
        logger.info("[CRON] Nenhuma nota expirada encontrada.")
        return SweepReport(updated_count=0)

    details = expired_message(now)
    try:
        expired = _expire_bulk(db, candidates, now)
        db.add_all([
            NoteHistoryEvent(
                fiscal_note_id=note_id,
                type=HistoryType.expired,
                details=details,
                date=now,
                user_id=None,
                user_name=SYSTEM_CRON_USER,
            )
            for note_id in expired
        ])
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.error(f"[CRON] Erro ao expirar {len(candidates)} nota(s)")
        raise
    logger.info(f"[CRON] {len(expired)} notas foram marcadas como expiradas.")
    return SweepReport(updated_count=len(expired), note_ids=expired)
