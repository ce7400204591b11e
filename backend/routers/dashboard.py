from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import func
from datetime import datetime, timedelta, timezone
from db import get_db
from models.models import FiscalNote, InvoiceStatus, PermissionType
from schemas.schemas import DashboardStats
from routers.auth import require_permission
from services.permission_service import Actor, has_permission
from services.settings_service import get_settings

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/stats", response_model=DashboardStats)
async def get_stats(db: Session = Depends(get_db),
                    actor: Actor = Depends(require_permission(PermissionType.note_read))):
    now = datetime.now(timezone.utc)
    window = now + timedelta(days=get_settings(db).reminder_frequency_in_days)

    scope = [FiscalNote.deleted_at.is_(None)]
    if not has_permission(db, actor, PermissionType.note_read_all):
        scope.append(FiscalNote.user_id == actor.id)

    counts = dict(
        db.query(FiscalNote.status, func.count(FiscalNote.id))
        .filter(*scope).group_by(FiscalNote.status).all()
    )

    vencendo = db.query(func.count(FiscalNote.id)).filter(
        *scope, FiscalNote.status == InvoiceStatus.pendente,
        FiscalNote.attestation_deadline >= now,
        FiscalNote.attestation_deadline <= window).scalar() or 0

    valor_atestado = db.query(func.sum(FiscalNote.amount)).filter(
        *scope, FiscalNote.status == InvoiceStatus.atestada).scalar() or 0.0

    return DashboardStats(
        pendentes=counts.get(InvoiceStatus.pendente, 0),
        atestadas=counts.get(InvoiceStatus.atestada, 0),
        rejeitadas=counts.get(InvoiceStatus.rejeitada, 0),
        expiradas=counts.get(InvoiceStatus.expirada, 0),
        vencendo=vencendo,
        valor_atestado=valor_atestado,
        total_notas=sum(counts.values()),
    )
