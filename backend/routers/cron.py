import hmac
import logging
from fastapi import APIRouter, Depends, Header
from fastapi.responses import PlainTextResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from typing import Optional
from db import get_db
from config import get_cron_secret
from schemas.schemas import SweepResult
from services.expiration_service import check_expirations

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"])


def _authorized(authorization: Optional[str]) -> bool:
    secret = get_cron_secret()
    if not secret or not authorization:
        return False
    return hmac.compare_digest(authorization, f"Bearer {secret}")


@router.get("/check-expirations", response_model=SweepResult)
async def run_check_expirations(authorization: Optional[str] = Header(None),
                                db: Session = Depends(get_db)):
    if not _authorized(authorization):
        return PlainTextResponse("Unauthorized", status_code=401)
    try:
        report = check_expirations(db)
    except SQLAlchemyError as e:
        logger.error(f"[CRON] Erro ao verificar notas expiradas: {e}")
        return PlainTextResponse("Erro interno do servidor", status_code=500)
    return SweepResult(success=True, updatedCount=report.updated_count)
