import io
import logging
from urllib.parse import quote
from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse, StreamingResponse
from sqlalchemy import or_
from sqlalchemy.orm import Session
from typing import Optional
from db import get_db
from models.models import FiscalNote, PermissionType
from routers.auth import get_optional_actor
from services.drive_service import FileStore, FileStoreError, get_file_store
from services.permission_service import Actor, has_permission
from services.token_service import TokenError, verify_attestation_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/download", tags=["download"])


def _note_for_token(db: Session, token: Optional[str], file_id: str) -> Optional[FiscalNote]:
    """Return the note a valid token grants access to, if it owns ``file_id``."""
    if not token:
        return None
    try:
        note_id = verify_attestation_token(token)
    except TokenError:
        return None
    note = db.get(FiscalNote, note_id)
    if note and file_id in (note.drive_file_id, note.attested_drive_file_id):
        return note
    return None


@router.get("/{file_id}")
def download_file(file_id: str, token: Optional[str] = None,
                  db: Session = Depends(get_db),
                  store: FileStore = Depends(get_file_store),
                  actor: Optional[Actor] = Depends(get_optional_actor)):
    token_note = _note_for_token(db, token, file_id)
    if actor is None and token_note is None:
        return PlainTextResponse("Acesso não autorizado", status_code=401)

    note = db.query(FiscalNote).filter(or_(
        FiscalNote.drive_file_id == file_id,
        FiscalNote.attested_drive_file_id == file_id,
        FiscalNote.report_drive_file_id == file_id,
    )).first()
    if not note:
        return PlainTextResponse("Arquivo não vinculado a nenhuma nota.", status_code=404)

    can_access = token_note is not None and token_note.id == note.id
    if actor is not None and not can_access:
        can_access = note.user_id == actor.id or has_permission(
            db, actor, PermissionType.note_read_all)
    if not can_access:
        return PlainTextResponse("Acesso negado ao arquivo.", status_code=403)

    try:
        stored = store.download_file(file_id)
    except FileStoreError as e:
        logger.error(f"Download failed for file {file_id} (note {note.id}): {e}")
        return PlainTextResponse("Erro ao baixar o arquivo.", status_code=500)

    filename = note.file_name if file_id == note.drive_file_id and note.file_name else stored.name
    return StreamingResponse(
        io.BytesIO(stored.content),
        media_type=stored.content_type or "application/octet-stream",
        headers={
            "Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}",
            "Content-Length": str(len(stored.content)),
        },
    )
