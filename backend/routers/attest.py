from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.orm import Session
from typing import Optional
from urllib.parse import quote
from db import get_db
from schemas.schemas import ActionResultOut, PublicNoteOut, PublicNoteResult
from services.attestation_service import (
    UploadedDocument, handle_attest, handle_reject, load_note_for_token,
)
from services.drive_service import FileStore, get_file_store
from services.email_service import Mailer, get_mailer

# Public routes: reached from the e-mailed link, authorised by the token alone.
# Handlers that reach Drive or Gmail are plain `def` so they run in the threadpool.
router = APIRouter(prefix="/attest", tags=["attest"])


@router.get("/{token}", response_model=PublicNoteResult)
async def get_note_for_token(token: str, db: Session = Depends(get_db)):
    result = load_note_for_token(db, token)
    note = None
    if result.note is not None:
        note = PublicNoteOut.model_validate(result.note)
        if note.original_file_url:
            # Coordinators have no session; the download is authorised by the same token.
            note.original_file_url = f"{note.original_file_url}?token={quote(token, safe='')}"
    return PublicNoteResult(success=result.success, message=result.message, note=note)


@router.post("/{token}", response_model=ActionResultOut)
def attest_note(token: str,
                coordinator_name: str = Form(""),
                coordinator_email: str = Form(""),
                observation: Optional[str] = Form(None),
                attested_file: Optional[UploadFile] = File(None),
                db: Session = Depends(get_db),
                store: FileStore = Depends(get_file_store),
                mailer: Mailer = Depends(get_mailer)):
    doc = None
    if attested_file is not None:
        doc = UploadedDocument(
            filename=attested_file.filename or "atesto.pdf",
            content_type=(attested_file.content_type or "").lower(),
            content=attested_file.file.read(),
        )
    form = {"coordinator_name": coordinator_name, "coordinator_email": coordinator_email,
            "observation": observation}
    result = handle_attest(db, store, mailer, token=token, form=form, file=doc)
    return ActionResultOut(success=result.success, message=result.message)


@router.post("/{token}/reject", response_model=ActionResultOut)
def reject_note(token: str,
                note_id: str = Form(""),
                coordinator_name: str = Form(""),
                rejection_reason: str = Form(""),
                db: Session = Depends(get_db),
                mailer: Mailer = Depends(get_mailer)):
    form = {"note_id": note_id, "coordinator_name": coordinator_name,
            "rejection_reason": rejection_reason}
    result = handle_reject(db, mailer, token=token, form=form)
    return ActionResultOut(success=result.success, message=result.message)
