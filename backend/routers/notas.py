import io
import csv
import logging
from fastapi import APIRouter, Depends, HTTPException, UploadFile, File, Form
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
from datetime import datetime, timezone
from typing import List, Optional
from pydantic import EmailStr, TypeAdapter, ValidationError
from db import get_db
from models.models import (
    FiscalNote, HistoryType, InvoiceStatus, InvoiceType, NoteHistoryEvent, PermissionType,
)
from schemas.schemas import FiscalNoteDetail, FiscalNoteOut, FiscalNoteUpdate
from services import lifecycle_service
from services.drive_service import FileStore, FileStoreError, get_file_store
from services.email_service import (
    Attachment, Mailer, get_mailer, parse_cc_list, send_attestation_request,
)
from services.notification_service import dispatch
from services.permission_service import Actor, has_permission
from services.settings_service import get_settings
from services.token_service import build_attestation_link, issue_attestation_token
from config import MAX_ATTESTATION_FILE_SIZE, get_auth_secret
from routers.auth import require_permission

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notas", tags=["notas"])

ALLOWED_NOTE_TYPES = {"application/pdf", "text/xml", "image/jpeg", "image/png"}
REQUIRED_NOTE_FIELDS = {"description", "project_title", "project_account_number",
                        "has_withholding_tax", "invoice_type"}
_email_adapter = TypeAdapter(EmailStr)


def _parse_amount(raw: Optional[str]) -> Optional[float]:
    if not raw:
        return None
    try:
        return float(raw.replace(".", "").replace(",", ".")) if "," in raw else float(raw)
    except ValueError:
        raise HTTPException(status_code=422, detail="Valor total inválido.")


def _visible_notes(db: Session, actor: Actor):
    q = db.query(FiscalNote)
    if not has_permission(db, actor, PermissionType.note_read_all):
        q = q.filter(FiscalNote.user_id == actor.id)
    return q


def _get_visible_note(db: Session, actor: Actor, note_id: str) -> FiscalNote:
    note = _visible_notes(db, actor).filter(FiscalNote.id == note_id).first()
    if not note:
        raise HTTPException(status_code=404, detail="Nota não encontrada")
    return note


@router.post("/", response_model=FiscalNoteOut)
def create_note(file: UploadFile = File(...),
                project_title: str = Form(...),
                coordinator_name: str = Form(...),
                coordinator_email: str = Form(...),
                project_account_number: str = Form(...),
                description: str = Form(...),
                invoice_type: InvoiceType = Form(InvoiceType.servico),
                has_withholding_tax: bool = Form(False),
                cc_emails: Optional[str] = Form(None),
                numero_nota: Optional[str] = Form(None),
                issue_date: Optional[datetime] = Form(None),
                amount: Optional[str] = Form(None),
                prestador_razao_social: Optional[str] = Form(None),
                prestador_cnpj: Optional[str] = Form(None),
                tomador_razao_social: Optional[str] = Form(None),
                tomador_cnpj: Optional[str] = Form(None),
                force_create: bool = Form(False),
                db: Session = Depends(get_db),
                store: FileStore = Depends(get_file_store),
                mailer: Mailer = Depends(get_mailer),
                actor: Actor = Depends(require_permission(PermissionType.note_create))):
    content = file.file.read()
    ct = (file.content_type or "").lower()
    fname = file.filename or "nota"

    if not content:
        raise HTTPException(status_code=400, detail="O arquivo é obrigatório e não pode estar vazio.")
    if len(content) > MAX_ATTESTATION_FILE_SIZE:
        raise HTTPException(status_code=400, detail="O tamanho máximo do arquivo é 10MB.")
    if ct not in ALLOWED_NOTE_TYPES:
        raise HTTPException(status_code=400,
                            detail="São aceitos apenas arquivos .pdf, .xml, .jpg e .png.")
    for field, value in (("project_title", project_title), ("coordinator_name", coordinator_name),
                         ("project_account_number", project_account_number),
                         ("description", description)):
        if not value.strip():
            raise HTTPException(status_code=422, detail=f"Campo obrigatório: {field}")
    try:
        _email_adapter.validate_python(coordinator_email)
        cc_list = [_email_adapter.validate_python(e) for e in parse_cc_list(cc_emails)]
    except ValidationError:
        raise HTTPException(status_code=422, detail="Formato de e-mail inválido.")

    # Links are signed after the note exists; refuse early if they cannot be.
    get_auth_secret()

    if not force_create and numero_nota and _exists(db, numero_nota, project_account_number):
        raise HTTPException(
            status_code=409,
            detail="Já existe uma nota fiscal com o mesmo número para esta conta de projeto.",
        )

    try:
        drive_file_id = store.upload_file(f"[NOTA] {fname}", ct, content, project_account_number)
    except FileStoreError as e:
        logger.error(f"Note upload failed for {actor.id}: {e}")
        raise HTTPException(status_code=502, detail="Falha ao fazer upload do arquivo.")

    settings = get_settings(db)
    note = lifecycle_service.create_note(db, actor, {
        "description": description,
        "project_title": project_title,
        "project_account_number": project_account_number,
        "coordinator_name": coordinator_name,
        "coordinator_email": coordinator_email,
        "invoice_type": invoice_type,
        "has_withholding_tax": has_withholding_tax,
        "numero_nota": numero_nota,
        "issue_date": issue_date,
        "amount": _parse_amount(amount),
        "prestador_razao_social": prestador_razao_social,
        "prestador_cnpj": prestador_cnpj,
        "tomador_razao_social": tomador_razao_social,
        "tomador_cnpj": tomador_cnpj,
        "file_type": ct,
        "drive_file_id": drive_file_id,
        "original_file_url": f"/api/download/{drive_file_id}",
    }, deadline_days=settings.attestation_deadline_in_days, file_name=fname)

    link = build_attestation_link(issue_attestation_token(note.id))
    outcome = dispatch(
        f"attestation-request:{note.id}", send_attestation_request, mailer,
        note=note, link=link, requester_email=actor.email, cc_emails=cc_list,
        attachment=Attachment(filename=fname, content_type=ct, content=content),
    )
    if not outcome.sent:
        logger.warning(f"Note {note.id} created but attestation e-mail not sent: {outcome.error}")
    return note


def _exists(db: Session, numero_nota: str, project_account_number: str) -> bool:
    return db.query(FiscalNote.id).filter(
        FiscalNote.numero_nota == numero_nota,
        FiscalNote.project_account_number == project_account_number,
    ).first() is not None


@router.get("/check-existing")
async def check_existing(numero_nota: str, project_account_number: str,
                         db: Session = Depends(get_db),
                         _: Actor = Depends(require_permission(PermissionType.note_create))):
    return {"exists": _exists(db, numero_nota, project_account_number)}


@router.get("/export/csv")
async def export_csv(status: Optional[InvoiceStatus] = None,
                     data_inicio: Optional[datetime] = None,
                     data_fim: Optional[datetime] = None,
                     db: Session = Depends(get_db),
                     actor: Actor = Depends(require_permission(PermissionType.note_read))):
    q = _visible_notes(db, actor).filter(FiscalNote.deleted_at.is_(None))
    if status:
        q = q.filter(FiscalNote.status == status)
    if data_inicio:
        q = q.filter(FiscalNote.created_at >= data_inicio)
    if data_fim:
        q = q.filter(FiscalNote.created_at <= data_fim)
    notas = q.order_by(FiscalNote.created_at.desc()).all()
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(["ID", "Número", "Descrição", "Projeto", "Conta", "Solicitante",
                     "Coordenador", "Valor", "Status", "Criada em", "Prazo de Atesto",
                     "Atestada por", "Atestada em"])
    for n in notas:
        writer.writerow([n.id, n.numero_nota, n.description, n.project_title,
                         n.project_account_number, n.requester, n.coordinator_name, n.amount,
                         n.status.value, n.created_at, n.attestation_deadline,
                         n.attested_by, n.attested_at])
    output.seek(0)
    return StreamingResponse(
        io.BytesIO(output.getvalue().encode("utf-8-sig")),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=notas_fiscais.csv"},
    )


@router.get("/", response_model=List[FiscalNoteOut])
async def list_notas(skip: int = 0, limit: int = 50,
                     status: Optional[InvoiceStatus] = None,
                     data_inicio: Optional[datetime] = None,
                     data_fim: Optional[datetime] = None,
                     trash: bool = False,
                     db: Session = Depends(get_db),
                     actor: Actor = Depends(require_permission(PermissionType.note_read))):
    q = _visible_notes(db, actor)
    if trash:
        q = q.filter(FiscalNote.deleted_at.isnot(None))
    else:
        q = q.filter(FiscalNote.deleted_at.is_(None))
    if status:
        q = q.filter(FiscalNote.status == status)
    if data_inicio:
        q = q.filter(FiscalNote.created_at >= data_inicio)
    if data_fim:
        q = q.filter(FiscalNote.created_at <= data_fim)
    return q.order_by(FiscalNote.created_at.desc()).offset(skip).limit(limit).all()


@router.get("/{nota_id}", response_model=FiscalNoteDetail)
async def get_nota(nota_id: str, db: Session = Depends(get_db),
                   actor: Actor = Depends(require_permission(PermissionType.note_read))):
    return _get_visible_note(db, actor, nota_id)


def _append_event(db: Session, note: FiscalNote, actor: Actor, type_: HistoryType,
                  details: str) -> None:
    db.add(NoteHistoryEvent(fiscal_note_id=note.id, type=type_, details=details,
                            date=datetime.now(timezone.utc), user_id=actor.id,
                            user_name=actor.name))


@router.put("/{nota_id}", response_model=FiscalNoteDetail)
async def update_nota(nota_id: str, data: FiscalNoteUpdate,
                      db: Session = Depends(get_db),
                      actor: Actor = Depends(require_permission(PermissionType.note_update))):
    nota = _get_visible_note(db, actor, nota_id)
    if nota.deleted_at is not None:
        raise HTTPException(status_code=409, detail="Nota está na lixeira.")
    changes = data.model_dump(exclude_unset=True)
    blank = sorted(k for k in REQUIRED_NOTE_FIELDS & changes.keys()
                   if changes[k] is None or (isinstance(changes[k], str) and not changes[k].strip()))
    if blank:
        raise HTTPException(status_code=422, detail=f"Campo obrigatório: {', '.join(blank)}")
    changed = []
    for k, v in changes.items():
        if getattr(nota, k) != v:
            setattr(nota, k, v)
            changed.append(k)
    if changed:
        _append_event(db, nota, actor, HistoryType.edited,
                      f"Nota editada por {actor.name}. Campos alterados: {', '.join(changed)}.")
        db.commit()
        db.refresh(nota)
    return nota


@router.delete("/{nota_id}")
async def delete_nota(nota_id: str, db: Session = Depends(get_db),
                      actor: Actor = Depends(require_permission(PermissionType.note_delete))):
    nota = _get_visible_note(db, actor, nota_id)
    if nota.deleted_at is not None:
        raise HTTPException(status_code=409, detail="Nota já está na lixeira.")
    nota.deleted_at = datetime.now(timezone.utc)
    _append_event(db, nota, actor, HistoryType.deleted,
                  f"Nota movida para a lixeira por {actor.name}.")
    db.commit()
    return {"ok": True}


@router.post("/{nota_id}/restore", response_model=FiscalNoteDetail)
async def restore_nota(nota_id: str, db: Session = Depends(get_db),
                       actor: Actor = Depends(require_permission(PermissionType.note_delete))):
    nota = _get_visible_note(db, actor, nota_id)
    if nota.deleted_at is None:
        raise HTTPException(status_code=409, detail="Nota não está na lixeira.")
    nota.deleted_at = None
    _append_event(db, nota, actor, HistoryType.restored,
                  f"Nota restaurada da lixeira por {actor.name}.")
    db.commit()
    db.refresh(nota)
    return nota
