import enum
import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, Float, DateTime, ForeignKey, Enum, Boolean, Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from db import Base


def _uuid() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRole(str, enum.Enum):
    owner = "OWNER"
    manager = "MANAGER"
    member = "MEMBER"
    viewer = "VIEWER"


class PermissionType(str, enum.Enum):
    note_create = "NOTE_CREATE"
    note_read = "NOTE_READ"
    note_read_all = "NOTE_READ_ALL"
    note_update = "NOTE_UPDATE"
    note_delete = "NOTE_DELETE"
    user_manage = "USER_MANAGE"
    settings_manage = "SETTINGS_MANAGE"


class InvoiceStatus(str, enum.Enum):
    pendente = "PENDENTE"
    atestada = "ATESTADA"
    rejeitada = "REJEITADA"
    expirada = "EXPIRADA"


class InvoiceType(str, enum.Enum):
    servico = "SERVICO"
    produto = "PRODUTO"


class HistoryType(str, enum.Enum):
    created = "CREATED"
    attested = "ATTESTED"
    reverted = "REVERTED"
    edited = "EDITED"
    expired = "EXPIRED"
    rejected = "REJECTED"
    deleted = "DELETED"
    restored = "RESTORED"


class User(Base):
    __tablename__ = "users"
    id = Column(String(32), primary_key=True, default=_uuid)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    role = Column(Enum(UserRole), default=UserRole.member, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    notes = relationship("FiscalNote", back_populates="creator",
                         foreign_keys="FiscalNote.user_id")
    permissions = relationship("UserPermission", back_populates="user",
                               cascade="all, delete-orphan")


class UserPermission(Base):
    __tablename__ = "user_permissions"
    __table_args__ = (UniqueConstraint("user_id", "permission"),)
    id = Column(Integer, primary_key=True)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False)
    permission = Column(Enum(PermissionType), nullable=False)
    user = relationship("User", back_populates="permissions")


class Settings(Base):
    __tablename__ = "settings"
    id = Column(Integer, primary_key=True)
    attestation_deadline_in_days = Column(Integer, nullable=False, default=30)
    reminder_frequency_in_days = Column(Integer, nullable=False, default=3)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class FiscalNote(Base):
    __tablename__ = "fiscal_notes"
    id = Column(String(32), primary_key=True, default=_uuid)
    status = Column(Enum(InvoiceStatus), nullable=False, default=InvoiceStatus.pendente,
                    index=True)
    invoice_type = Column(Enum(InvoiceType), nullable=False, default=InvoiceType.servico)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    attestation_deadline = Column(DateTime(timezone=True), nullable=False, index=True)
    # Descriptive fields
    description = Column(Text, nullable=False)
    requester = Column(String, nullable=False)
    amount = Column(Float)
    issue_date = Column(DateTime(timezone=True))
    numero_nota = Column(String)
    project_title = Column(String, nullable=False)
    project_account_number = Column(String, nullable=False)
    prestador_razao_social = Column(String)
    prestador_cnpj = Column(String)
    tomador_razao_social = Column(String)
    tomador_cnpj = Column(String)
    has_withholding_tax = Column(Boolean, default=False, nullable=False)
    coordinator_name = Column(String, nullable=False)
    coordinator_email = Column(String, nullable=False)
    # Files (Drive references)
    file_name = Column(String)
    file_type = Column(String)
    drive_file_id = Column(String, index=True)
    original_file_url = Column(String)
    attested_drive_file_id = Column(String, index=True)
    attested_file_url = Column(String)
    report_drive_file_id = Column(String)
    # Attestation / rejection
    attested_at = Column(DateTime(timezone=True))
    attested_by_id = Column(String(32), ForeignKey("users.id"))
    attested_by = Column(String)
    observation = Column(Text)
    deleted_at = Column(DateTime(timezone=True))
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False)
    creator = relationship("User", back_populates="notes", foreign_keys=[user_id])
    history = relationship("NoteHistoryEvent", back_populates="note",
                           order_by="NoteHistoryEvent.id",
                           cascade="all, delete-orphan")


class NoteHistoryEvent(Base):
    __tablename__ = "note_history_events"
    id = Column(Integer, primary_key=True)
    fiscal_note_id = Column(String(32), ForeignKey("fiscal_notes.id"), nullable=False,
                            index=True)
    type = Column(Enum(HistoryType), nullable=False)
    details = Column(Text, nullable=False)
    date = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=True)
    user_name = Column(String)
    note = relationship("FiscalNote", back_populates="history")
    author = relationship("User")
