from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List
from datetime import datetime
from models.models import UserRole, PermissionType, InvoiceStatus, InvoiceType, HistoryType


class UserCreate(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    password: str
    role: UserRole = UserRole.member


class UserOut(BaseModel):
    id: str
    name: str
    email: str
    role: UserRole
    created_at: datetime
    class Config:
        from_attributes = True


class RoleUpdate(BaseModel):
    role: UserRole


class PermissionGrant(BaseModel):
    permission: PermissionType


class Token(BaseModel):
    access_token: str
    token_type: str


class HistoryEventOut(BaseModel):
    id: int
    type: HistoryType
    details: str
    date: datetime
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    class Config:
        from_attributes = True


class FiscalNoteUpdate(BaseModel):
    description: Optional[str] = None
    amount: Optional[float] = None
    issue_date: Optional[datetime] = None
    numero_nota: Optional[str] = None
    project_title: Optional[str] = None
    project_account_number: Optional[str] = None
    prestador_razao_social: Optional[str] = None
    prestador_cnpj: Optional[str] = None
    tomador_razao_social: Optional[str] = None
    tomador_cnpj: Optional[str] = None
    has_withholding_tax: Optional[bool] = None
    invoice_type: Optional[InvoiceType] = None


class FiscalNoteOut(BaseModel):
    id: str
    status: InvoiceStatus
    invoice_type: InvoiceType
    description: str
    requester: str
    amount: Optional[float] = None
    issue_date: Optional[datetime] = None
    numero_nota: Optional[str] = None
    project_title: str
    project_account_number: str
    prestador_razao_social: Optional[str] = None
    prestador_cnpj: Optional[str] = None
    tomador_razao_social: Optional[str] = None
    tomador_cnpj: Optional[str] = None
    has_withholding_tax: bool = False
    coordinator_name: str
    coordinator_email: str
    created_at: datetime
    attestation_deadline: datetime
    file_name: Optional[str] = None
    original_file_url: Optional[str] = None
    attested_file_url: Optional[str] = None
    attested_at: Optional[datetime] = None
    attested_by: Optional[str] = None
    observation: Optional[str] = None
    deleted_at: Optional[datetime] = None
    user_id: str
    class Config:
        from_attributes = True


class FiscalNoteDetail(FiscalNoteOut):
    history: List[HistoryEventOut] = []


class PublicNoteOut(BaseModel):
    """What an unauthenticated coordinator sees behind an attestation link."""
    id: str
    status: InvoiceStatus
    description: str
    requester: str
    amount: Optional[float] = None
    numero_nota: Optional[str] = None
    project_title: str
    project_account_number: str
    coordinator_name: str
    attestation_deadline: datetime
    file_name: Optional[str] = None
    original_file_url: Optional[str] = None
    class Config:
        from_attributes = True


class ActionResultOut(BaseModel):
    success: bool
    message: str


class PublicNoteResult(ActionResultOut):
    note: Optional[PublicNoteOut] = None


class SweepResult(BaseModel):
    success: bool
    updatedCount: int


class SettingsOut(BaseModel):
    attestation_deadline_in_days: int
    reminder_frequency_in_days: int
    class Config:
        from_attributes = True


class SettingsUpdate(BaseModel):
    attestation_deadline_in_days: Optional[int] = Field(default=None, ge=1, le=365)
    reminder_frequency_in_days: Optional[int] = Field(default=None, ge=1, le=90)


class DashboardStats(BaseModel):
    pendentes: int
    atestadas: int
    rejeitadas: int
    expiradas: int
    vencendo: int
    valor_atestado: float
    total_notas: int
