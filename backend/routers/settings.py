import logging
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from db import get_db
from models.models import PermissionType
from routers.auth import require_permission
from schemas.schemas import SettingsOut, SettingsUpdate
from services.permission_service import Actor
from services.settings_service import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("/", response_model=SettingsOut)
async def read_settings(db: Session = Depends(get_db),
                        _: Actor = Depends(require_permission(PermissionType.settings_manage))):
    return get_settings(db)


@router.put("/", response_model=SettingsOut)
async def update_settings(data: SettingsUpdate, db: Session = Depends(get_db),
                          actor: Actor = Depends(require_permission(PermissionType.settings_manage))):
    """Only notes created after the change use the new deadline."""
    settings = get_settings(db)
    for k, v in data.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(settings, k, v)
    db.commit()
    db.refresh(settings)
    logger.info(f"Settings updated by {actor.id}: deadline={settings.attestation_deadline_in_days}d "
                f"reminder={settings.reminder_frequency_in_days}d")
    return settings
