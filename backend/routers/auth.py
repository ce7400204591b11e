from fastapi import APIRouter, Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from sqlalchemy.orm import Session
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from jose import JWTError, jwt
from passlib.context import CryptContext
from db import get_db
from models.models import PermissionType, User, UserPermission, UserRole
from schemas.schemas import PermissionGrant, RoleUpdate, Token, UserCreate, UserOut
from services.permission_service import Actor, has_permission
from config import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES

router = APIRouter(prefix="/auth", tags=["auth"])
pwd_context = CryptContext(schemes=["sha256_crypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def create_access_token(data: dict) -> str:
    to_encode = data.copy()
    to_encode["exp"] = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def _user_from_token(token: str, db: Session) -> Optional[User]:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
    user_id = payload.get("sub")
    if not user_id:
        return None
    return db.get(User, user_id)


async def get_current_user(token: str = Depends(oauth2_scheme),
                           db: Session = Depends(get_db)) -> User:
    user = _user_from_token(token, db)
    if not user:
        raise HTTPException(status_code=401, detail="Token inválido ou expirado")
    return user


async def get_current_actor(user: User = Depends(get_current_user)) -> Actor:
    return Actor.from_user(user)


async def get_optional_actor(token: Optional[str] = Depends(optional_oauth2_scheme),
                             db: Session = Depends(get_db)) -> Optional[Actor]:
    if not token:
        return None
    user = _user_from_token(token, db)
    return Actor.from_user(user) if user else None


def require_permission(permission: PermissionType):
    async def dependency(actor: Actor = Depends(get_current_actor),
                         db: Session = Depends(get_db)) -> Actor:
        if not has_permission(db, actor, permission):
            raise HTTPException(status_code=403, detail="Acesso negado.")
        return actor
    return dependency


@router.post("/token", response_model=Token)
async def login(form: OAuth2PasswordRequestForm = Depends(),
                db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == form.username).first()
    if not user or not verify_password(form.password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Credenciais inválidas")
    token = create_access_token({"sub": user.id, "role": user.role.value})
    return {"access_token": token, "token_type": "bearer"}


@router.post("/users", response_model=UserOut)
async def create_user(data: UserCreate, db: Session = Depends(get_db),
                      actor: Actor = Depends(require_permission(PermissionType.user_manage))):
    if data.role == UserRole.owner and actor.role != UserRole.owner:
        raise HTTPException(status_code=403, detail="Apenas o Dono pode criar outro Dono.")
    if db.query(User).filter(User.email == data.email).first():
        raise HTTPException(status_code=400, detail="E-mail já cadastrado")
    user = User(name=data.name, email=data.email,
                hashed_password=get_password_hash(data.password),
                role=data.role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@router.get("/users", response_model=List[UserOut])
async def list_users(db: Session = Depends(get_db),
                     _: Actor = Depends(require_permission(PermissionType.user_manage))):
    return db.query(User).order_by(User.name).all()


@router.put("/users/{user_id}/role", response_model=UserOut)
async def update_user_role(user_id: str, data: RoleUpdate, db: Session = Depends(get_db),
                           actor: Actor = Depends(require_permission(PermissionType.user_manage))):
    if user_id == actor.id:
        raise HTTPException(status_code=400, detail="Você não pode alterar seu próprio cargo.")
    if data.role == UserRole.owner:
        raise HTTPException(status_code=400, detail="O cargo de Dono não pode ser atribuído.")
    target = db.get(User, user_id)
    if not target:
        raise HTTPException(status_code=404, detail="Usuário não encontrado.")
    if target.role == UserRole.owner:
        raise HTTPException(status_code=400, detail="O cargo de Dono não pode ser alterado.")
    target.role = data.role
    db.commit()
    db.refresh(target)
    return target


@router.post("/users/{user_id}/permissions", response_model=List[PermissionType])
async def grant_permission(user_id: str, data: PermissionGrant, db: Session = Depends(get_db),
                           _: Actor = Depends(require_permission(PermissionType.user_manage))):
    target = db.get(User, user_id)
    if not target:
        raise HTTPException(status_code=404, detail="Usuário não encontrado.")
    if data.permission not in {p.permission for p in target.permissions}:
        target.permissions.append(UserPermission(permission=data.permission))
        db.commit()
        db.refresh(target)
    return [p.permission for p in target.permissions]


@router.delete("/users/{user_id}/permissions/{permission}", response_model=List[PermissionType])
async def revoke_permission(user_id: str, permission: PermissionType,
                            db: Session = Depends(get_db),
                            _: Actor = Depends(require_permission(PermissionType.user_manage))):
    target = db.get(User, user_id)
    if not target:
        raise HTTPException(status_code=404, detail="Usuário não encontrado.")
    target.permissions = [p for p in target.permissions if p.permission != permission]
    db.commit()
    db.refresh(target)
    return [p.permission for p in target.permissions]


@router.get("/me", response_model=UserOut)
async def me(current: User = Depends(get_current_user)):
    return current
