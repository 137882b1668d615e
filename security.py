# security.py
import os
from datetime import datetime, timedelta, timezone

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from database import get_db
from models import Usuario
from schemas import TokenData

ALGORITHM = "HS256"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/login", auto_error=False)


def _secret() -> str:
    return os.getenv("JWT_SECRET", "cambia-esta-clave")


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def create_access_token(user_id: int, nombre: str | None, rol: str, expires_delta: timedelta | None = None) -> str:
    if expires_delta is None:
        expires_delta = timedelta(hours=int(os.getenv("JWT_EXPIRE_HOURS", "8")))
    payload = {
        "id": user_id,
        "nombre": nombre,
        "rol": rol,
        "exp": datetime.now(timezone.utc) + expires_delta,
    }
    return jwt.encode(payload, _secret(), algorithm=ALGORITHM)


def get_current_user(token: str | None = Depends(oauth2_scheme)) -> TokenData:
    # Sin token -> 401, token inválido o vencido -> 403
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token de acceso requerido",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = jwt.decode(token, _secret(), algorithms=[ALGORITHM])
        return TokenData(**payload)
    except (JWTError, ValueError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Token inválido o expirado")


def require_admin(current: TokenData = Depends(get_current_user), db: Session = Depends(get_db)) -> TokenData:
    """El rol se consulta en la base: un admin degradado pierde acceso aunque su token siga vigente."""
    usuario = db.get(Usuario, current.id)
    if not usuario or usuario.rol != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Acceso denegado. Se requiere rol de administrador.",
        )
    return current
