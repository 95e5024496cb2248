"""
Service d'authentification des opérateurs
Les opérateurs (agents de sécurité, auditeurs) s'authentifient par jeton JWT.
"""
from datetime import datetime, timedelta
from typing import Optional
from jose import JWTError, jwt
import logging

from borne_biometrique.config import settings
from borne_biometrique.schemas.session import OperatorToken

logger = logging.getLogger(__name__)


def create_access_token(operator_id: str, role: str = "operator", expires_delta: Optional[timedelta] = None) -> str:
    """Créer un token JWT pour un opérateur"""
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode = {"sub": operator_id, "role": role, "exp": expire}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> Optional[OperatorToken]:
    """Décoder un token JWT ; None si invalide ou expiré"""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        logger.warning(f"Token opérateur refusé: {e}")
        return None

    operator_id = payload.get("sub")
    if not operator_id:
        return None
    return OperatorToken(operator_id=str(operator_id), role=payload.get("role", "operator"))
