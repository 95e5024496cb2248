"""
Authentification des opérateurs
Les jetons sont émis hors de l'API ; elle se contente de les vérifier.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from borne_biometrique.schemas.session import OperatorToken
from borne_biometrique.services.auth_service import decode_access_token

router = APIRouter(prefix="/auth", tags=["Authentification"])

bearer_scheme = HTTPBearer(auto_error=False, description="Jeton JWT opérateur")


async def get_current_operator(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> OperatorToken:
    """Récupérer l'opérateur courant à partir du token"""
    operator = decode_access_token(credentials.credentials) if credentials else None
    if operator is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token invalide",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return operator


@router.get("/me", response_model=OperatorToken)
async def get_me(operator: OperatorToken = Depends(get_current_operator)):
    """Récupérer l'opérateur connecté"""
    return operator
