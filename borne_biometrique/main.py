"""
Application principale FastAPI
"""
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from borne_biometrique.config import settings, validate_settings
from borne_biometrique.database import init_db
from borne_biometrique.exceptions import (
    AuditIntegrityError, AuditWriteError, BiometricError, ExternalProviderError,
    InvalidTransitionError, NotFoundError, ValidationError
)
from borne_biometrique.routers import audit, auth, risk, verification

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Cycle de vie de l'application"""
    # Startup
    logging.getLogger().setLevel(settings.LOG_LEVEL)
    validate_settings()
    logger.info(f"Configuration validée (cascade {settings.CASCADE.version})")
    await init_db()
    logger.info("Base de données initialisée")
    yield
    # Shutdown
    logger.info("Arrêt de l'application")


# Créer l'application FastAPI
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="""
    Borne d'authentification biométrique

    - Vérification faciale en cascade (vivacité, anti-usurpation, embedding, secours)
    - Détection de fraude et alertes de risque
    - Orientation post-vérification
    - Journal d'audit chaîné et vérifiable
    """,
    lifespan=lifespan
)

# Configuration CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # En production, spécifier les origines autorisées
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _status_for(exc: BiometricError) -> int:
    if isinstance(exc, InvalidTransitionError):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ExternalProviderError):
        return status.HTTP_502_BAD_GATEWAY
    if isinstance(exc, AuditIntegrityError):
        return status.HTTP_409_CONFLICT
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(BiometricError)
async def biometric_error_handler(request: Request, exc: BiometricError):
    """Traduire les erreurs métier en réponses HTTP"""
    if isinstance(exc, AuditWriteError):
        logger.error(f"Écriture d'audit impossible sur {request.url.path}: {exc}")
    return JSONResponse(status_code=_status_for(exc), content={"detail": str(exc)})


# Inclure les routers
app.include_router(auth.router, prefix="/api")
app.include_router(verification.router, prefix="/api")
app.include_router(risk.router, prefix="/api")
app.include_router(audit.router, prefix="/api")


@app.get("/")
async def root():
    """Page d'accueil"""
    return {
        "message": "Borne biométrique",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc"
    }


@app.get("/health")
async def health_check():
    """Vérification de santé"""
    return {"status": "healthy", "version": settings.APP_VERSION}
