"""
Routes de vérification : sessions, captures, enrôlement, orientation
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from borne_biometrique.database import get_db
from borne_biometrique.exceptions import ValidationError
from borne_biometrique.routers.auth import get_current_operator
from borne_biometrique.schemas.biometric import (
    CaptureRequest, CascadeResult, EnrollmentRecord, EnrollRequest, RawCaptureRequest
)
from borne_biometrique.schemas.risk import (
    FingerprintCaptureRequest, FingerprintCaptureResult, FingerprintVerifyResult
)
from borne_biometrique.schemas.routing import RoutingDecision, RoutingRequest
from borne_biometrique.schemas.session import OperatorToken, SessionCreate, SessionResponse, SessionStats
from borne_biometrique.services.biometric_service import biometric_service
from borne_biometrique.services.enrollment_service import enrollment_service
from borne_biometrique.services.fingerprint_service import fingerprint_service
from borne_biometrique.services.liveness_service import liveness_scorer
from borne_biometrique.services.session_service import session_service

router = APIRouter(prefix="/verification", tags=["Vérification"])


@router.post("/sessions", response_model=SessionResponse, status_code=201)
async def open_session(data: SessionCreate, db: AsyncSession = Depends(get_db)):
    """Ouvrir une session sur une borne"""
    return await biometric_service.open_session(db, data)


@router.get("/sessions/stats", response_model=SessionStats)
async def get_session_stats(terminal_id: str = None, db: AsyncSession = Depends(get_db)):
    """Statistiques des sessions (globales ou par borne)"""
    return await session_service.stats(db, terminal_id)


@router.get("/sessions/code/{session_code}", response_model=SessionResponse)
async def get_session_by_code(session_code: str, db: AsyncSession = Depends(get_db)):
    return await session_service.get_by_code(db, session_code)


@router.get("/terminals/{terminal_id}/sessions", response_model=List[SessionResponse])
async def list_terminal_sessions(
    terminal_id: str,
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db)
):
    """Dernières sessions d'une borne"""
    return await session_service.list_by_terminal(db, terminal_id, limit)


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, db: AsyncSession = Depends(get_db)):
    return await session_service.get(db, session_id)


@router.post("/sessions/{session_id}/capture", response_model=CascadeResult)
async def submit_capture(session_id: str, data: CaptureRequest, db: AsyncSession = Depends(get_db)):
    """Soumettre une capture (caractéristiques extraites sur la borne)"""
    return await biometric_service.submit_capture(db, session_id, data)


@router.post("/sessions/{session_id}/capture/raw", response_model=CascadeResult)
async def submit_raw_capture(session_id: str, data: RawCaptureRequest, db: AsyncSession = Depends(get_db)):
    """Soumettre une image brute analysée par le fournisseur de perception"""
    return await biometric_service.submit_raw_capture(db, session_id, data)


@router.post("/sessions/{session_id}/fingerprint", response_model=FingerprintCaptureResult)
async def capture_fingerprint(
    session_id: str,
    data: FingerprintCaptureRequest,
    db: AsyncSession = Depends(get_db)
):
    """Enregistrer une empreinte digitale"""
    return await fingerprint_service.capture(db, session_id, data)


@router.post("/sessions/{session_id}/fingerprint/verify", response_model=FingerprintVerifyResult)
async def verify_fingerprint(
    session_id: str,
    data: FingerprintCaptureRequest,
    db: AsyncSession = Depends(get_db)
):
    """Comparer une empreinte au gabarit enregistré du sujet"""
    if not data.subject_id:
        raise ValidationError("subject_id requis pour vérifier une empreinte")
    return await fingerprint_service.verify(db, session_id, data.subject_id, data.finger, data.template_iso)


@router.post("/sessions/{session_id}/routing", response_model=RoutingDecision)
async def decide_routing(session_id: str, data: RoutingRequest, db: AsyncSession = Depends(get_db)):
    """Orienter la personne à la fin de sa session"""
    return await biometric_service.decide_routing(db, session_id, data.service_requested)


@router.post("/enroll", response_model=EnrollmentRecord, status_code=201)
async def enroll(
    data: EnrollRequest,
    operator: OperatorToken = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db)
):
    """Enrôler un sujet (opérateur requis)"""
    return await biometric_service.enroll(db, data)


@router.delete("/subjects/{subject_id}/embeddings")
async def deactivate_subject(
    subject_id: str,
    operator: OperatorToken = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db)
):
    """Désactiver les embeddings d'un sujet"""
    count = await enrollment_service.deactivate(db, subject_id)
    return {"subject_id": subject_id, "deactivated": count}


@router.get("/mesh-quality")
async def check_mesh_quality(landmarks: int = Query(..., ge=0)):
    """Contrôle rapide du maillage facial avant capture"""
    valid, quality = liveness_scorer.validate_mesh_quality(landmarks)
    return {"valid": valid, "quality": quality}
