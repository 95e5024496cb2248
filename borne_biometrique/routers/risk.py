"""
Routes du moteur de risque et des alertes
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from borne_biometrique.database import get_db
from borne_biometrique.routers.auth import get_current_operator
from borne_biometrique.schemas.risk import (
    AlertResponse, AlertStats, DuplicateCheckResult, ResolveAlertRequest, RiskCheckResult, SessionScores
)
from borne_biometrique.schemas.session import OperatorToken, SessionResponse
from borne_biometrique.services.biometric_service import biometric_service
from borne_biometrique.services.risk_service import risk_aggregator
from borne_biometrique.services.session_service import session_service

router = APIRouter(prefix="/risk", tags=["Risque"])


@router.post("/sessions/{session_id}/evaluate", response_model=RiskCheckResult)
async def evaluate_session(session_id: str, scores: SessionScores, db: AsyncSession = Depends(get_db)):
    """Évaluer le risque d'une session à partir de ses scores"""
    return await biometric_service.evaluate_risk(db, session_id, scores)


@router.post("/sessions/{session_id}/duplicate-check", response_model=DuplicateCheckResult)
async def check_duplicate_fingerprint(session_id: str, db: AsyncSession = Depends(get_db)):
    """Rechercher une empreinte de la session enregistrée pour une autre identité"""
    return await risk_aggregator.check_duplicate_fingerprint(db, session_id)


@router.get("/sessions/pending-alerts", response_model=List[SessionResponse])
async def list_sessions_with_pending_alerts(
    operator: OperatorToken = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db)
):
    return await session_service.list_with_pending_alerts(db)


@router.get("/alerts", response_model=List[AlertResponse])
async def list_pending_alerts(
    limit: int = Query(100, ge=1, le=1000),
    operator: OperatorToken = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db)
):
    """Alertes en attente de traitement"""
    return await risk_aggregator.list_pending_alerts(db, limit)


@router.get("/alerts/stats", response_model=AlertStats)
async def get_alert_stats(
    operator: OperatorToken = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db)
):
    return await risk_aggregator.stats(db)


@router.post("/alerts/{alert_id}/resolve", response_model=AlertResponse)
async def resolve_alert(
    alert_id: int,
    data: ResolveAlertRequest,
    operator: OperatorToken = Depends(get_current_operator),
    db: AsyncSession = Depends(get_db)
):
    """Résoudre une alerte ; l'opérateur connecté est enregistré comme résolveur"""
    return await risk_aggregator.resolve_alert(db, alert_id, operator.operator_id, data.resolution)
