"""
Schémas Pydantic pour le moteur de risque
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
import enum

from borne_biometrique.models.risk_alert import AlertSeverity, AlertType


class SessionScores(BaseModel):
    """Scores d'une session, tous dans [0, 1] ; absent = non mesuré"""
    liveness_score: Optional[float] = Field(None, ge=0, le=1)
    face_match_score: Optional[float] = Field(None, ge=0, le=1)
    document_match_score: Optional[float] = Field(None, ge=0, le=1)
    fingerprint_score: Optional[float] = Field(None, ge=0, le=1)


class Recommendation(str, enum.Enum):
    ALLOW = "ALLOW"
    REDIRECT = "REDIRECT"
    ALERT = "ALERT"
    BLOCK = "BLOCK"


class RiskAlertData(BaseModel):
    """Alerte générée par l'évaluation"""
    type: AlertType
    severity: AlertSeverity
    description: str
    evidence: Dict[str, Any] = {}


class RiskCheckResult(BaseModel):
    """Résultat de l'évaluation de risque d'une session"""
    session_id: str
    has_alerts: bool
    alerts: List[RiskAlertData]
    alert_ids: List[int] = []
    overall_risk_score: float
    recommendation: Recommendation


class DuplicateCheckResult(BaseModel):
    """Résultat de la recherche d'empreinte dupliquée"""
    is_duplicate: bool
    evidence: Dict[str, Any] = {}
    alert_id: Optional[int] = None


class AlertResponse(BaseModel):
    """Réponse alerte"""
    id: int
    session_id: str
    type: AlertType
    severity: AlertSeverity
    description: str
    evidence: Dict[str, Any]
    is_resolved: bool
    resolved_by: Optional[str]
    resolution: Optional[str]
    resolved_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class ResolveAlertRequest(BaseModel):
    """Résolution d'une alerte par un opérateur"""
    resolution: str = Field(min_length=1)


class FingerprintCaptureRequest(BaseModel):
    """Empreinte capturée sur la borne"""
    subject_id: Optional[str] = None
    finger: str
    template_iso: str
    quality: float = Field(0.0, ge=0, le=1)


class AlertStats(BaseModel):
    """Statistiques des alertes"""
    total: int
    pending: int
    resolved: int
    by_severity: Dict[str, int]
    by_type: Dict[str, int]


class FingerprintCaptureResult(BaseModel):
    """Résultat d'une capture d'empreinte"""
    success: bool
    template_hash: Optional[str] = None
    existing_subject_id: Optional[str] = None
    error: Optional[str] = None


class FingerprintVerifyResult(BaseModel):
    """Résultat d'une vérification d'empreinte contre le gabarit enregistré"""
    success: bool
    score: float = 0.0
    error: Optional[str] = None
