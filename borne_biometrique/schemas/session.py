"""
Schémas Pydantic pour les sessions de vérification
"""
from pydantic import BaseModel
from typing import Optional
from datetime import datetime

from borne_biometrique.models.session import SessionStatus


class SessionCreate(BaseModel):
    """Ouverture d'une session sur une borne"""
    terminal_id: str
    terminal_type: Optional[str] = None
    subject_id: Optional[str] = None


class SessionResponse(BaseModel):
    """Réponse session"""
    id: str
    session_code: str
    terminal_id: str
    terminal_type: Optional[str]
    subject_id: Optional[str]
    status: SessionStatus
    liveness_score: Optional[float]
    spoof_score: Optional[float]
    face_match_score: Optional[float]
    fingerprint_score: Optional[float]
    document_match_score: Optional[float]
    overall_risk_score: Optional[float]
    routing_decision: Optional[str]
    routing_reason: Optional[str]
    started_at: datetime
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True


class SessionStats(BaseModel):
    """Statistiques de sessions"""
    total: int
    completed: int
    failed: int
    fraud_detected: int
    success_rate: float
    fraud_rate: float


class OperatorToken(BaseModel):
    """Contenu d'un jeton opérateur"""
    operator_id: str
    role: str = "operator"
