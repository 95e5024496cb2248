"""
Modèle pour les sessions de vérification
"""
from sqlalchemy import Column, String, DateTime, Enum, Float, ForeignKey, Text
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
import uuid

from borne_biometrique.database import Base


class SessionStatus(str, enum.Enum):
    """Statuts d'une session (suivent les états de la cascade)"""
    INITIATED = "INITIATED"
    LIVENESS_CHECK = "LIVENESS_CHECK"
    ANTISPOOF_CHECK = "ANTISPOOF_CHECK"
    EMBEDDING_MATCH = "EMBEDDING_MATCH"
    BACKUP_VERIFY = "BACKUP_VERIFY"
    DIRECT_DECISION = "DIRECT_DECISION"
    DECISION = "DECISION"
    LIVENESS_FAILED = "LIVENESS_FAILED"
    SPOOF_DETECTED = "SPOOF_DETECTED"
    ERROR = "ERROR"
    FRAUD_DETECTED = "FRAUD_DETECTED"
    COMPLETED = "COMPLETED"


# Rang de chaque statut : une session ne revient jamais à un rang inférieur
STATUS_RANK = {
    SessionStatus.INITIATED: 0,
    SessionStatus.LIVENESS_CHECK: 1,
    SessionStatus.ANTISPOOF_CHECK: 2,
    SessionStatus.EMBEDDING_MATCH: 3,
    SessionStatus.BACKUP_VERIFY: 4,
    SessionStatus.DIRECT_DECISION: 5,
    SessionStatus.DECISION: 5,
    SessionStatus.LIVENESS_FAILED: 5,
    SessionStatus.SPOOF_DETECTED: 5,
    SessionStatus.ERROR: 5,
    SessionStatus.FRAUD_DETECTED: 6,
    SessionStatus.COMPLETED: 6,
}


class VerificationSession(Base):
    """Session de vérification ouverte sur une borne"""
    __tablename__ = "verification_sessions"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    session_code = Column(String(64), unique=True, index=True, default=lambda: str(uuid.uuid4()))
    terminal_id = Column(String(64), nullable=False, index=True)
    terminal_type = Column(String(64), nullable=True)
    subject_id = Column(String(64), ForeignKey("subjects.id"), nullable=True)

    status = Column(Enum(SessionStatus), default=SessionStatus.INITIATED, nullable=False)

    # Scores par dimension (dans [0, 1])
    liveness_score = Column(Float, nullable=True)
    spoof_score = Column(Float, nullable=True)
    face_match_score = Column(Float, nullable=True)
    fingerprint_score = Column(Float, nullable=True)
    document_match_score = Column(Float, nullable=True)
    overall_risk_score = Column(Float, nullable=True)

    # Orientation
    routing_decision = Column(String(32), nullable=True)
    routing_reason = Column(Text, nullable=True)

    started_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    # Relations
    alerts = relationship("RiskAlert", back_populates="session")

    def __repr__(self):
        return f"<VerificationSession {self.id} {self.status.value if self.status else None}>"
