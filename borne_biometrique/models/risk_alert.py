"""
Modèle pour les alertes de risque
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Enum, Boolean, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from borne_biometrique.database import Base


class AlertSeverity(str, enum.Enum):
    """Gravité d'une alerte"""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# Ordre de tri : la plus grave en premier
SEVERITY_RANK = {
    AlertSeverity.LOW: 0,
    AlertSeverity.MEDIUM: 1,
    AlertSeverity.HIGH: 2,
    AlertSeverity.CRITICAL: 3,
}


class AlertType(str, enum.Enum):
    """Types d'alertes de fraude"""
    LIVENESS_FAILED = "LIVENESS_FAILED"
    IDENTITY_SPOOFING = "IDENTITY_SPOOFING"
    FACE_DOCUMENT_MISMATCH = "FACE_DOCUMENT_MISMATCH"
    FINGERPRINT_MISMATCH = "FINGERPRINT_MISMATCH"
    FINGERPRINT_DUPLICATE = "FINGERPRINT_DUPLICATE"


class RiskAlert(Base):
    """Alerte de risque : jamais supprimée, seulement résolue"""
    __tablename__ = "risk_alerts"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(64), ForeignKey("verification_sessions.id"), nullable=False, index=True)

    type = Column(Enum(AlertType), nullable=False)
    severity = Column(Enum(AlertSeverity), nullable=False)
    description = Column(Text, nullable=False)
    evidence = Column(JSON, default=dict)
    scores = Column(JSON, nullable=True)

    # Résolution
    is_resolved = Column(Boolean, default=False, index=True)
    resolved_by = Column(String(100), nullable=True)
    resolution = Column(Text, nullable=True)
    resolved_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relations
    session = relationship("VerificationSession", back_populates="alerts")

    def __repr__(self):
        return f"<RiskAlert {self.type.value} {self.severity.value}>"
