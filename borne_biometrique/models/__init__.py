# Modèles de données
# Importer tous les modèles pour que SQLAlchemy puisse résoudre les relations

from borne_biometrique.models.subject import Subject
from borne_biometrique.models.embedding import FaceEmbedding
from borne_biometrique.models.session import VerificationSession, SessionStatus, STATUS_RANK
from borne_biometrique.models.risk_alert import RiskAlert, AlertSeverity, AlertType, SEVERITY_RANK
from borne_biometrique.models.audit_event import AuditEvent, AuditOutcome
from borne_biometrique.models.fingerprint import FingerprintTemplate

__all__ = [
    "Subject",
    "FaceEmbedding",
    "VerificationSession",
    "SessionStatus",
    "STATUS_RANK",
    "RiskAlert",
    "AlertSeverity",
    "AlertType",
    "SEVERITY_RANK",
    "AuditEvent",
    "AuditOutcome",
    "FingerprintTemplate",
]
