"""
Modèle pour le journal d'audit chaîné
"""
from sqlalchemy import Column, Integer, String, DateTime, Enum, JSON
from datetime import datetime
import enum

from borne_biometrique.database import Base


# previous_hash du premier événement de la chaîne
GENESIS_HASH = "0" * 64


class AuditOutcome(str, enum.Enum):
    """Issue d'une action auditée"""
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    ERROR = "ERROR"


class AuditEvent(Base):
    """
    Événement d'audit en ajout seul.
    event_hash = SHA256(champs sérialisés || horodatage || previous_hash)
    signature  = SHA256(event_hash || secret)
    Le premier événement pointe sur GENESIS_HASH.
    La validité de la chaîne se recalcule, elle n'est jamais stockée.
    """
    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(64), nullable=True, index=True)
    terminal_id = Column(String(64), nullable=True, index=True)
    subject_id = Column(String(64), nullable=True)

    action = Column(String(100), nullable=False, index=True)
    resource = Column(String(100), nullable=False)
    outcome = Column(Enum(AuditOutcome), nullable=False)
    details = Column(JSON, default=dict)

    event_hash = Column(String(64), nullable=False, unique=True)
    # Unique : deux écrivains partis de la même queue ne peuvent pas tous deux réussir
    previous_hash = Column(String(64), nullable=False, unique=True)
    signature = Column(String(64), nullable=False)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<AuditEvent {self.action} {self.outcome.value}>"
