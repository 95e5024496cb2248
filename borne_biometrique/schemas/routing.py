"""
Schémas Pydantic pour l'orientation post-vérification
"""
from pydantic import BaseModel
from typing import Optional, List
import enum

from borne_biometrique.models.risk_alert import AlertSeverity


class RoutingDestination(str, enum.Enum):
    TRIAGE = "TRIAGE"
    CONSULTATION = "CONSULTATION"
    LABORATORY = "LABORATORY"
    PHARMACY = "PHARMACY"
    IMAGING = "IMAGING"
    EMERGENCY = "EMERGENCY"
    AUDIT_OFFICE = "AUDIT_OFFICE"
    DOCUMENT_WINDOW = "DOCUMENT_WINDOW"
    WAITING_ROOM = "WAITING_ROOM"
    SPECIALIST = "SPECIALIST"


class RoutingPriority(str, enum.Enum):
    NORMAL = "NORMAL"
    PRIORITY = "PRIORITY"
    URGENT = "URGENT"


class RoutingContext(BaseModel):
    """Contexte de session consommé par la table de règles"""
    session_id: str
    terminal_id: str
    terminal_type: Optional[str] = None
    subject_id: Optional[str] = None
    service_requested: Optional[str] = None
    risk_score: float = 0.0
    alert_severities: List[AlertSeverity] = []


class RoutingRequest(BaseModel):
    """Requête d'orientation (le reste du contexte vient de la session)"""
    service_requested: Optional[str] = None


class RoutingDecision(BaseModel):
    """Destination décidée pour la personne"""
    destination: RoutingDestination
    reason: str
    priority: RoutingPriority
    instructions: str
