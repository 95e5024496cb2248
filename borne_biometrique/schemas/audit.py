"""
Schémas Pydantic pour le journal d'audit
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime

from borne_biometrique.models.audit_event import AuditOutcome


class AuditEventCreate(BaseModel):
    """Événement à ajouter à la chaîne"""
    action: str = Field(min_length=1)
    resource: str = Field(min_length=1)
    outcome: AuditOutcome
    session_id: Optional[str] = None
    terminal_id: Optional[str] = None
    subject_id: Optional[str] = None
    details: Dict[str, Any] = {}


class AuditEventResponse(BaseModel):
    """Réponse événement d'audit"""
    id: int
    action: str
    resource: str
    outcome: AuditOutcome
    session_id: Optional[str]
    terminal_id: Optional[str]
    subject_id: Optional[str]
    details: Dict[str, Any]
    event_hash: str
    previous_hash: str
    signature: str
    created_at: datetime

    class Config:
        from_attributes = True


class IntegrityReport(BaseModel):
    """Rapport de vérification de la chaîne (jamais réparée automatiquement)"""
    is_valid: bool
    total_events: int
    invalid_event_ids: List[int]
    start_id: Optional[int] = None
    end_id: Optional[int] = None


class ActionCount(BaseModel):
    action: str
    count: int


class AuditStats(BaseModel):
    """Statistiques d'audit"""
    total: int
    success: int
    failure: int
    error: int
    by_action: List[ActionCount]
