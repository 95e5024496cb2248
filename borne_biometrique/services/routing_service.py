"""
Moteur d'orientation post-vérification
Table de règles évaluée dans un ordre fixe : la première règle applicable l'emporte.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Optional
import logging

from borne_biometrique.config import RoutingSettings, settings
from borne_biometrique.models.audit_event import AuditOutcome
from borne_biometrique.models.risk_alert import AlertSeverity, RiskAlert
from borne_biometrique.models.session import VerificationSession
from borne_biometrique.schemas.routing import (
    RoutingContext, RoutingDecision, RoutingDestination, RoutingPriority
)
from borne_biometrique.services.audit_service import AuditChain, audit_chain
from borne_biometrique.services.session_service import SessionService, session_service

logger = logging.getLogger(__name__)

TERMINAL_ROUTES = {
    "KIOSK_LAB": (RoutingDestination.LABORATORY, "Borne du laboratoire - orienter vers les prélèvements"),
    "KIOSK_PHARMACY": (RoutingDestination.PHARMACY, "Borne de la pharmacie - orienter vers la délivrance"),
    "KIOSK_IMAGING": (RoutingDestination.IMAGING, "Borne d'imagerie - orienter vers la salle d'attente d'imagerie"),
}

SERVICE_ROUTES = {
    "CONSULTATION_GENERALE": (RoutingDestination.CONSULTATION, "Consultation de médecine générale"),
    "CONSULTATION_SPECIALISTE": (RoutingDestination.SPECIALIST, "Consultation spécialisée"),
    "URGENCES": (RoutingDestination.EMERGENCY, "Service des urgences"),
    "LABORATOIRE": (RoutingDestination.LABORATORY, "Examens de laboratoire"),
    "PHARMACIE": (RoutingDestination.PHARMACY, "Délivrance de médicaments"),
    "IMAGERIE": (RoutingDestination.IMAGING, "Imagerie médicale"),
    "TRIAGE": (RoutingDestination.TRIAGE, "Classification de l'urgence"),
}

INSTRUCTIONS = {
    RoutingDestination.TRIAGE: "Rendez-vous à l'accueil de triage pour une première évaluation.",
    RoutingDestination.CONSULTATION: "Patientez en salle de consultation externe. Vous serez appelé par votre nom.",
    RoutingDestination.LABORATORY: "Rendez-vous au laboratoire au premier étage.",
    RoutingDestination.PHARMACY: "Présentez-vous à la pharmacie avec votre ordonnance.",
    RoutingDestination.IMAGING: "Rendez-vous au service d'imagerie au deuxième étage.",
    RoutingDestination.EMERGENCY: "Rendez-vous immédiatement aux urgences.",
    RoutingDestination.AUDIT_OFFICE: "Veuillez patienter, un agent va vous recevoir.",
    RoutingDestination.DOCUMENT_WINDOW: "Rendez-vous au guichet de vérification des documents.",
    RoutingDestination.WAITING_ROOM: "Installez-vous dans la salle d'attente principale.",
    RoutingDestination.SPECIALIST: "Rendez-vous en consultation spécialisée au troisième étage.",
}


class RoutingEngine:
    """Décide de la destination d'une personne après vérification"""

    def __init__(
        self,
        audit: Optional[AuditChain] = None,
        sessions: Optional[SessionService] = None,
        routing_settings: Optional[RoutingSettings] = None,
    ):
        self.audit = audit or audit_chain
        self.sessions = sessions or session_service
        self.settings = routing_settings or settings.ROUTING

    def decide(self, context: RoutingContext) -> RoutingDecision:
        """Appliquer la table de règles (fonction pure)"""
        if AlertSeverity.CRITICAL in context.alert_severities:
            return self._decision(
                RoutingDestination.AUDIT_OFFICE,
                "Alerte de sécurité critique détectée",
                RoutingPriority.URGENT,
            )

        if context.risk_score >= self.settings.high_risk_score:
            return self._decision(
                RoutingDestination.DOCUMENT_WINDOW,
                "Risque biométrique élevé - vérification manuelle requise",
                RoutingPriority.PRIORITY,
            )

        if context.terminal_type in TERMINAL_ROUTES:
            destination, reason = TERMINAL_ROUTES[context.terminal_type]
            return self._decision(destination, reason, RoutingPriority.NORMAL)

        if context.service_requested:
            destination, reason = SERVICE_ROUTES.get(
                context.service_requested.upper(),
                (RoutingDestination.WAITING_ROOM, "Service général"),
            )
            return self._decision(destination, reason, RoutingPriority.NORMAL)

        return self._decision(
            RoutingDestination.WAITING_ROOM,
            "Enregistrement terminé avec succès",
            RoutingPriority.NORMAL,
        )

    def _decision(self, destination: RoutingDestination, reason: str, priority: RoutingPriority) -> RoutingDecision:
        return RoutingDecision(
            destination=destination,
            reason=reason,
            priority=priority,
            instructions=INSTRUCTIONS[destination],
        )

    async def build_context(
        self,
        db: AsyncSession,
        session: VerificationSession,
        service_requested: Optional[str] = None
    ) -> RoutingContext:
        """Construire le contexte à partir de la session et de ses alertes non résolues"""
        result = await db.execute(
            select(RiskAlert.severity)
            .where(RiskAlert.session_id == session.id)
            .where(RiskAlert.is_resolved == False)  # noqa: E712
        )
        return RoutingContext(
            session_id=session.id,
            terminal_id=session.terminal_id,
            terminal_type=session.terminal_type,
            subject_id=session.subject_id,
            service_requested=service_requested,
            risk_score=session.overall_risk_score or 0.0,
            alert_severities=list(result.scalars().all()),
        )

    async def route(self, db: AsyncSession, context: RoutingContext) -> RoutingDecision:
        """
        Décider puis enregistrer la décision sur la session et dans l'audit
        Raises:
            NotFoundError: session inconnue
        """
        session = await self.sessions.get(db, context.session_id)
        decision = self.decide(context)

        await self.sessions.complete(db, session, decision.destination.value, decision.reason)
        logger.info(
            f"Session {session.id} orientée vers {decision.destination.value} "
            f"({decision.priority.value})"
        )

        await self.audit.log(
            db,
            action="ROUTING_DECISION",
            resource="routing",
            outcome=AuditOutcome.SUCCESS,
            session_id=session.id,
            terminal_id=session.terminal_id,
            subject_id=session.subject_id,
            details=decision.model_dump(mode="json"),
        )
        return decision


# Instance globale du service
routing_engine = RoutingEngine()
