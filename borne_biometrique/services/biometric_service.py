"""
Service biométrique de la borne
Point d'entrée unique du cœur : captures, enrôlement, risque, orientation, audit.
"""
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from borne_biometrique.exceptions import (
    AuditIntegrityError, ExternalProviderError, InvalidTransitionError, NotFoundError
)
from borne_biometrique.models.audit_event import AuditEvent, AuditOutcome
from borne_biometrique.models.session import SessionStatus, VerificationSession
from borne_biometrique.schemas.audit import AuditEventCreate, IntegrityReport
from borne_biometrique.schemas.biometric import (
    CaptureRequest, CascadeResult, EnrollmentRecord, EnrollRequest, RawCaptureRequest
)
from borne_biometrique.schemas.risk import RiskCheckResult, SessionScores
from borne_biometrique.schemas.routing import RoutingDecision
from borne_biometrique.schemas.session import SessionCreate
from borne_biometrique.services.audit_service import AuditChain, audit_chain
from borne_biometrique.services.cascade_service import CascadeOrchestrator, get_cascade_orchestrator
from borne_biometrique.services.enrollment_service import EnrollmentService, enrollment_service
from borne_biometrique.services.perception import PerceptionProvider, UnavailablePerceptionProvider
from borne_biometrique.services.risk_service import RiskAggregator, risk_aggregator
from borne_biometrique.services.routing_service import RoutingEngine, routing_engine
from borne_biometrique.services.session_service import SessionService, session_service

logger = logging.getLogger(__name__)


class BiometricService:
    """Service biométrique de la borne"""

    def __init__(
        self,
        cascade: Optional[CascadeOrchestrator] = None,
        enrollment: Optional[EnrollmentService] = None,
        risk: Optional[RiskAggregator] = None,
        routing: Optional[RoutingEngine] = None,
        audit: Optional[AuditChain] = None,
        sessions: Optional[SessionService] = None,
        perception: Optional[PerceptionProvider] = None,
    ):
        self._cascade = cascade
        self.enrollment = enrollment or enrollment_service
        self.risk = risk or risk_aggregator
        self.routing = routing or routing_engine
        self.audit = audit or audit_chain
        self.sessions = sessions or session_service
        self.perception = perception or UnavailablePerceptionProvider()

    @property
    def cascade(self) -> CascadeOrchestrator:
        # Construit à la première utilisation, une fois la configuration validée
        if self._cascade is None:
            self._cascade = get_cascade_orchestrator()
        return self._cascade

    async def open_session(self, db: AsyncSession, data: SessionCreate) -> VerificationSession:
        return await self.sessions.create(db, data)

    async def _open_for_capture(self, db: AsyncSession, session_id: str) -> VerificationSession:
        """Session encore à l'état INITIATED ; tout refus est audité avant d'être levé"""
        try:
            session = await self.sessions.get(db, session_id)
        except NotFoundError as e:
            await self._audit_rejection(db, session_id, None, e)
            raise

        if session.status != SessionStatus.INITIATED:
            error = InvalidTransitionError(
                f"La session {session_id} a déjà été vérifiée (statut {session.status.value})"
            )
            await self._audit_rejection(db, session_id, session.terminal_id, error)
            raise error
        return session

    async def _audit_rejection(
        self,
        db: AsyncSession,
        session_id: str,
        terminal_id: Optional[str],
        error: Exception
    ) -> None:
        logger.warning(f"Capture refusée pour la session {session_id}: {error}")
        await self.audit.log(
            db,
            action="CASCADE_REJECTED",
            resource="cascade",
            outcome=AuditOutcome.FAILURE,
            session_id=session_id,
            terminal_id=terminal_id,
            details={"error": str(error), "error_type": type(error).__name__},
        )

    async def submit_capture(self, db: AsyncSession, session_id: str, capture: CaptureRequest) -> CascadeResult:
        """
        Lancer la cascade pour une session ouverte.
        Si la session désigne un sujet connu, la comparaison se fait 1:1.
        Raises:
            NotFoundError: session inconnue
            InvalidTransitionError: la session a déjà été vérifiée
            ValidationError: embedding invalide
        """
        session = await self._open_for_capture(db, session_id)
        candidates = await self.enrollment.load_candidates(db, subject_id=session.subject_id)
        return await self.cascade.verify(db, capture, candidates, session=session)

    async def submit_raw_capture(self, db: AsyncSession, session_id: str, raw: RawCaptureRequest) -> CascadeResult:
        """
        Extraire les caractéristiques d'une image brute puis lancer la cascade
        Raises:
            ExternalProviderError: le fournisseur de perception a échoué (audité en ERROR)
        """
        session = await self._open_for_capture(db, session_id)
        try:
            extracted = await self.perception.extract(raw.image_base64)
        except ExternalProviderError as e:
            logger.error(f"Extraction impossible pour la session {session_id}: {e}")
            await self.audit.log(
                db,
                action="PERCEPTION_EXTRACT",
                resource="perception",
                outcome=AuditOutcome.ERROR,
                session_id=session_id,
                terminal_id=session.terminal_id,
                details={"error": str(e), "provider": type(self.perception).__name__},
            )
            raise

        capture = CaptureRequest(
            embedding=extracted.embedding,
            image_base64=raw.image_base64,
            liveness_features=extracted.liveness_features,
            anti_spoof_features=extracted.anti_spoof_features,
        )
        candidates = await self.enrollment.load_candidates(db, subject_id=session.subject_id)
        return await self.cascade.verify(db, capture, candidates, session=session)

    async def enroll(self, db: AsyncSession, request: EnrollRequest) -> EnrollmentRecord:
        return await self.enrollment.enroll(db, request)

    async def evaluate_risk(self, db: AsyncSession, session_id: str, scores: SessionScores) -> RiskCheckResult:
        return await self.risk.evaluate_session(db, session_id, scores)

    async def decide_routing(
        self,
        db: AsyncSession,
        session_id: str,
        service_requested: Optional[str] = None
    ) -> RoutingDecision:
        """Orienter la personne d'après l'état de sa session"""
        session = await self.sessions.get(db, session_id)
        context = await self.routing.build_context(db, session, service_requested)
        return await self.routing.route(db, context)

    async def append_audit(self, db: AsyncSession, event: AuditEventCreate) -> AuditEvent:
        return await self.audit.append(db, event)

    async def verify_audit_integrity(
        self,
        db: AsyncSession,
        start_id: Optional[int] = None,
        end_id: Optional[int] = None,
        strict: bool = False
    ) -> IntegrityReport:
        """
        Revérifier la chaîne d'audit
        Raises:
            AuditIntegrityError: chaîne invalide et strict=True
        """
        report = await self.audit.verify_integrity(db, start_id, end_id)
        if strict and not report.is_valid:
            raise AuditIntegrityError(report.invalid_event_ids)
        return report


# Instance globale du service
biometric_service = BiometricService()
