"""
Service de gestion des sessions de vérification
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from datetime import datetime
from typing import List, Optional
import logging

from borne_biometrique.exceptions import InvalidTransitionError, NotFoundError
from borne_biometrique.models.risk_alert import RiskAlert
from borne_biometrique.models.session import STATUS_RANK, SessionStatus, VerificationSession
from borne_biometrique.schemas.session import SessionCreate, SessionStats

logger = logging.getLogger(__name__)

FAILED_STATUSES = (
    SessionStatus.LIVENESS_FAILED,
    SessionStatus.SPOOF_DETECTED,
    SessionStatus.ERROR,
)

SCORE_FIELDS = {
    "subject_id",
    "liveness_score",
    "spoof_score",
    "face_match_score",
    "fingerprint_score",
    "document_match_score",
    "overall_risk_score",
}


class SessionService:
    """Cycle de vie des sessions : le statut ne régresse jamais"""

    async def create(self, db: AsyncSession, data: SessionCreate) -> VerificationSession:
        session = VerificationSession(
            terminal_id=data.terminal_id,
            terminal_type=data.terminal_type,
            subject_id=data.subject_id,
            status=SessionStatus.INITIATED,
        )
        db.add(session)
        await db.commit()
        await db.refresh(session)

        logger.info(f"Session {session.id} ouverte sur la borne {session.terminal_id}")
        return session

    async def get(self, db: AsyncSession, session_id: str) -> VerificationSession:
        """
        Raises:
            NotFoundError: session inconnue
        """
        result = await db.execute(select(VerificationSession).where(VerificationSession.id == session_id))
        session = result.scalar_one_or_none()
        if session is None:
            raise NotFoundError(f"Session {session_id} introuvable")
        return session

    async def get_by_code(self, db: AsyncSession, session_code: str) -> VerificationSession:
        result = await db.execute(
            select(VerificationSession).where(VerificationSession.session_code == session_code)
        )
        session = result.scalar_one_or_none()
        if session is None:
            raise NotFoundError(f"Session de code {session_code} introuvable")
        return session

    async def list_by_terminal(self, db: AsyncSession, terminal_id: str, limit: int = 50) -> List[VerificationSession]:
        """Dernières sessions d'une borne"""
        result = await db.execute(
            select(VerificationSession)
            .where(VerificationSession.terminal_id == terminal_id)
            .order_by(VerificationSession.started_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_with_pending_alerts(self, db: AsyncSession) -> List[VerificationSession]:
        """Sessions ayant au moins une alerte non résolue"""
        result = await db.execute(
            select(VerificationSession)
            .join(RiskAlert, RiskAlert.session_id == VerificationSession.id)
            .where(RiskAlert.is_resolved == False)  # noqa: E712
            .distinct()
            .order_by(VerificationSession.started_at.desc())
        )
        return list(result.scalars().all())

    async def advance(
        self,
        db: AsyncSession,
        session: VerificationSession,
        status: SessionStatus,
        **fields
    ) -> VerificationSession:
        """
        Faire progresser une session vers un statut de rang supérieur
        (ou identique) et enregistrer les scores fournis.
        Raises:
            InvalidTransitionError: le statut demandé ferait régresser la session
        """
        current = session.status or SessionStatus.INITIATED
        if status != current and STATUS_RANK[status] <= STATUS_RANK[current]:
            raise InvalidTransitionError(
                f"Transition interdite pour la session {session.id}: {current.value} -> {status.value}"
            )

        unknown = set(fields) - SCORE_FIELDS
        if unknown:
            raise ValueError(f"Champs de session inconnus: {', '.join(sorted(unknown))}")
        for name, value in fields.items():
            setattr(session, name, value)

        session.status = status
        if status in (SessionStatus.COMPLETED, SessionStatus.FRAUD_DETECTED) and session.completed_at is None:
            session.completed_at = datetime.utcnow()

        await db.commit()
        logger.debug(f"Session {session.id}: {current.value} -> {status.value}")
        return session

    async def update_scores(self, db: AsyncSession, session: VerificationSession, **fields) -> VerificationSession:
        """Enregistrer des scores sans changer le statut"""
        return await self.advance(db, session, session.status, **fields)

    async def complete(
        self,
        db: AsyncSession,
        session: VerificationSession,
        destination: str,
        reason: str
    ) -> VerificationSession:
        """
        Enregistrer l'orientation et clôturer la session.
        Une session déjà marquée frauduleuse garde ce statut.
        """
        session.routing_decision = destination
        session.routing_reason = reason
        if session.status == SessionStatus.FRAUD_DETECTED:
            await db.commit()
            return session
        return await self.advance(db, session, SessionStatus.COMPLETED)

    async def mark_fraud(self, db: AsyncSession, session: VerificationSession) -> VerificationSession:
        logger.warning(f"Session {session.id} marquée frauduleuse")
        return await self.advance(db, session, SessionStatus.FRAUD_DETECTED)

    async def stats(self, db: AsyncSession, terminal_id: Optional[str] = None) -> SessionStats:
        """Statistiques globales ou par borne"""
        query = select(VerificationSession.status, func.count(VerificationSession.id))
        if terminal_id:
            query = query.where(VerificationSession.terminal_id == terminal_id)
        counts = dict((await db.execute(query.group_by(VerificationSession.status))).all())

        total = sum(counts.values())
        completed = counts.get(SessionStatus.COMPLETED, 0)
        failed = sum(counts.get(status, 0) for status in FAILED_STATUSES)
        fraud = counts.get(SessionStatus.FRAUD_DETECTED, 0)

        return SessionStats(
            total=total,
            completed=completed,
            failed=failed,
            fraud_detected=fraud,
            success_rate=completed / total * 100 if total else 0.0,
            fraud_rate=fraud / total * 100 if total else 0.0,
        )


# Instance globale du service
session_service = SessionService()
