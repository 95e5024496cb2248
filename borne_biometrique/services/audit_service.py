"""
Service d'audit à hachage chaîné
Chaque événement référence le hash du précédent : toute altération d'un
événement invalide cet événement et tous ceux qui le suivent.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy import select, func
from datetime import datetime
from typing import Any, Dict, List, Optional
import asyncio
import hashlib
import json
import logging

from borne_biometrique.config import settings
from borne_biometrique.exceptions import AuditWriteError
from borne_biometrique.models.audit_event import GENESIS_HASH, AuditEvent, AuditOutcome
from borne_biometrique.schemas.audit import (
    ActionCount, AuditEventCreate, AuditStats, IntegrityReport
)

logger = logging.getLogger(__name__)

# Relectures de la queue tolérées quand un autre écrivain l'a prise
APPEND_ATTEMPTS = 3


def _normalize_details(details: Dict[str, Any]) -> Dict[str, Any]:
    """Ramener les détails à leur forme JSON stockée (enums, dates -> str)"""
    return json.loads(json.dumps(details or {}, default=str))


class AuditChain:
    """Journal d'audit en ajout seul, vérifiable a posteriori"""

    def __init__(self, secret: Optional[str] = None):
        self._secret = secret if secret is not None else settings.AUDIT_SIGNING_SECRET
        # Point de sérialisation des ajouts dans ce processus
        self._lock: Optional[asyncio.Lock] = None

    @staticmethod
    def _hashed_fields(
        action: str,
        resource: str,
        outcome: AuditOutcome,
        session_id: Optional[str],
        terminal_id: Optional[str],
        subject_id: Optional[str],
        details: Dict[str, Any],
    ) -> Dict[str, Any]:
        return {
            "action": action,
            "resource": resource,
            "outcome": AuditOutcome(outcome).value,
            "session_id": session_id,
            "terminal_id": terminal_id,
            "subject_id": subject_id,
            "details": details,
        }

    @staticmethod
    def compute_hash(fields: Dict[str, Any], timestamp: str, previous_hash: Optional[str]) -> str:
        """SHA256(champs sérialisés || horodatage || hash précédent)"""
        payload = json.dumps(fields, sort_keys=True, separators=(",", ":"), default=str)
        data = payload + timestamp + (previous_hash or "")
        return hashlib.sha256(data.encode("utf-8")).hexdigest()

    def sign(self, event_hash: str) -> str:
        """Signature simplifiée : SHA256(hash || secret)"""
        return hashlib.sha256((event_hash + self._secret).encode("utf-8")).hexdigest()

    def recompute_hash(self, event: AuditEvent) -> str:
        """Recalculer le hash d'un événement stocké à partir de ses champs"""
        fields = self._hashed_fields(
            event.action, event.resource, event.outcome,
            event.session_id, event.terminal_id, event.subject_id,
            event.details or {},
        )
        return self.compute_hash(fields, event.created_at.isoformat(), event.previous_hash)

    @property
    def lock(self) -> asyncio.Lock:
        # Créé au premier ajout, dans la boucle d'événements qui l'utilise
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def _tail_hash(self, db: AsyncSession) -> str:
        """Hash du dernier événement stocké (GENESIS_HASH si la chaîne est vide)"""
        result = await db.execute(
            select(AuditEvent.event_hash)
            .order_by(AuditEvent.id.desc())
            .limit(1)
            .with_for_update()
        )
        return result.scalar_one_or_none() or GENESIS_HASH

    async def append(self, db: AsyncSession, event: AuditEventCreate) -> AuditEvent:
        """
        Ajouter un événement à la chaîne.
        Le dernier hash est relu en base dans la section critique, jamais
        gardé en mémoire. Le verrou ne sérialise que ce processus : entre
        processus, l'unicité de previous_hash fait échouer le second écrivain
        parti de la même queue, qui relit alors la queue et recommence.
        Raises:
            AuditWriteError: l'écriture a échoué (toujours fatale)
        """
        details = _normalize_details(event.details)
        fields = self._hashed_fields(
            event.action, event.resource, event.outcome,
            event.session_id, event.terminal_id, event.subject_id,
            details,
        )

        async with self.lock:
            for attempt in range(1, APPEND_ATTEMPTS + 1):
                try:
                    previous_hash = await self._tail_hash(db)
                    created_at = datetime.utcnow()
                    event_hash = self.compute_hash(fields, created_at.isoformat(), previous_hash)

                    record = AuditEvent(
                        session_id=event.session_id,
                        terminal_id=event.terminal_id,
                        subject_id=event.subject_id,
                        action=event.action,
                        resource=event.resource,
                        outcome=event.outcome,
                        details=details,
                        event_hash=event_hash,
                        previous_hash=previous_hash,
                        signature=self.sign(event_hash),
                        created_at=created_at,
                    )
                    db.add(record)
                    await db.commit()
                    break
                except IntegrityError as e:
                    await db.rollback()
                    logger.warning(
                        f"Queue d'audit déjà prise ({event.action}, tentative {attempt}/{APPEND_ATTEMPTS}): {e}"
                    )
                except SQLAlchemyError as e:
                    await db.rollback()
                    logger.error(f"Échec d'écriture d'audit ({event.action}): {e}")
                    raise AuditWriteError(f"Impossible d'écrire l'événement d'audit {event.action}") from e
            else:
                logger.error(f"Échec d'écriture d'audit ({event.action}): queue disputée {APPEND_ATTEMPTS} fois")
                raise AuditWriteError(
                    f"Impossible d'écrire l'événement d'audit {event.action} : chaîne disputée"
                )

        logger.debug(f"Audit: {event.action} sur {event.resource} - {AuditOutcome(event.outcome).value}")
        return record

    async def log(
        self,
        db: AsyncSession,
        action: str,
        resource: str,
        outcome: AuditOutcome,
        session_id: Optional[str] = None,
        terminal_id: Optional[str] = None,
        subject_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        """Raccourci pour ajouter un événement"""
        return await self.append(db, AuditEventCreate(
            action=action,
            resource=resource,
            outcome=outcome,
            session_id=session_id,
            terminal_id=terminal_id,
            subject_id=subject_id,
            details=details or {},
        ))

    async def verify_integrity(
        self,
        db: AsyncSession,
        start_id: Optional[int] = None,
        end_id: Optional[int] = None
    ) -> IntegrityReport:
        """
        Revérifier la chaîne (entière ou sur un intervalle d'identifiants).
        Un événement est invalide si son hash ne se recalcule pas, si sa
        signature ne correspond pas, ou si son previous_hash ne pointe pas
        sur le hash de l'événement précédent. Dès la première rupture, tous
        les événements suivants sont invalides.
        """
        query = (
            select(AuditEvent)
            .order_by(AuditEvent.id.asc())
            .execution_options(populate_existing=True)
        )
        if start_id is not None:
            query = query.where(AuditEvent.id >= start_id)
        if end_id is not None:
            query = query.where(AuditEvent.id <= end_id)
        events = (await db.execute(query)).scalars().all()

        expected_previous = GENESIS_HASH
        if start_id is not None:
            before = await db.execute(
                select(AuditEvent.event_hash)
                .where(AuditEvent.id < start_id)
                .order_by(AuditEvent.id.desc())
                .limit(1)
            )
            expected_previous = before.scalar_one_or_none() or GENESIS_HASH

        invalid_ids: List[int] = []
        broken = False
        for event in events:
            valid = (
                not broken
                and event.previous_hash == expected_previous
                and self.recompute_hash(event) == event.event_hash
                and self.sign(event.event_hash) == event.signature
            )
            if not valid:
                broken = True
                invalid_ids.append(event.id)
            expected_previous = event.event_hash

        if invalid_ids:
            logger.error(
                f"Chaîne d'audit rompue : {len(invalid_ids)} événement(s) invalide(s), "
                f"premier id={invalid_ids[0]}"
            )

        return IntegrityReport(
            is_valid=not invalid_ids,
            total_events=len(events),
            invalid_event_ids=invalid_ids,
            start_id=start_id,
            end_id=end_id,
        )

    async def find_by_session(self, db: AsyncSession, session_id: str) -> List[AuditEvent]:
        """Événements d'une session, dans l'ordre chronologique"""
        result = await db.execute(
            select(AuditEvent)
            .where(AuditEvent.session_id == session_id)
            .order_by(AuditEvent.id.asc())
        )
        return list(result.scalars().all())

    async def find_by_terminal(self, db: AsyncSession, terminal_id: str, limit: int = 100) -> List[AuditEvent]:
        """Derniers événements d'une borne"""
        result = await db.execute(
            select(AuditEvent)
            .where(AuditEvent.terminal_id == terminal_id)
            .order_by(AuditEvent.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def stats(self, db: AsyncSession) -> AuditStats:
        """Statistiques par issue et par action"""
        by_outcome = dict((await db.execute(
            select(AuditEvent.outcome, func.count(AuditEvent.id)).group_by(AuditEvent.outcome)
        )).all())
        by_action = (await db.execute(
            select(AuditEvent.action, func.count(AuditEvent.id))
            .group_by(AuditEvent.action)
            .order_by(AuditEvent.action)
        )).all()

        return AuditStats(
            total=sum(by_outcome.values()),
            success=by_outcome.get(AuditOutcome.SUCCESS, 0),
            failure=by_outcome.get(AuditOutcome.FAILURE, 0),
            error=by_outcome.get(AuditOutcome.ERROR, 0),
            by_action=[ActionCount(action=action, count=count) for action, count in by_action],
        )


# Instance globale
audit_chain = AuditChain()
