"""
Service de capture d'empreintes digitales
Seul le hash SHA-256 du gabarit ISO est conservé.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Optional
import hashlib
import logging

from borne_biometrique.models.audit_event import AuditOutcome
from borne_biometrique.models.fingerprint import FingerprintTemplate
from borne_biometrique.schemas.risk import (
    FingerprintCaptureRequest, FingerprintCaptureResult, FingerprintVerifyResult
)
from borne_biometrique.services.audit_service import AuditChain, audit_chain
from borne_biometrique.services.session_service import SessionService, session_service

logger = logging.getLogger(__name__)


def template_hash(template_iso: str) -> str:
    return hashlib.sha256(template_iso.encode("utf-8")).hexdigest()


class FingerprintService:
    """Enregistrement et vérification des gabarits d'empreintes"""

    def __init__(self, audit: Optional[AuditChain] = None, sessions: Optional[SessionService] = None):
        self.audit = audit or audit_chain
        self.sessions = sessions or session_service

    async def capture(
        self,
        db: AsyncSession,
        session_id: str,
        data: FingerprintCaptureRequest
    ) -> FingerprintCaptureResult:
        """
        Enregistrer une empreinte pour la session.
        Un gabarit déjà enregistré pour un autre sujet est refusé et audité.
        """
        session = await self.sessions.get(db, session_id)
        subject_id = data.subject_id or session.subject_id
        digest = template_hash(data.template_iso)

        if subject_id is not None:
            result = await db.execute(
                select(FingerprintTemplate)
                .where(FingerprintTemplate.template_hash == digest)
                .where(FingerprintTemplate.subject_id.is_not(None))
                .where(FingerprintTemplate.subject_id != subject_id)
                .limit(1)
            )
            existing = result.scalar_one_or_none()
            if existing is not None:
                logger.warning(
                    f"Empreinte refusée pour {subject_id}: déjà enregistrée pour {existing.subject_id}"
                )
                await self.audit.log(
                    db,
                    action="FINGERPRINT_DUPLICATE_DETECTED",
                    resource="fingerprint",
                    outcome=AuditOutcome.FAILURE,
                    session_id=session.id,
                    terminal_id=session.terminal_id,
                    subject_id=subject_id,
                    details={"finger": data.finger, "existing_subject_id": existing.subject_id},
                )
                return FingerprintCaptureResult(
                    success=False,
                    error="DUPLICATE_FINGERPRINT",
                    existing_subject_id=existing.subject_id,
                )

        # Un gabarit par session et par doigt : les sessions précédentes gardent le leur
        result = await db.execute(
            select(FingerprintTemplate)
            .where(FingerprintTemplate.session_id == session.id)
            .where(FingerprintTemplate.finger == data.finger)
        )
        template = result.scalar_one_or_none()
        if template is None:
            template = FingerprintTemplate(session_id=session.id, finger=data.finger)
            db.add(template)
        template.subject_id = subject_id
        template.template_hash = digest
        template.quality = data.quality
        await db.commit()

        await self.audit.log(
            db,
            action="FINGERPRINT_CAPTURED",
            resource="fingerprint",
            outcome=AuditOutcome.SUCCESS,
            session_id=session.id,
            terminal_id=session.terminal_id,
            subject_id=subject_id,
            details={"finger": data.finger, "quality": data.quality},
        )
        return FingerprintCaptureResult(success=True, template_hash=digest)

    async def verify(
        self,
        db: AsyncSession,
        session_id: str,
        subject_id: str,
        finger: str,
        template_iso: str
    ) -> FingerprintVerifyResult:
        """Comparer une empreinte au dernier gabarit enregistré du sujet et noter la session"""
        session = await self.sessions.get(db, session_id)
        result = await db.execute(
            select(FingerprintTemplate)
            .where(FingerprintTemplate.subject_id == subject_id)
            .where(FingerprintTemplate.finger == finger)
            .order_by(FingerprintTemplate.id.desc())
            .limit(1)
        )
        stored = result.scalar_one_or_none()
        if stored is None:
            return FingerprintVerifyResult(success=False, error="NO_FINGERPRINT_REGISTERED")

        # TODO: remplacer la comparaison de hash par un matching ISO 19794 par minuties
        is_match = stored.template_hash == template_hash(template_iso)
        score = 1.0 if is_match else 0.0
        await self.sessions.update_scores(db, session, fingerprint_score=score)

        await self.audit.log(
            db,
            action="FINGERPRINT_VERIFY",
            resource="fingerprint",
            outcome=AuditOutcome.SUCCESS if is_match else AuditOutcome.FAILURE,
            session_id=session.id,
            terminal_id=session.terminal_id,
            subject_id=subject_id,
            details={"finger": finger, "is_match": is_match},
        )
        return FingerprintVerifyResult(success=is_match, score=score)


# Instance globale du service
fingerprint_service = FingerprintService()
