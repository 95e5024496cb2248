"""
Service d'enrôlement biométrique
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from datetime import datetime
from typing import List, Optional
import logging

from borne_biometrique.exceptions import MalformedVectorError, ValidationError
from borne_biometrique.models.audit_event import AuditOutcome
from borne_biometrique.models.embedding import FaceEmbedding
from borne_biometrique.models.subject import Subject
from borne_biometrique.schemas.biometric import Candidate, EnrollmentRecord, EnrollRequest
from borne_biometrique.services.antispoof_service import AntiSpoofScorer, antispoof_scorer
from borne_biometrique.services.audit_service import AuditChain, audit_chain
from borne_biometrique.services.embedding_service import EmbeddingMatcher, embedding_matcher
from borne_biometrique.services.encryption_service import EncryptionService, get_encryption_service
from borne_biometrique.services.liveness_service import LivenessScorer, liveness_scorer

logger = logging.getLogger(__name__)

AVERAGED_ANGLE = "average"


class EnrollmentService:
    """Enrôlement multi-angle et chargement des candidats"""

    def __init__(
        self,
        matcher: Optional[EmbeddingMatcher] = None,
        liveness: Optional[LivenessScorer] = None,
        antispoof: Optional[AntiSpoofScorer] = None,
        audit: Optional[AuditChain] = None,
        encryption: Optional[EncryptionService] = None,
    ):
        self.matcher = matcher or embedding_matcher
        self.liveness = liveness or liveness_scorer
        self.antispoof = antispoof or antispoof_scorer
        self.audit = audit or audit_chain
        self._encryption = encryption

    @property
    def encryption(self) -> EncryptionService:
        return self._encryption or get_encryption_service()

    async def _reject(self, db: AsyncSession, request: EnrollRequest, message: str) -> None:
        logger.warning(f"Enrôlement refusé pour {request.subject_id}: {message}")
        await self.audit.log(
            db,
            action="ENROLLMENT",
            resource="subject",
            outcome=AuditOutcome.FAILURE,
            subject_id=request.subject_id,
            details={"reason": message, "captures": len(request.captures)},
        )
        raise ValidationError(message)

    async def enroll(self, db: AsyncSession, request: EnrollRequest) -> EnrollmentRecord:
        """
        Enrôler un sujet à partir d'une ou plusieurs captures
        Chaque capture doit passer la vivacité et l'anti-usurpation.
        Les embeddings précédents sont désactivés, jamais supprimés.
        Raises:
            ValidationError: embedding invalide ou capture refusée
        """
        vectors = []
        for index, capture in enumerate(request.captures):
            try:
                vectors.append(self.matcher.normalize(self.matcher.validate(capture.embedding)))
            except ValidationError as e:
                await self._reject(db, request, f"Capture {index} ({capture.angle}): {e}")

            liveness = self.liveness.score(capture.liveness_features)
            if not liveness.is_live:
                await self._reject(db, request, f"Capture {index} ({capture.angle}): {liveness.reason}")

            spoof = self.antispoof.score(capture.anti_spoof_features)
            if not spoof.is_real:
                await self._reject(db, request, f"Capture {index} ({capture.angle}): {spoof.reason}")

        quality = self.matcher.quality_from_samples(vectors)

        result = await db.execute(select(Subject).where(Subject.id == request.subject_id))
        subject = result.scalar_one_or_none()
        if subject is None:
            subject = Subject(id=request.subject_id)
            db.add(subject)
        if request.display_name:
            subject.display_name = request.display_name

        now = datetime.utcnow()
        deactivated = await db.execute(
            update(FaceEmbedding)
            .where(FaceEmbedding.subject_id == request.subject_id)
            .where(FaceEmbedding.is_active == True)  # noqa: E712
            .values(is_active=False, is_primary=False, deactivated_at=now)
        )

        records = []
        for capture, vector in zip(request.captures, vectors):
            records.append(FaceEmbedding(
                subject_id=request.subject_id,
                vector=self.encryption.encrypt_vector(vector),
                dimension=self.matcher.dimension,
                quality=quality,
                angle=capture.angle,
                is_primary=len(vectors) == 1,
            ))

        if len(vectors) > 1:
            # Embedding primaire : moyenne normalisée des angles
            records.append(FaceEmbedding(
                subject_id=request.subject_id,
                vector=self.encryption.encrypt_vector(self.matcher.average(vectors)),
                dimension=self.matcher.dimension,
                quality=quality,
                angle=AVERAGED_ANGLE,
                is_primary=True,
            ))
        db.add_all(records)

        reference = next((c.image_base64 for c in request.captures if c.angle == "frontal" and c.image_base64), None)
        reference = reference or next((c.image_base64 for c in request.captures if c.image_base64), None)
        if reference:
            subject.reference_image = reference

        subject.is_enrolled = True
        subject.enrolled_at = now
        subject.embedding_quality = quality
        await db.commit()

        primary = next(r for r in records if r.is_primary)
        logger.info(
            f"Sujet {request.subject_id} enrôlé: {len(records)} embedding(s), "
            f"qualité={quality:.2f}, désactivés={deactivated.rowcount}"
        )

        await self.audit.log(
            db,
            action="ENROLLMENT",
            resource="subject",
            outcome=AuditOutcome.SUCCESS,
            subject_id=request.subject_id,
            details={
                "angles": [c.angle for c in request.captures],
                "quality": round(quality, 4),
                "deactivated": deactivated.rowcount,
            },
        )

        return EnrollmentRecord(
            subject_id=request.subject_id,
            embedding_ids=[r.id for r in records],
            primary_embedding_id=primary.id,
            quality=quality,
            deactivated_count=deactivated.rowcount,
            enrolled_at=now,
        )

    async def load_candidates(self, db: AsyncSession, subject_id: Optional[str] = None) -> List[Candidate]:
        """
        Embeddings actifs (chaque angle et la moyenne), déchiffrés, prêts pour la comparaison
        Un sujet enrôlé sur plusieurs angles fournit donc plusieurs candidats.
        """
        query = (
            select(FaceEmbedding, Subject)
            .join(Subject, Subject.id == FaceEmbedding.subject_id)
            .where(FaceEmbedding.is_active == True)  # noqa: E712
            .order_by(FaceEmbedding.id.asc())
        )
        if subject_id is not None:
            query = query.where(FaceEmbedding.subject_id == subject_id)

        candidates = []
        for embedding, subject in (await db.execute(query)).all():
            try:
                vector = self.encryption.decrypt_vector(embedding.vector)
            except MalformedVectorError as e:
                logger.error(f"Embedding {embedding.id} illisible pour le sujet {subject.id}: {e}")
                continue
            candidates.append(Candidate(
                subject_id=subject.id,
                display_name=subject.display_name,
                embedding=vector.tolist(),
                reference_image=subject.reference_image,
            ))
        return candidates

    async def deactivate(self, db: AsyncSession, subject_id: str) -> int:
        """Désactiver tous les embeddings d'un sujet (désenrôlement)"""
        result = await db.execute(
            update(FaceEmbedding)
            .where(FaceEmbedding.subject_id == subject_id)
            .where(FaceEmbedding.is_active == True)  # noqa: E712
            .values(is_active=False, is_primary=False, deactivated_at=datetime.utcnow())
        )
        subject = (await db.execute(select(Subject).where(Subject.id == subject_id))).scalar_one_or_none()
        if subject is not None:
            subject.is_enrolled = False
        await db.commit()

        await self.audit.log(
            db,
            action="UNENROLLMENT",
            resource="subject",
            outcome=AuditOutcome.SUCCESS,
            subject_id=subject_id,
            details={"deactivated": result.rowcount},
        )
        return result.rowcount


# Instance globale du service
enrollment_service = EnrollmentService()
