"""
Service de vérification en cascade
Orchestre le pipeline biométrique :
1. Vivacité
2. Anti-usurpation
3. Comparaison d'embeddings
4. Fournisseur de secours (si correspondance limite)
Chaque étape peut court-circuiter la décision ; toute exception inattendue
donne la décision ERROR (jamais MATCH).
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import select
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
import asyncio
import logging
import time

from borne_biometrique.config import CascadeSettings, settings
from borne_biometrique.exceptions import AuditWriteError, ExternalProviderError, ValidationError
from borne_biometrique.models.audit_event import AuditOutcome
from borne_biometrique.models.session import STATUS_RANK, SessionStatus, VerificationSession
from borne_biometrique.models.subject import Subject
from borne_biometrique.schemas.biometric import (
    BackupCheckResult, Candidate, CaptureRequest, CascadeDecision, CascadeResult,
    CascadeState, ComparisonResult, MatchLevel, ProviderBreakdown
)
from borne_biometrique.services.antispoof_service import AntiSpoofScorer
from borne_biometrique.services.audit_service import AuditChain, audit_chain
from borne_biometrique.services.backup_provider import BackupComparisonProvider, get_backup_provider
from borne_biometrique.services.embedding_service import EmbeddingMatcher
from borne_biometrique.services.liveness_service import LivenessScorer
from borne_biometrique.services.session_service import SessionService, session_service

logger = logging.getLogger(__name__)

RESOURCE = "cascade"


@dataclass
class _Attempt:
    """État mutable d'une tentative, figé en CascadeResult à la fin"""
    session: Optional[VerificationSession]
    terminal_id: Optional[str]
    trail: List[CascadeState] = field(default_factory=lambda: [CascadeState.INITIATED])
    breakdown: ProviderBreakdown = field(default_factory=ProviderBreakdown)
    decision: CascadeDecision = CascadeDecision.ERROR
    confidence: float = 0.0
    matched: Optional[Candidate] = None
    comparison: Optional[ComparisonResult] = None
    liveness_score: float = 0.0
    spoof_score: float = 100.0
    backup_similarity: Optional[float] = None
    reason: str = ""

    @property
    def session_id(self) -> Optional[str]:
        return self.session.id if self.session is not None else None


class CascadeOrchestrator:
    """Pipeline de décision biométrique (version v2)"""

    version = "v2"

    def __init__(
        self,
        matcher: Optional[EmbeddingMatcher] = None,
        liveness: Optional[LivenessScorer] = None,
        antispoof: Optional[AntiSpoofScorer] = None,
        backup_provider: Optional[BackupComparisonProvider] = None,
        audit: Optional[AuditChain] = None,
        sessions: Optional[SessionService] = None,
        cascade_settings: Optional[CascadeSettings] = None,
    ):
        self.matcher = matcher or EmbeddingMatcher()
        self.liveness = liveness or LivenessScorer()
        self.antispoof = antispoof or AntiSpoofScorer()
        self.backup_provider = backup_provider or get_backup_provider()
        self.audit = audit or audit_chain
        self.sessions = sessions or session_service
        self.settings = cascade_settings or settings.CASCADE

    def fused_confidence(
        self,
        liveness_score: float,
        spoof_score: float,
        similarity: float,
        backup_similarity: Optional[float] = None
    ) -> float:
        """
        Confiance fusionnée (0-100), calculée seulement sur MATCH.
        Sans appel de secours, son poids revient à la similarité d'embedding.
        """
        weights = self.settings.fusion_weights
        total = (
            liveness_score * weights["liveness"]
            + (100 - spoof_score) * weights["anti_spoof"]
            + similarity * weights["embedding"]
        )
        if backup_similarity is not None:
            total += backup_similarity * weights["backup"]
        else:
            total += similarity * weights["backup"]
        return min(100.0, max(0.0, total))

    async def verify(
        self,
        db: AsyncSession,
        capture: CaptureRequest,
        candidates: List[Candidate],
        session: Optional[VerificationSession] = None,
    ) -> CascadeResult:
        """
        Exécuter la cascade complète pour une capture
        Raises:
            ValidationError: embedding invalide (avant toute étape, audité CASCADE_REJECTED)
            AuditWriteError: le journal d'audit n'a pas pu être écrit
        """
        start = time.perf_counter()
        attempt = _Attempt(
            session=session,
            terminal_id=session.terminal_id if session is not None else None,
        )

        try:
            query = self.matcher.validate(capture.embedding)
        except ValidationError as e:
            logger.warning(f"Capture rejetée avant la cascade (session={attempt.session_id}): {e}")
            await self._audit(
                db, attempt, "CASCADE_REJECTED", AuditOutcome.FAILURE,
                {"error": str(e), "error_type": type(e).__name__},
            )
            raise

        logger.info(f"Début de la vérification en cascade (session={attempt.session_id}, candidats={len(candidates)})")

        try:
            await self._run(db, attempt, capture, query, candidates)
        except AuditWriteError:
            raise
        except Exception as e:
            logger.error(f"Erreur de vérification en cascade: {e}")
            if isinstance(e, SQLAlchemyError):
                await db.rollback()
                if session is not None:
                    await db.refresh(session)
            attempt.decision = CascadeDecision.ERROR
            attempt.matched = None
            attempt.confidence = 0.0
            attempt.reason = f"{type(e).__name__}: {e}"
            attempt.trail.append(CascadeState.ERROR)
            await self._audit(db, attempt, "CASCADE_ERROR", AuditOutcome.ERROR, {"error": attempt.reason})
            if session is not None and STATUS_RANK[session.status] < STATUS_RANK[SessionStatus.ERROR]:
                await self._advance_session(db, attempt, CascadeState.ERROR)

        result = self._build_result(attempt, (time.perf_counter() - start) * 1000)

        await self._audit(
            db, attempt, "CASCADE_DECISION",
            AuditOutcome.SUCCESS if result.success else (
                AuditOutcome.ERROR if result.decision == CascadeDecision.ERROR else AuditOutcome.FAILURE
            ),
            {
                "decision": result.decision.value,
                "final_state": result.final_state.value,
                "confidence": round(result.confidence, 2),
                "matched_subject_id": result.matched_subject_id,
                "reason": result.reason,
                "verification_time_ms": round(result.verification_time_ms, 1),
            },
            subject_id=result.matched_subject_id,
        )

        logger.info(
            f"Vérification en cascade terminée en {result.verification_time_ms:.0f}ms: "
            f"{result.decision.value} (confiance: {result.confidence:.1f}%)"
        )
        return result

    async def _run(
        self,
        db: AsyncSession,
        attempt: _Attempt,
        capture: CaptureRequest,
        query,
        candidates: List[Candidate],
    ) -> None:
        # Étape 1 : vivacité
        await self._enter(db, attempt, CascadeState.LIVENESS_CHECK)
        liveness = self.liveness.score(capture.liveness_features)
        attempt.breakdown.liveness = liveness
        attempt.liveness_score = liveness.liveness_score
        await self._audit(
            db, attempt, "LIVENESS_CHECK",
            AuditOutcome.SUCCESS if liveness.is_live else AuditOutcome.FAILURE,
            {"score": round(liveness.liveness_score, 2), "failed_checks": liveness.failed_checks},
        )
        if not liveness.is_live:
            attempt.decision = CascadeDecision.LIVENESS_FAILED
            attempt.reason = liveness.reason or "Échec du contrôle de vivacité"
            logger.warning(f"Vivacité refusée: {attempt.reason}")
            await self._enter(db, attempt, CascadeState.LIVENESS_FAILED)
            return

        # Étape 2 : anti-usurpation
        await self._enter(db, attempt, CascadeState.ANTISPOOF_CHECK)
        spoof = self.antispoof.score(capture.anti_spoof_features)
        attempt.breakdown.anti_spoof = spoof
        attempt.spoof_score = spoof.spoof_score
        await self._audit(
            db, attempt, "ANTISPOOF_CHECK",
            AuditOutcome.SUCCESS if spoof.is_real else AuditOutcome.FAILURE,
            {
                "spoof_score": round(spoof.spoof_score, 2),
                "attack_type": spoof.attack_type.value if spoof.attack_type else None,
            },
        )
        if not spoof.is_real:
            attempt.decision = CascadeDecision.SPOOF_DETECTED
            attempt.reason = spoof.reason or "Attaque par présentation détectée"
            logger.warning(f"Usurpation détectée: {attempt.reason}")
            await self._enter(db, attempt, CascadeState.SPOOF_DETECTED)
            return

        # Étape 3 : comparaison d'embeddings
        await self._enter(db, attempt, CascadeState.EMBEDDING_MATCH)
        best, comparison = self.matcher.best_match(query, candidates)
        attempt.comparison = comparison
        attempt.breakdown.embedding = comparison
        await self._audit(
            db, attempt, "EMBEDDING_MATCH",
            AuditOutcome.SUCCESS if comparison.is_match else AuditOutcome.FAILURE,
            {
                "match_level": comparison.match_level.value,
                "distance": round(comparison.distance, 4) if best is not None else None,
                "candidate_subject_id": best.subject_id if best is not None else None,
                "candidates": len(candidates),
            },
        )

        if comparison.match_level in (MatchLevel.HIGH, MatchLevel.MEDIUM):
            attempt.decision = CascadeDecision.MATCH
            attempt.matched = best
            attempt.reason = f"Correspondance confirmée par l'embedding ({comparison.match_level.value})"
            final_state = CascadeState.DIRECT_DECISION
        elif comparison.match_level == MatchLevel.LOW:
            # Zone limite : confirmation par le fournisseur de secours
            await self._enter(db, attempt, CascadeState.BACKUP_VERIFY)
            backup = await self._run_backup(db, attempt, capture, best)
            attempt.breakdown.backup = backup
            if backup.passed:
                attempt.decision = CascadeDecision.MATCH
                attempt.matched = best
                attempt.backup_similarity = backup.similarity
                attempt.reason = "Correspondance limite confirmée par le fournisseur de secours"
            elif backup.error is not None:
                attempt.decision = CascadeDecision.NO_MATCH
                attempt.reason = f"Correspondance limite, secours indisponible ({backup.error})"
            else:
                attempt.decision = CascadeDecision.NO_MATCH
                attempt.backup_similarity = backup.similarity
                attempt.reason = "Correspondance limite rejetée par le fournisseur de secours"
            final_state = CascadeState.DECISION
        else:
            attempt.decision = CascadeDecision.NO_MATCH
            attempt.reason = "Aucun visage correspondant"
            final_state = CascadeState.DIRECT_DECISION

        if attempt.decision == CascadeDecision.MATCH:
            attempt.confidence = self.fused_confidence(
                attempt.liveness_score,
                attempt.spoof_score,
                comparison.similarity,
                attempt.backup_similarity,
            )
            await self._record_verification(db, attempt)

        await self._enter(db, attempt, final_state)

    async def _run_backup(
        self,
        db: AsyncSession,
        attempt: _Attempt,
        capture: CaptureRequest,
        best: Optional[Candidate],
    ) -> BackupCheckResult:
        """Comparaison de secours, bornée par un délai ; jamais réessayée"""
        error = None
        if not self.backup_provider.available:
            error = "aucun fournisseur configuré"
        elif best is None or not best.reference_image:
            error = "pas d'image de référence"
        elif not capture.image_base64:
            error = "pas d'image capturée"

        if error is None:
            try:
                similarity = await asyncio.wait_for(
                    self.backup_provider.compare(capture.image_base64, best.reference_image),
                    timeout=self.settings.backup_timeout_seconds,
                )
            except asyncio.TimeoutError:
                error = f"délai dépassé ({self.settings.backup_timeout_seconds}s)"
            except ExternalProviderError as e:
                error = str(e)

        if error is not None:
            logger.warning(f"Vérification de secours indisponible: {error}")
            await self._audit(
                db, attempt, "BACKUP_VERIFY", AuditOutcome.ERROR,
                {"provider": self.backup_provider.name, "error": error},
            )
            return BackupCheckResult(used=False, error=error)

        passed = similarity >= self.settings.backup_match_threshold
        await self._audit(
            db, attempt, "BACKUP_VERIFY",
            AuditOutcome.SUCCESS if passed else AuditOutcome.FAILURE,
            {
                "provider": self.backup_provider.name,
                "similarity": round(similarity, 2),
                "threshold": self.settings.backup_match_threshold,
            },
        )
        return BackupCheckResult(used=True, passed=passed, similarity=similarity)

    async def _record_verification(self, db: AsyncSession, attempt: _Attempt) -> None:
        """Mettre à jour les métadonnées de dernière vérification du sujet reconnu"""
        result = await db.execute(select(Subject).where(Subject.id == attempt.matched.subject_id))
        subject = result.scalar_one_or_none()
        if subject is None:
            logger.warning(f"Sujet {attempt.matched.subject_id} reconnu mais absent de la base")
            return

        subject.last_verification_at = datetime.utcnow()
        subject.verification_count = (subject.verification_count or 0) + 1
        subject.last_liveness_score = attempt.liveness_score
        subject.last_spoof_score = attempt.spoof_score
        await db.commit()

    async def _enter(self, db: AsyncSession, attempt: _Attempt, state: CascadeState) -> None:
        attempt.trail.append(state)
        await self._advance_session(db, attempt, state)

    async def _advance_session(self, db: AsyncSession, attempt: _Attempt, state: CascadeState) -> None:
        if attempt.session is None:
            return
        scores: Dict[str, Any] = {}
        if attempt.breakdown.liveness is not None:
            scores["liveness_score"] = attempt.liveness_score / 100
        if attempt.breakdown.anti_spoof is not None:
            scores["spoof_score"] = attempt.spoof_score / 100
        if attempt.comparison is not None:
            scores["face_match_score"] = attempt.comparison.similarity / 100
        if attempt.decision == CascadeDecision.MATCH and attempt.session.subject_id is None:
            scores["subject_id"] = attempt.matched.subject_id
        await self.sessions.advance(db, attempt.session, SessionStatus(state.value), **scores)

    async def _audit(
        self,
        db: AsyncSession,
        attempt: _Attempt,
        action: str,
        outcome: AuditOutcome,
        details: Dict[str, Any],
        subject_id: Optional[str] = None,
    ) -> None:
        await self.audit.log(
            db,
            action=action,
            resource=RESOURCE,
            outcome=outcome,
            session_id=attempt.session_id,
            terminal_id=attempt.terminal_id,
            subject_id=subject_id,
            details=details,
        )

    def _build_result(self, attempt: _Attempt, elapsed_ms: float) -> CascadeResult:
        comparison = attempt.comparison
        return CascadeResult(
            decision=attempt.decision,
            final_state=attempt.trail[-1],
            state_trail=list(attempt.trail),
            confidence=attempt.confidence,
            matched_subject_id=attempt.matched.subject_id if attempt.matched else None,
            matched_subject_name=attempt.matched.display_name if attempt.matched else None,
            match_level=comparison.match_level if comparison else None,
            liveness_score=attempt.liveness_score,
            spoof_score=attempt.spoof_score,
            similarity=comparison.similarity if comparison else 0.0,
            distance=comparison.distance if comparison else None,
            backup_similarity=attempt.backup_similarity,
            breakdown=attempt.breakdown,
            verification_time_ms=elapsed_ms,
            reason=attempt.reason,
        )


# Implémentations disponibles, sélectionnées par CASCADE.version
CASCADE_IMPLEMENTATIONS = {
    CascadeOrchestrator.version: CascadeOrchestrator,
}


def get_cascade_orchestrator(**dependencies) -> CascadeOrchestrator:
    """Instancier l'orchestrateur correspondant à la version configurée"""
    version = settings.CASCADE.version
    try:
        implementation = CASCADE_IMPLEMENTATIONS[version]
    except KeyError:
        raise ValueError(f"Version de cascade inconnue: {version}")
    return implementation(**dependencies)
