"""
Moteur de risque et de fraude
Transforme les scores d'une session en alertes et en recommandation.
"""
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from datetime import datetime
from typing import List, Optional, Tuple
import logging

from borne_biometrique.config import RiskThresholds, settings
from borne_biometrique.exceptions import NotFoundError, ValidationError
from borne_biometrique.models.audit_event import AuditOutcome
from borne_biometrique.models.fingerprint import FingerprintTemplate
from borne_biometrique.models.risk_alert import AlertSeverity, AlertType, RiskAlert, SEVERITY_RANK
from borne_biometrique.models.session import STATUS_RANK, SessionStatus
from borne_biometrique.schemas.risk import (
    AlertStats, DuplicateCheckResult, Recommendation, RiskAlertData, RiskCheckResult, SessionScores
)
from borne_biometrique.services.audit_service import AuditChain, audit_chain
from borne_biometrique.services.session_service import SessionService, session_service

logger = logging.getLogger(__name__)

# Contribution de chaque alerte au score de risque
RISK_CONTRIBUTIONS = {
    AlertType.LIVENESS_FAILED: 0.40,
    AlertType.IDENTITY_SPOOFING: 0.30,
    AlertType.FACE_DOCUMENT_MISMATCH: 0.35,
    AlertType.FINGERPRINT_MISMATCH: 0.25,
}


class RiskAggregator:
    """Agrège les scores d'une session en alertes persistées"""

    def __init__(
        self,
        thresholds: Optional[RiskThresholds] = None,
        audit: Optional[AuditChain] = None,
        sessions: Optional[SessionService] = None,
    ):
        self.thresholds = thresholds or settings.RISK
        self.audit = audit or audit_chain
        self.sessions = sessions or session_service

    def assess(self, scores: SessionScores) -> Tuple[List[RiskAlertData], float]:
        """
        Appliquer les seuils par signal (sans persistance)
        Returns:
            Tuple (alertes, score de risque borné à [0, 1])
        """
        t = self.thresholds
        alerts: List[RiskAlertData] = []

        if scores.liveness_score is not None and scores.liveness_score < t.liveness_min:
            alerts.append(RiskAlertData(
                type=AlertType.LIVENESS_FAILED,
                severity=AlertSeverity.CRITICAL,
                description="Échec du contrôle de vivacité - possible photo ou vidéo",
                evidence={"liveness_score": scores.liveness_score, "threshold": t.liveness_min},
            ))

        if scores.face_match_score is not None and scores.face_match_score < t.face_match_min:
            alerts.append(RiskAlertData(
                type=AlertType.IDENTITY_SPOOFING,
                severity=AlertSeverity.HIGH,
                description="Le visage ne correspond pas à l'identité enrôlée",
                evidence={"face_match_score": scores.face_match_score, "threshold": t.face_match_min},
            ))

        if scores.document_match_score is not None and scores.document_match_score < t.document_match_min:
            alerts.append(RiskAlertData(
                type=AlertType.FACE_DOCUMENT_MISMATCH,
                severity=AlertSeverity.HIGH,
                description="Le visage ne correspond pas à la photo du document d'identité",
                evidence={"document_match_score": scores.document_match_score, "threshold": t.document_match_min},
            ))

        if scores.fingerprint_score is not None and scores.fingerprint_score < t.fingerprint_min:
            alerts.append(RiskAlertData(
                type=AlertType.FINGERPRINT_MISMATCH,
                severity=AlertSeverity.MEDIUM,
                description="L'empreinte digitale ne correspond pas",
                evidence={"fingerprint_score": scores.fingerprint_score, "threshold": t.fingerprint_min},
            ))

        risk = sum(RISK_CONTRIBUTIONS[alert.type] for alert in alerts)
        return alerts, min(1.0, max(0.0, risk))

    def recommend(self, risk: float, has_alerts: bool) -> Recommendation:
        if risk >= self.thresholds.risk_score_block:
            return Recommendation.BLOCK
        if risk >= self.thresholds.risk_score_alert:
            return Recommendation.ALERT
        if has_alerts:
            return Recommendation.REDIRECT
        return Recommendation.ALLOW

    async def evaluate_session(self, db: AsyncSession, session_id: str, scores: SessionScores) -> RiskCheckResult:
        """
        Évaluer une session, persister chaque alerte séparément et
        enregistrer le score de risque sur la session.
        Raises:
            NotFoundError: session inconnue
        """
        session = await self.sessions.get(db, session_id)
        alerts, risk = self.assess(scores)
        recommendation = self.recommend(risk, bool(alerts))

        records = []
        for alert in alerts:
            record = RiskAlert(
                session_id=session.id,
                type=alert.type,
                severity=alert.severity,
                description=alert.description,
                evidence=alert.evidence,
                scores=scores.model_dump(),
            )
            db.add(record)
            records.append(record)
        await db.commit()

        measured = {name: value for name, value in scores.model_dump().items() if value is not None}
        await self.sessions.update_scores(db, session, overall_risk_score=risk, **measured)

        if recommendation == Recommendation.BLOCK and STATUS_RANK[session.status] < STATUS_RANK[SessionStatus.FRAUD_DETECTED]:
            await self.sessions.mark_fraud(db, session)

        if alerts:
            logger.warning(
                f"Session {session.id}: {len(alerts)} alerte(s), risque={risk:.2f}, "
                f"recommandation={recommendation.value}"
            )
        else:
            logger.info(f"Session {session.id}: aucun risque détecté")

        await self.audit.log(
            db,
            action="RISK_EVALUATION",
            resource="risk",
            outcome=AuditOutcome.SUCCESS if not alerts else AuditOutcome.FAILURE,
            session_id=session.id,
            terminal_id=session.terminal_id,
            subject_id=session.subject_id,
            details={
                "alerts": [alert.type.value for alert in alerts],
                "risk_score": risk,
                "recommendation": recommendation.value,
            },
        )

        return RiskCheckResult(
            session_id=session.id,
            has_alerts=bool(alerts),
            alerts=alerts,
            alert_ids=[record.id for record in records],
            overall_risk_score=risk,
            recommendation=recommendation,
        )

    async def check_duplicate_fingerprint(self, db: AsyncSession, session_id: str) -> DuplicateCheckResult:
        """
        Chercher les empreintes de la session déjà présentes dans une autre
        session pour un autre sujet (usurpation d'identité probable).
        """
        session = await self.sessions.get(db, session_id)
        templates = (await db.execute(
            select(FingerprintTemplate).where(FingerprintTemplate.session_id == session.id)
        )).scalars().all()

        for template in templates:
            result = await db.execute(
                select(FingerprintTemplate)
                .where(FingerprintTemplate.template_hash == template.template_hash)
                .where(FingerprintTemplate.session_id != session.id)
                .where(FingerprintTemplate.subject_id.is_distinct_from(template.subject_id))
                .order_by(FingerprintTemplate.id.asc())
                .limit(1)
            )
            other = result.scalar_one_or_none()
            if other is None:
                continue

            evidence = {
                "template_hash": template.template_hash,
                "finger": template.finger,
                "subject_id": template.subject_id,
                "other_session_id": other.session_id,
                "other_subject_id": other.subject_id,
            }
            alert = RiskAlert(
                session_id=session.id,
                type=AlertType.FINGERPRINT_DUPLICATE,
                severity=AlertSeverity.CRITICAL,
                description="Empreinte déjà enregistrée pour une autre identité",
                evidence=evidence,
            )
            db.add(alert)
            await db.commit()

            logger.warning(f"Empreinte dupliquée détectée pour la session {session.id}")
            await self.audit.log(
                db,
                action="FINGERPRINT_DUPLICATE",
                resource="fingerprint",
                outcome=AuditOutcome.FAILURE,
                session_id=session.id,
                terminal_id=session.terminal_id,
                subject_id=template.subject_id,
                details=evidence,
            )
            return DuplicateCheckResult(is_duplicate=True, evidence=evidence, alert_id=alert.id)

        return DuplicateCheckResult(is_duplicate=False)

    async def list_pending_alerts(self, db: AsyncSession, limit: int = 100) -> List[RiskAlert]:
        """Alertes non résolues, les plus graves puis les plus récentes d'abord"""
        result = await db.execute(
            select(RiskAlert)
            .where(RiskAlert.is_resolved == False)  # noqa: E712
            .order_by(RiskAlert.created_at.desc(), RiskAlert.id.desc())
        )
        alerts = sorted(result.scalars().all(), key=lambda a: SEVERITY_RANK[a.severity], reverse=True)
        return alerts[:limit]

    async def resolve_alert(self, db: AsyncSession, alert_id: int, resolved_by: str, resolution: str) -> RiskAlert:
        """
        Résoudre une alerte (elle n'est jamais supprimée)
        Raises:
            NotFoundError: alerte inconnue
            ValidationError: alerte déjà résolue
        """
        result = await db.execute(select(RiskAlert).where(RiskAlert.id == alert_id))
        alert = result.scalar_one_or_none()
        if alert is None:
            raise NotFoundError(f"Alerte {alert_id} introuvable")
        if alert.is_resolved:
            raise ValidationError(f"Alerte {alert_id} déjà résolue par {alert.resolved_by}")

        alert.is_resolved = True
        alert.resolved_by = resolved_by
        alert.resolution = resolution
        alert.resolved_at = datetime.utcnow()
        await db.commit()

        logger.info(f"Alerte {alert_id} résolue par {resolved_by}")
        await self.audit.log(
            db,
            action="ALERT_RESOLVED",
            resource="risk_alert",
            outcome=AuditOutcome.SUCCESS,
            session_id=alert.session_id,
            details={"alert_id": alert_id, "resolved_by": resolved_by, "resolution": resolution},
        )
        return alert

    async def stats(self, db: AsyncSession) -> AlertStats:
        by_severity = dict((await db.execute(
            select(RiskAlert.severity, func.count(RiskAlert.id)).group_by(RiskAlert.severity)
        )).all())
        by_type = dict((await db.execute(
            select(RiskAlert.type, func.count(RiskAlert.id)).group_by(RiskAlert.type)
        )).all())
        pending = (await db.execute(
            select(func.count(RiskAlert.id)).where(RiskAlert.is_resolved == False)  # noqa: E712
        )).scalar_one()

        total = sum(by_severity.values())
        return AlertStats(
            total=total,
            pending=pending,
            resolved=total - pending,
            by_severity={severity.value: count for severity, count in by_severity.items()},
            by_type={alert_type.value: count for alert_type, count in by_type.items()},
        )


# Instance globale du service
risk_aggregator = RiskAggregator()
