"""
Service de détection de vivacité (maillage facial)
"""
from typing import Optional, Tuple
import logging

from borne_biometrique.config import LivenessThresholds, settings
from borne_biometrique.schemas.biometric import (
    CheckScore, LivenessChecks, LivenessCheckResult, LivenessFeatures
)

logger = logging.getLogger(__name__)

# Nombre de points du maillage facial complet
FULL_MESH_LANDMARKS = 468


class LivenessScorer:
    """Vérifie que le visage capturé appartient à une personne présente"""

    def __init__(self, thresholds: Optional[LivenessThresholds] = None):
        self.thresholds = thresholds or settings.LIVENESS

    def score(self, features: LivenessFeatures) -> LivenessCheckResult:
        """
        Évaluer la vivacité à partir des caractéristiques extraites
        Cinq sous-contrôles pondérés ; vivant si le score atteint le minimum.
        """
        checks = LivenessChecks(
            blink=self._check_blink(features),
            head_pose=self._check_head_pose(features),
            movement=self._check_movement(features),
            depth=self._check_depth(features),
            texture=self._check_texture(features),
        )

        weights = self.thresholds.weights
        total_score = 0.0
        failed_checks = []
        for name, weight in weights.items():
            check = getattr(checks, name)
            total_score += check.score * weight
            if not check.passed:
                failed_checks.append(name)

        liveness_score = total_score / sum(weights.values())
        is_live = liveness_score >= self.thresholds.min_liveness_score

        passed_count = len(weights) - len(failed_checks)
        confidence = passed_count / len(weights) * 100

        reason = None
        if not is_live:
            if failed_checks:
                reason = f"Contrôles échoués: {', '.join(failed_checks)}"
            else:
                reason = "Score de vivacité trop faible"

        logger.debug(
            f"Vivacité: score={liveness_score:.1f}, vivant={is_live}, "
            f"réussis={passed_count}/{len(weights)}"
        )

        return LivenessCheckResult(
            is_live=is_live,
            liveness_score=liveness_score,
            confidence=confidence,
            checks=checks,
            failed_checks=failed_checks,
            reason=reason,
        )

    def _check_blink(self, features: LivenessFeatures) -> CheckScore:
        # Un clignement détecté est l'indice le plus fort
        if features.blink_detected and features.blink_count >= 1:
            return CheckScore(passed=True, score=100)
        if features.eye_aspect_ratio < self.thresholds.min_blink_ear:
            return CheckScore(passed=True, score=80)
        return CheckScore(passed=False, score=30)

    def _check_head_pose(self, features: LivenessFeatures) -> CheckScore:
        pose = features.head_pose
        has_yaw = abs(pose.yaw) > self.thresholds.min_head_movement
        has_pitch = abs(pose.pitch) > self.thresholds.min_head_movement

        if has_yaw and has_pitch:
            return CheckScore(passed=True, score=100)
        if has_yaw or has_pitch:
            return CheckScore(passed=True, score=75)
        # Tête figée : suspect sans être décisif
        return CheckScore(passed=False, score=40)

    def _check_movement(self, features: LivenessFeatures) -> CheckScore:
        if features.movement_detected and features.movement_score > 50:
            return CheckScore(passed=True, score=features.movement_score)
        if features.movement_score > 30:
            return CheckScore(passed=True, score=min(100.0, features.movement_score + 20))
        return CheckScore(passed=False, score=features.movement_score)

    def _check_depth(self, features: LivenessFeatures) -> CheckScore:
        passed = features.depth_score >= self.thresholds.min_depth_score
        return CheckScore(passed=passed, score=features.depth_score)

    def _check_texture(self, features: LivenessFeatures) -> CheckScore:
        passed = features.texture_score >= self.thresholds.min_texture_score
        return CheckScore(passed=passed, score=features.texture_score)

    def validate_mesh_quality(self, landmarks_count: int) -> Tuple[bool, float]:
        """
        Vérifier la qualité du maillage facial
        Returns:
            Tuple (valide, qualité en pourcentage)
        """
        quality = landmarks_count / FULL_MESH_LANDMARKS * 100
        return landmarks_count >= self.thresholds.min_landmarks, quality


# Instance globale du service
liveness_scorer = LivenessScorer()
