"""
Service anti-usurpation (photos, écrans, masques, deepfakes)
"""
from typing import Optional
import logging

from borne_biometrique.config import AntiSpoofThresholds, settings
from borne_biometrique.schemas.biometric import (
    AntiSpoofFeatures, AttackType, CheckScore, SpoofCheckResult, SpoofChecks
)

logger = logging.getLogger(__name__)


class AntiSpoofScorer:
    """
    Détecte les attaques par présentation.
    Chaque sous-contrôle produit un score de "réalité" (0-100) inversé avant
    pondération : le score agrégé est un score d'usurpation (plus haut = faux).
    """

    def __init__(self, thresholds: Optional[AntiSpoofThresholds] = None):
        self.thresholds = thresholds or settings.ANTISPOOF

    def score(self, features: AntiSpoofFeatures) -> SpoofCheckResult:
        """Évaluer le risque d'usurpation d'une capture"""
        checks = SpoofChecks(
            cnn=self._check_cnn(features),
            texture=self._check_texture(features),
            frequency=self._check_frequency(features),
            reflection=self._check_reflection(features),
            color=self._check_color(features),
        )

        spoof_score = 0.0
        failed_checks = []
        for name, weight in self.thresholds.weights.items():
            check = getattr(checks, name)
            spoof_score += (100 - check.score) * weight
            if not check.passed:
                failed_checks.append(name)

        is_real = spoof_score <= self.thresholds.max_spoof_score
        passed_count = len(self.thresholds.weights) - len(failed_checks)
        confidence = passed_count / len(self.thresholds.weights) * 100

        attack_type = None
        reason = None
        if not is_real:
            attack_type = self.detect_attack_type(features)
            reason = (
                f"Attaque probable de type {attack_type.value}. "
                f"Échecs: {', '.join(failed_checks) or 'aucun'}"
            )

        logger.debug(
            f"Anti-usurpation: score={spoof_score:.1f}, réel={is_real}, "
            f"attaque={attack_type.value if attack_type else 'aucune'}"
        )

        return SpoofCheckResult(
            is_real=is_real,
            spoof_score=spoof_score,
            confidence=confidence,
            checks=checks,
            failed_checks=failed_checks,
            attack_type=attack_type,
            reason=reason,
        )

    def _check_cnn(self, features: AntiSpoofFeatures) -> CheckScore:
        passed = features.spoof_probability < self.thresholds.cnn_spoof_threshold
        return CheckScore(passed=passed, score=(1 - features.spoof_probability) * 100)

    def _check_texture(self, features: AntiSpoofFeatures) -> CheckScore:
        # Les photos et écrans ont une texture plus pauvre que la peau
        good_texture = features.texture_variance >= self.thresholds.min_texture_variance
        good_laplacian = features.laplacian_variance >= self.thresholds.min_laplacian_variance

        if good_texture and good_laplacian:
            return CheckScore(passed=True, score=90)
        if good_texture or good_laplacian:
            return CheckScore(passed=True, score=70)

        score = min(
            features.texture_variance / self.thresholds.min_texture_variance * 50,
            features.laplacian_variance / self.thresholds.min_laplacian_variance * 50,
        )
        return CheckScore(passed=False, score=score)

    def _check_frequency(self, features: AntiSpoofFeatures) -> CheckScore:
        if features.high_frequency_ratio > 0.3:
            return CheckScore(passed=True, score=85)
        if features.high_frequency_ratio > 0.15:
            return CheckScore(passed=True, score=65)
        return CheckScore(passed=False, score=features.high_frequency_ratio * 200)

    def _check_reflection(self, features: AntiSpoofFeatures) -> CheckScore:
        # Réflexions spéculaires typiques des écrans
        passed = features.reflection_score <= self.thresholds.max_reflection_score
        return CheckScore(passed=passed, score=max(0.0, 100 - features.reflection_score))

    def _check_color(self, features: AntiSpoofFeatures) -> CheckScore:
        naturalness = features.color_distribution.naturalness
        return CheckScore(passed=naturalness >= self.thresholds.min_color_naturalness, score=naturalness)

    def detect_attack_type(self, features: AntiSpoofFeatures) -> AttackType:
        """Classer le type d'attaque probable (diagnostic, jamais bloquant)"""
        # Forte réflexion + texture pauvre = écran
        if features.reflection_score > 70 and features.texture_variance < 50:
            return AttackType.VIDEO
        # Flou + texture pauvre = photo imprimée
        if features.laplacian_variance < 30 and features.texture_variance < 80:
            return AttackType.PHOTO
        # Motif de moiré = écran
        if features.moire_score > 50:
            return AttackType.VIDEO
        if features.color_distribution.naturalness < 30:
            return AttackType.DEEPFAKE
        return AttackType.UNKNOWN


# Instance globale du service
antispoof_scorer = AntiSpoofScorer()
