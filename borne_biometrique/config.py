"""
Configuration de l'application
"""
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings
from typing import Dict


def _check_weights(weights: Dict[str, float], expected: set, name: str) -> None:
    """Vérifier qu'un jeu de poids couvre exactement les contrôles et somme à 1"""
    if set(weights) != expected:
        raise ValueError(f"{name}: contrôles attendus {sorted(expected)}, reçus {sorted(weights)}")
    if any(w < 0 for w in weights.values()):
        raise ValueError(f"{name}: les poids doivent être positifs")
    if abs(sum(weights.values()) - 1.0) > 1e-6:
        raise ValueError(f"{name}: la somme des poids doit valoir 1 (reçu {sum(weights.values()):.3f})")


class EmbeddingThresholds(BaseModel):
    """Seuils de distance cosinus pour la comparaison d'embeddings"""
    dimension: int = Field(512, gt=0)
    match_high: float = 0.35     # Match très sûr
    match_medium: float = 0.45   # Match sûr
    match_low: float = 0.55      # Zone limite - escalade vers le fournisseur de secours

    @model_validator(mode="after")
    def check_bands(self):
        if not 0 < self.match_high < self.match_medium < self.match_low <= 2:
            raise ValueError("Les bandes de match doivent vérifier 0 < high < medium < low <= 2")
        return self


class LivenessThresholds(BaseModel):
    """Seuils de détection de vivacité"""
    min_liveness_score: float = Field(60, ge=0, le=100)
    min_blink_ear: float = 0.2          # Eye Aspect Ratio en dessous duquel on considère un clignement
    min_head_movement: float = 5        # Degrés minimum de rotation
    min_landmarks: int = 400            # Sur 468 points du maillage
    min_depth_score: float = 50
    min_texture_score: float = 50
    weights: Dict[str, float] = {
        "blink": 0.25,
        "head_pose": 0.20,
        "movement": 0.15,
        "depth": 0.20,
        "texture": 0.20,
    }

    @model_validator(mode="after")
    def check_weights(self):
        _check_weights(self.weights, {"blink", "head_pose", "movement", "depth", "texture"}, "liveness")
        return self


class AntiSpoofThresholds(BaseModel):
    """Seuils anti-usurpation (attaques par présentation)"""
    max_spoof_score: float = Field(40, ge=0, le=100)   # Au-dessus = rejet
    cnn_spoof_threshold: float = Field(0.5, ge=0, le=1)
    min_texture_variance: float = Field(100, gt=0)
    min_laplacian_variance: float = Field(50, gt=0)
    max_reflection_score: float = 60
    min_color_naturalness: float = 40
    weights: Dict[str, float] = {
        "cnn": 0.40,
        "texture": 0.20,
        "frequency": 0.15,
        "reflection": 0.15,
        "color": 0.10,
    }

    @model_validator(mode="after")
    def check_weights(self):
        _check_weights(self.weights, {"cnn", "texture", "frequency", "reflection", "color"}, "anti-spoof")
        return self


class CascadeSettings(BaseModel):
    """Paramètres de l'orchestrateur en cascade"""
    version: str = "v2"
    backup_timeout_seconds: float = Field(1.0, gt=0)
    backup_match_threshold: float = Field(90, ge=0, le=100)
    fusion_weights: Dict[str, float] = {
        "liveness": 0.15,
        "anti_spoof": 0.15,
        "embedding": 0.50,
        "backup": 0.20,
    }

    @model_validator(mode="after")
    def check_weights(self):
        _check_weights(self.fusion_weights, {"liveness", "anti_spoof", "embedding", "backup"}, "fusion")
        return self


class RiskThresholds(BaseModel):
    """Seuils du moteur de risque (scores dans [0, 1])"""
    face_match_min: float = Field(0.70, ge=0, le=1)
    liveness_min: float = Field(0.35, ge=0, le=1)
    fingerprint_min: float = Field(0.80, ge=0, le=1)
    document_match_min: float = Field(0.65, ge=0, le=1)
    risk_score_alert: float = Field(0.60, ge=0, le=1)
    risk_score_block: float = Field(0.85, ge=0, le=1)

    @model_validator(mode="after")
    def check_order(self):
        if self.risk_score_alert > self.risk_score_block:
            raise ValueError("risk_score_alert doit être inférieur ou égal à risk_score_block")
        return self


class RoutingSettings(BaseModel):
    """Paramètres du moteur d'orientation"""
    high_risk_score: float = Field(0.80, ge=0, le=1)   # Au-dessus = guichet de vérification manuelle


class Settings(BaseSettings):
    """Paramètres de configuration"""

    # Application
    APP_NAME: str = "Borne Biométrique"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Base de données
    DATABASE_URL: str = "sqlite+aiosqlite:///./borne_biometrique.db"

    # Sécurité
    SECRET_KEY: str = "votre-cle-secrete-tres-longue-et-complexe-a-changer"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    AUDIT_SIGNING_SECRET: str = "cle-de-signature-audit-a-changer"
    BIOMETRIC_ENCRYPTION_KEY: str = "cle-de-chiffrement-biometrique-a-changer"

    # Fournisseur de comparaison de secours (vide = désactivé)
    BACKUP_PROVIDER_URL: str = ""
    BACKUP_PROVIDER_API_KEY: str = ""

    # Seuils par composant
    EMBEDDING: EmbeddingThresholds = EmbeddingThresholds()
    LIVENESS: LivenessThresholds = LivenessThresholds()
    ANTISPOOF: AntiSpoofThresholds = AntiSpoofThresholds()
    CASCADE: CascadeSettings = CascadeSettings()
    RISK: RiskThresholds = RiskThresholds()
    ROUTING: RoutingSettings = RoutingSettings()

    class Config:
        env_file = ".env"
        env_nested_delimiter = "__"
        case_sensitive = True


settings = Settings()


def validate_settings(current: Settings = None) -> Settings:
    """
    Revalider la configuration au démarrage.
    Lève une pydantic.ValidationError si un seuil est incohérent.
    """
    current = current or settings
    validated = Settings.model_validate(current.model_dump())

    from borne_biometrique.services.cascade_service import CASCADE_IMPLEMENTATIONS
    if validated.CASCADE.version not in CASCADE_IMPLEMENTATIONS:
        raise ValueError(
            f"Version de cascade inconnue: {validated.CASCADE.version} "
            f"(disponibles: {sorted(CASCADE_IMPLEMENTATIONS)})"
        )
    return validated
