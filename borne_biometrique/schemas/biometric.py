"""
Schémas Pydantic pour la biométrie
"""
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
import enum


class HeadPose(BaseModel):
    """Orientation de la tête en degrés (-90 à 90)"""
    yaw: float = 0.0
    pitch: float = 0.0
    roll: float = 0.0

    class Config:
        frozen = True


class LivenessFeatures(BaseModel):
    """Signaux de vivacité extraits par le fournisseur de perception"""
    blink_detected: bool
    blink_count: int = Field(ge=0)
    eye_aspect_ratio: float
    head_pose: HeadPose
    movement_detected: bool
    movement_score: float = Field(ge=0, le=100)
    landmarks_detected: int = Field(0, ge=0)
    mesh_quality: float = 0.0
    depth_score: float = Field(ge=0, le=100)
    texture_score: float = Field(ge=0, le=100)

    class Config:
        frozen = True


class ColorDistribution(BaseModel):
    """Analyse colorimétrique de la peau"""
    naturalness: float = Field(ge=0, le=100)
    saturation: float = 0.0

    class Config:
        frozen = True


class AntiSpoofFeatures(BaseModel):
    """Signaux anti-usurpation extraits par le fournisseur de perception"""
    spoof_probability: float = Field(ge=0, le=1)  # Sortie du modèle CNN
    texture_variance: float = Field(ge=0)
    laplacian_variance: float = Field(ge=0)
    high_frequency_ratio: float = Field(ge=0, le=1)
    reflection_score: float = Field(ge=0, le=100)
    moire_score: float = Field(0.0, ge=0, le=100)
    color_distribution: ColorDistribution

    class Config:
        frozen = True


class CheckScore(BaseModel):
    """Résultat d'un sous-contrôle"""
    passed: bool
    score: float  # 0-100


class LivenessChecks(BaseModel):
    blink: CheckScore
    head_pose: CheckScore
    movement: CheckScore
    depth: CheckScore
    texture: CheckScore


class LivenessCheckResult(BaseModel):
    """Résultat du contrôle de vivacité"""
    is_live: bool
    liveness_score: float  # 0-100
    confidence: float      # Part des sous-contrôles réussis, 0-100
    checks: LivenessChecks
    failed_checks: List[str] = []
    reason: Optional[str] = None


class AttackType(str, enum.Enum):
    """Type d'attaque probable (diagnostic uniquement)"""
    PHOTO = "PHOTO"
    VIDEO = "VIDEO"
    DEEPFAKE = "DEEPFAKE"
    UNKNOWN = "UNKNOWN"


class SpoofChecks(BaseModel):
    cnn: CheckScore
    texture: CheckScore
    frequency: CheckScore
    reflection: CheckScore
    color: CheckScore


class SpoofCheckResult(BaseModel):
    """Résultat du contrôle anti-usurpation"""
    is_real: bool
    spoof_score: float  # 0-100, plus haut = plus probablement faux
    confidence: float
    checks: SpoofChecks
    failed_checks: List[str] = []
    attack_type: Optional[AttackType] = None
    reason: Optional[str] = None


class MatchLevel(str, enum.Enum):
    """Niveau de correspondance d'un embedding"""
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"      # Zone limite : jamais un match sans confirmation
    NONE = "NONE"


class ComparisonResult(BaseModel):
    """Résultat de comparaison de deux embeddings"""
    distance: float
    similarity: float  # 0-100
    is_match: bool
    confidence: float  # 0-100
    match_level: MatchLevel


class Candidate(BaseModel):
    """Identité enrôlée candidate à la comparaison"""
    subject_id: str
    display_name: Optional[str] = None
    embedding: List[float]
    reference_image: Optional[str] = None


class BackupCheckResult(BaseModel):
    """Résultat de la comparaison de secours"""
    used: bool
    passed: bool = False
    similarity: Optional[float] = None
    error: Optional[str] = None


class ProviderBreakdown(BaseModel):
    """Détail par étape : None si l'étape n'a pas été exécutée"""
    liveness: Optional[LivenessCheckResult] = None
    anti_spoof: Optional[SpoofCheckResult] = None
    embedding: Optional[ComparisonResult] = None
    backup: Optional[BackupCheckResult] = None


class CascadeDecision(str, enum.Enum):
    """Décision finale de la cascade"""
    MATCH = "MATCH"
    NO_MATCH = "NO_MATCH"
    SPOOF_DETECTED = "SPOOF_DETECTED"
    LIVENESS_FAILED = "LIVENESS_FAILED"
    ERROR = "ERROR"


class CascadeState(str, enum.Enum):
    """États d'une tentative de vérification"""
    INITIATED = "INITIATED"
    LIVENESS_CHECK = "LIVENESS_CHECK"
    ANTISPOOF_CHECK = "ANTISPOOF_CHECK"
    EMBEDDING_MATCH = "EMBEDDING_MATCH"
    BACKUP_VERIFY = "BACKUP_VERIFY"
    DIRECT_DECISION = "DIRECT_DECISION"
    DECISION = "DECISION"
    LIVENESS_FAILED = "LIVENESS_FAILED"
    SPOOF_DETECTED = "SPOOF_DETECTED"
    ERROR = "ERROR"


TERMINAL_STATES = {
    CascadeState.DIRECT_DECISION,
    CascadeState.DECISION,
    CascadeState.LIVENESS_FAILED,
    CascadeState.SPOOF_DETECTED,
    CascadeState.ERROR,
}


class CascadeResult(BaseModel):
    """Résultat immuable d'une tentative de vérification"""
    decision: CascadeDecision
    final_state: CascadeState
    state_trail: List[CascadeState]
    confidence: float = 0.0  # 0-100, calculée seulement sur MATCH
    matched_subject_id: Optional[str] = None
    matched_subject_name: Optional[str] = None
    match_level: Optional[MatchLevel] = None
    liveness_score: float = 0.0
    spoof_score: float = 100.0
    similarity: float = 0.0
    distance: Optional[float] = None
    backup_similarity: Optional[float] = None
    breakdown: ProviderBreakdown
    verification_time_ms: float
    reason: str

    class Config:
        frozen = True

    @property
    def success(self) -> bool:
        return self.decision == CascadeDecision.MATCH


class CaptureRequest(BaseModel):
    """Capture soumise par la borne (caractéristiques déjà extraites)"""
    embedding: List[float]
    image_base64: Optional[str] = None
    liveness_features: LivenessFeatures
    anti_spoof_features: AntiSpoofFeatures


class RawCaptureRequest(BaseModel):
    """Capture brute à analyser par le fournisseur de perception"""
    image_base64: str


class PerceptionOutput(BaseModel):
    """Contrat du fournisseur de perception : image -> caractéristiques + embedding"""
    embedding: List[float]
    liveness_features: LivenessFeatures
    anti_spoof_features: AntiSpoofFeatures


class EnrollmentCapture(BaseModel):
    """Une capture d'enrôlement (un angle)"""
    embedding: List[float]
    angle: str = "frontal"
    image_base64: Optional[str] = None
    liveness_features: LivenessFeatures
    anti_spoof_features: AntiSpoofFeatures


class EnrollRequest(BaseModel):
    """Requête d'enrôlement biométrique"""
    subject_id: str
    display_name: Optional[str] = None
    captures: List[EnrollmentCapture] = Field(min_length=1)


class EnrollmentRecord(BaseModel):
    """Résultat d'un enrôlement"""
    subject_id: str
    embedding_ids: List[int]
    primary_embedding_id: int
    quality: float
    deactivated_count: int
    enrolled_at: datetime
