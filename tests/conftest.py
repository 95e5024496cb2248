"""
Fixtures partagées : base SQLite en mémoire, services isolés, captures types
"""
import asyncio
import math
import os
import tempfile

# Base de fichier temporaire pour l'application (tests d'API), avant tout import du paquet
_TMP_DIR = tempfile.mkdtemp(prefix="borne_tests_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'api.db')}"
os.environ["BACKUP_PROVIDER_URL"] = ""

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from borne_biometrique.config import (  # noqa: E402
    AntiSpoofThresholds, CascadeSettings, EmbeddingThresholds, LivenessThresholds, RiskThresholds
)
from borne_biometrique.database import init_db  # noqa: E402
from borne_biometrique.schemas.biometric import (  # noqa: E402
    AntiSpoofFeatures, CaptureRequest, ColorDistribution, HeadPose, LivenessFeatures
)
from borne_biometrique.services.antispoof_service import AntiSpoofScorer  # noqa: E402
from borne_biometrique.services.audit_service import AuditChain  # noqa: E402
from borne_biometrique.services.backup_provider import BackupComparisonProvider, NullBackupProvider  # noqa: E402
from borne_biometrique.services.cascade_service import CascadeOrchestrator  # noqa: E402
from borne_biometrique.services.embedding_service import EmbeddingMatcher  # noqa: E402
from borne_biometrique.services.liveness_service import LivenessScorer  # noqa: E402
from borne_biometrique.services.session_service import SessionService  # noqa: E402

DIM = 8


def vector_at_distance(distance: float, dim: int = DIM) -> list:
    """Vecteur unitaire à une distance cosinus donnée de e1"""
    cos = 1.0 - distance
    sin = math.sqrt(max(0.0, 1.0 - cos * cos))
    vector = [0.0] * dim
    vector[0] = cos
    vector[1] = sin
    return vector


def basis(index: int, dim: int = DIM) -> list:
    vector = [0.0] * dim
    vector[index] = 1.0
    return vector


def live_features(**overrides) -> LivenessFeatures:
    """Capture vivante : score 87.5"""
    data = dict(
        blink_detected=True,
        blink_count=2,
        eye_aspect_ratio=0.25,
        head_pose=HeadPose(yaw=10, pitch=8, roll=0),
        movement_detected=True,
        movement_score=70,
        landmarks_detected=468,
        mesh_quality=100,
        depth_score=80,
        texture_score=80,
    )
    data.update(overrides)
    return LivenessFeatures(**data)


def still_features() -> LivenessFeatures:
    """Photo figée : score de vivacité 45"""
    return LivenessFeatures(
        blink_detected=False,
        blink_count=0,
        eye_aspect_ratio=0.3,
        head_pose=HeadPose(),
        movement_detected=False,
        movement_score=20,
        landmarks_detected=468,
        depth_score=66.25,
        texture_score=66.25,
    )


def real_features(**overrides) -> AntiSpoofFeatures:
    """Visage réel : score d'usurpation 9.25"""
    data = dict(
        spoof_probability=0.05,
        texture_variance=150,
        laplacian_variance=80,
        high_frequency_ratio=0.4,
        reflection_score=10,
        moire_score=0,
        color_distribution=ColorDistribution(naturalness=85, saturation=40),
    )
    data.update(overrides)
    return AntiSpoofFeatures(**data)


def screen_features() -> AntiSpoofFeatures:
    """Rejeu sur écran : score d'usurpation 86.5"""
    return AntiSpoofFeatures(
        spoof_probability=0.95,
        texture_variance=20,
        laplacian_variance=10,
        high_frequency_ratio=0.05,
        reflection_score=80,
        moire_score=60,
        color_distribution=ColorDistribution(naturalness=50),
    )


def make_capture(distance: float = 0.1, dim: int = DIM, image: str = "data:image/jpeg;base64,Y2FwdHVyZQ==", **kwargs) -> CaptureRequest:
    return CaptureRequest(
        embedding=kwargs.pop("embedding", vector_at_distance(distance, dim)),
        image_base64=image,
        liveness_features=kwargs.pop("liveness_features", live_features()),
        anti_spoof_features=kwargs.pop("anti_spoof_features", real_features()),
    )


class FakeBackupProvider(BackupComparisonProvider):
    """Fournisseur de secours scripté"""

    name = "fake"

    def __init__(self, similarity: float = 95.0, delay: float = 0.0, error: Exception = None):
        self.similarity = similarity
        self.delay = delay
        self.error = error
        self.calls = []

    async def compare(self, source_image: str, target_image: str) -> float:
        self.calls.append((source_image, target_image))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.similarity


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db(engine):
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with maker() as session:
        yield session


@pytest.fixture
def audit():
    return AuditChain(secret="secret-de-test")


@pytest.fixture
def sessions():
    return SessionService()


@pytest.fixture
def matcher():
    return EmbeddingMatcher(EmbeddingThresholds(dimension=DIM))


@pytest.fixture
def liveness():
    return LivenessScorer(LivenessThresholds())


@pytest.fixture
def antispoof():
    return AntiSpoofScorer(AntiSpoofThresholds())


@pytest.fixture
def risk_thresholds():
    return RiskThresholds()


@pytest.fixture
def make_orchestrator(matcher, liveness, antispoof, audit, sessions):
    def factory(backup=None, cascade_settings=None, **overrides):
        deps = dict(
            matcher=matcher,
            liveness=liveness,
            antispoof=antispoof,
            backup_provider=backup or NullBackupProvider(),
            audit=audit,
            sessions=sessions,
            cascade_settings=cascade_settings or CascadeSettings(),
        )
        deps.update(overrides)
        return CascadeOrchestrator(**deps)
    return factory
