"""
Modèle Sujet (identité enrôlée)
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, Float
from sqlalchemy.orm import relationship
from datetime import datetime
import uuid

from borne_biometrique.database import Base


class Subject(Base):
    """Identité enrôlée pouvant se présenter à une borne"""
    __tablename__ = "subjects"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    display_name = Column(String(200), nullable=True)
    is_enrolled = Column(Boolean, default=False)

    # Image de référence (base64) pour la comparaison de secours
    reference_image = Column(Text, nullable=True)
    embedding_quality = Column(Float, default=0.0)  # Qualité d'enrôlement dans [0, 1]

    # Métadonnées de vérification
    enrolled_at = Column(DateTime, nullable=True)
    last_verification_at = Column(DateTime, nullable=True)
    verification_count = Column(Integer, default=0)
    last_liveness_score = Column(Float, nullable=True)
    last_spoof_score = Column(Float, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relations
    embeddings = relationship("FaceEmbedding", back_populates="subject")
    fingerprints = relationship("FingerprintTemplate", back_populates="subject")

    def __repr__(self):
        return f"<Subject {self.id}>"
