"""
Modèle pour les embeddings faciaux
"""
from sqlalchemy import Column, Integer, String, ForeignKey, LargeBinary, DateTime, Float, Boolean
from sqlalchemy.orm import relationship
from datetime import datetime

from borne_biometrique.database import Base


class FaceEmbedding(Base):
    """
    Stocke les descripteurs faciaux (jamais les images brutes)
    - vector: float64 normalisé L2, chiffré (Fernet) avant stockage
    - un embedding par angle capturé, plus éventuellement un primaire moyenné
    Les embeddings ne sont jamais supprimés : ils sont désactivés au réenrôlement.
    """
    __tablename__ = "face_embeddings"

    id = Column(Integer, primary_key=True, index=True)
    subject_id = Column(String(64), ForeignKey("subjects.id"), nullable=False, index=True)

    vector = Column(LargeBinary, nullable=False)
    dimension = Column(Integer, nullable=False)
    quality = Column(Float, default=0.0)
    angle = Column(String(32), default="frontal")

    is_primary = Column(Boolean, default=False)
    is_active = Column(Boolean, default=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    deactivated_at = Column(DateTime, nullable=True)

    # Relation
    subject = relationship("Subject", back_populates="embeddings")

    def __repr__(self):
        return f"<FaceEmbedding subject_id={self.subject_id} angle={self.angle}>"
