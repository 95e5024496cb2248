"""
Modèle pour les empreintes digitales
"""
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Float
from sqlalchemy.orm import relationship
from datetime import datetime

from borne_biometrique.database import Base


class FingerprintTemplate(Base):
    """Empreinte capturée : seul le hash SHA-256 du gabarit ISO est conservé"""
    __tablename__ = "fingerprint_templates"

    id = Column(Integer, primary_key=True, index=True)
    subject_id = Column(String(64), ForeignKey("subjects.id"), nullable=True, index=True)
    session_id = Column(String(64), ForeignKey("verification_sessions.id"), nullable=True, index=True)

    finger = Column(String(32), nullable=False)
    template_hash = Column(String(64), nullable=False, index=True)
    quality = Column(Float, default=0.0)

    created_at = Column(DateTime, default=datetime.utcnow)

    subject = relationship("Subject", back_populates="fingerprints")

    def __repr__(self):
        return f"<FingerprintTemplate subject_id={self.subject_id} finger={self.finger}>"
