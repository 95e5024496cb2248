"""
Service de chiffrement des embeddings faciaux stockés
Utilise Fernet (AES-128-CBC avec HMAC pour l'authentification)
"""
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
import numpy as np
import base64
import os
import logging

from borne_biometrique.exceptions import MalformedVectorError

logger = logging.getLogger(__name__)


class EncryptionService:
    """
    Chiffrement/déchiffrement des vecteurs biométriques au repos
    Les vecteurs sont sérialisés en float64 avant chiffrement.
    """

    def __init__(self, encryption_key: str = None):
        """
        Args:
            encryption_key: Clé de chiffrement. Si None, clé par défaut (NON SÉCURISÉ).
        """
        if encryption_key:
            self._fernet = self._create_fernet_from_key(encryption_key)
        else:
            logger.warning("Aucune clé de chiffrement fournie - utilisation d'une clé par défaut (NON SÉCURISÉ)")
            self._fernet = self._create_fernet_from_key("default-encryption-key-change-this")

    def _create_fernet_from_key(self, key: str) -> Fernet:
        """Dériver une clé Fernet de 32 bytes avec PBKDF2"""
        salt = b'borne_biometrique_salt_v1'

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=100000,
        )

        key_bytes = kdf.derive(key.encode())
        return Fernet(base64.urlsafe_b64encode(key_bytes))

    def encrypt(self, data: bytes) -> bytes:
        """Chiffrer des données binaires"""
        encrypted = self._fernet.encrypt(data)
        logger.debug(f"Données chiffrées: {len(data)} bytes -> {len(encrypted)} bytes")
        return encrypted

    def decrypt(self, encrypted_data: bytes) -> bytes:
        """Déchiffrer des données chiffrées"""
        try:
            return self._fernet.decrypt(encrypted_data)
        except InvalidToken:
            logger.error("Échec du déchiffrement: token invalide (clé incorrecte ou données corrompues)")
            raise MalformedVectorError(
                "Impossible de déchiffrer l'embedding. Clé incorrecte ou données corrompues."
            )

    def encrypt_vector(self, vector: np.ndarray) -> bytes:
        """Chiffrer un embedding"""
        return self.encrypt(np.asarray(vector, dtype=np.float64).tobytes())

    def decrypt_vector(self, encrypted_data: bytes) -> np.ndarray:
        """Déchiffrer un embedding"""
        return np.frombuffer(self.decrypt(encrypted_data), dtype=np.float64)

    @staticmethod
    def generate_key() -> str:
        """Générer une nouvelle clé de chiffrement (base64)"""
        return base64.urlsafe_b64encode(os.urandom(32)).decode()


# Instance globale - initialisée avec la clé de config
encryption_service = None


def get_encryption_service():
    """
    Retourne l'instance du service de chiffrement
    Lazy initialization pour attendre que la config soit chargée
    """
    global encryption_service

    if encryption_service is None:
        from borne_biometrique.config import settings
        encryption_service = EncryptionService(settings.BIOMETRIC_ENCRYPTION_KEY)

    return encryption_service
