"""
Fournisseurs de comparaison de secours
Utilisés uniquement sur les correspondances limites ; considérés peu fiables.
"""
from abc import ABC, abstractmethod
from typing import Optional
import logging

import httpx

from borne_biometrique.config import settings
from borne_biometrique.exceptions import ExternalProviderError

logger = logging.getLogger(__name__)


def _strip_data_uri(image_base64: str) -> str:
    """Retirer le préfixe data:image si présent"""
    if image_base64.startswith("data:") and "," in image_base64:
        return image_base64.split(",", 1)[1]
    return image_base64


class BackupComparisonProvider(ABC):
    """Contrat : deux images -> similarité dans [0, 100]"""

    name = "backup"

    @property
    def available(self) -> bool:
        return True

    @abstractmethod
    async def compare(self, source_image: str, target_image: str) -> float:
        """
        Comparer deux images
        Raises:
            ExternalProviderError: fournisseur en erreur ou réponse invalide
        """


class NullBackupProvider(BackupComparisonProvider):
    """Aucun fournisseur configuré"""

    name = "none"

    @property
    def available(self) -> bool:
        return False

    async def compare(self, source_image: str, target_image: str) -> float:
        raise ExternalProviderError("Aucun fournisseur de secours configuré")


class HttpBackupProvider(BackupComparisonProvider):
    """Service de comparaison distant : POST {base_url}/compare"""

    name = "http"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 1.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    async def compare(self, source_image: str, target_image: str) -> float:
        payload = {
            "source_image": _strip_data_uri(source_image),
            "target_image": _strip_data_uri(target_image),
        }
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        try:
            if self._client is not None:
                response = await self._client.post(
                    f"{self.base_url}/compare", json=payload, headers=headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(f"{self.base_url}/compare", json=payload, headers=headers)
            response.raise_for_status()
            similarity = float(response.json()["similarity"])
        except httpx.HTTPError as e:
            logger.error(f"Erreur du fournisseur de secours: {e}")
            raise ExternalProviderError(f"Fournisseur de secours en erreur: {e}") from e
        except (KeyError, TypeError, ValueError) as e:
            raise ExternalProviderError(f"Réponse invalide du fournisseur de secours: {e}") from e

        if not 0 <= similarity <= 100:
            raise ExternalProviderError(f"Similarité hors bornes: {similarity}")
        return similarity


def get_backup_provider() -> BackupComparisonProvider:
    """Construire le fournisseur d'après la configuration"""
    if settings.BACKUP_PROVIDER_URL:
        return HttpBackupProvider(
            settings.BACKUP_PROVIDER_URL,
            api_key=settings.BACKUP_PROVIDER_API_KEY,
            timeout=settings.CASCADE.backup_timeout_seconds,
        )
    logger.warning("Fournisseur de secours non configuré - vérification de secours désactivée")
    return NullBackupProvider()
