"""
Contrat du fournisseur de perception (détection, maillage, embedding)
Le cœur ne décode jamais d'image : il consomme uniquement ce contrat.
"""
from abc import ABC, abstractmethod

from borne_biometrique.exceptions import ExternalProviderError
from borne_biometrique.schemas.biometric import PerceptionOutput


class PerceptionProvider(ABC):
    """Image -> caractéristiques de vivacité, d'usurpation et embedding"""

    @abstractmethod
    async def extract(self, image_base64: str) -> PerceptionOutput:
        """
        Analyser une capture brute
        Raises:
            ExternalProviderError: extraction impossible
        """


class UnavailablePerceptionProvider(PerceptionProvider):
    """Fournisseur par défaut : l'extraction se fait sur la borne"""

    async def extract(self, image_base64: str) -> PerceptionOutput:
        raise ExternalProviderError(
            "Extraction côté serveur non intégrée : la borne doit soumettre les caractéristiques"
        )
