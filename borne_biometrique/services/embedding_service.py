"""
Service de comparaison d'embeddings faciaux (distance cosinus)
"""
import numpy as np
from typing import Optional, Sequence, List, Tuple
import logging

from borne_biometrique.config import EmbeddingThresholds, settings
from borne_biometrique.exceptions import DimensionMismatchError, MalformedVectorError
from borne_biometrique.schemas.biometric import Candidate, ComparisonResult, MatchLevel

logger = logging.getLogger(__name__)


class EmbeddingMatcher:
    """
    Calculs vectoriels et recherche du meilleur candidat.
    Composant pur : aucune écriture, sûr en parallèle.
    """

    def __init__(self, thresholds: Optional[EmbeddingThresholds] = None):
        self.thresholds = thresholds or settings.EMBEDDING

    @property
    def dimension(self) -> int:
        return self.thresholds.dimension

    def validate(self, vector: Sequence[float]) -> np.ndarray:
        """
        Valider un embedding et le convertir en array numpy
        Raises:
            DimensionMismatchError: longueur différente de la dimension configurée
            MalformedVectorError: valeur non numérique, non finie, ou norme nulle
        """
        try:
            arr = np.asarray(vector, dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise MalformedVectorError(f"Embedding non numérique: {e}")

        if arr.ndim != 1:
            raise MalformedVectorError(f"Embedding à {arr.ndim} dimensions, vecteur attendu")
        if arr.shape[0] != self.dimension:
            raise DimensionMismatchError(self.dimension, arr.shape[0])
        if not np.all(np.isfinite(arr)):
            index = int(np.argmin(np.isfinite(arr)))
            raise MalformedVectorError(f"Valeur non finie à l'indice {index}")
        if not np.any(arr):
            raise MalformedVectorError("Embedding nul, impossible de le normaliser")
        return arr

    def normalize(self, vector: Sequence[float]) -> np.ndarray:
        """Normaliser un embedding à la norme L2 unitaire"""
        arr = np.asarray(vector, dtype=np.float64)
        norm = np.linalg.norm(arr)
        if norm == 0:
            return arr
        return arr / norm

    def distance(self, a: Sequence[float], b: Sequence[float]) -> float:
        """
        Distance cosinus entre deux embeddings
        Returns:
            1 - similarité cosinus, entre 0 (identiques) et 2 (opposés)
        """
        va = np.asarray(a, dtype=np.float64)
        vb = np.asarray(b, dtype=np.float64)
        if va.shape != vb.shape:
            raise DimensionMismatchError(va.shape[0], vb.shape[0])

        denom = np.linalg.norm(va) * np.linalg.norm(vb)
        if denom == 0:
            raise MalformedVectorError("Embedding nul, distance indéfinie")
        cosine_similarity = float(np.dot(va, vb) / denom)
        # Bornage des erreurs d'arrondi
        cosine_similarity = max(-1.0, min(1.0, cosine_similarity))
        return 1.0 - cosine_similarity

    def average(self, vectors: Sequence[Sequence[float]]) -> np.ndarray:
        """Moyenne normalisée de plusieurs embeddings (enrôlement multi-angle)"""
        if len(vectors) == 0:
            raise MalformedVectorError("Aucun embedding à moyenner")
        stacked = np.stack([np.asarray(v, dtype=np.float64) for v in vectors], axis=0)
        return self.normalize(stacked.mean(axis=0))

    def quality_from_samples(self, vectors: Sequence[Sequence[float]]) -> float:
        """
        Qualité d'un enrôlement d'après la dispersion des captures.
        Faible variance autour du centroïde = qualité élevée (0 à 1).
        """
        if len(vectors) < 2:
            return 1.0

        centroid = self.average(vectors)
        total_variance = 0.0
        for v in vectors:
            dist = self.distance(v, centroid)
            total_variance += dist * dist

        avg_variance = total_variance / len(vectors)
        return max(0.0, 1.0 - avg_variance * 10)

    def classify(self, distance: float) -> MatchLevel:
        """Classer une distance dans une bande de correspondance"""
        if distance < self.thresholds.match_high:
            return MatchLevel.HIGH
        if distance < self.thresholds.match_medium:
            return MatchLevel.MEDIUM
        if distance < self.thresholds.match_low:
            return MatchLevel.LOW
        return MatchLevel.NONE

    def needs_backup(self, distance: float) -> bool:
        """Distance en zone limite : confirmation par le fournisseur de secours requise"""
        return self.classify(distance) == MatchLevel.LOW

    def compare(self, source: Sequence[float], target: Sequence[float]) -> ComparisonResult:
        """Comparer deux embeddings et retourner le résultat détaillé"""
        distance = self.distance(source, target)
        similarity = (1 - distance / 2) * 100
        match_level = self.classify(distance)

        # Confiance selon l'éloignement du seuil medium
        medium = self.thresholds.match_medium
        if distance < medium:
            confidence = min(100.0, (1 - distance / medium) * 100)
        else:
            confidence = max(0.0, (1 - (distance - medium) / 0.5) * 50)

        logger.debug(
            f"Comparaison d'embeddings: distance={distance:.4f}, "
            f"similarité={similarity:.1f}%, niveau={match_level.value}"
        )

        return ComparisonResult(
            distance=distance,
            similarity=similarity,
            is_match=match_level in (MatchLevel.HIGH, MatchLevel.MEDIUM),
            confidence=confidence,
            match_level=match_level,
        )

    def best_match(
        self,
        query: Sequence[float],
        candidates: List[Candidate]
    ) -> Tuple[Optional[Candidate], ComparisonResult]:
        """
        Parcourir tous les candidats et garder la distance minimale.
        En cas d'égalité, le premier candidat rencontré l'emporte.
        Les candidats dont l'embedding est invalide sont ignorés.
        """
        query_vec = self.validate(query)

        # Sans candidat valide : distance maximale, aucun match
        best: Optional[Candidate] = None
        best_result = ComparisonResult(
            distance=2.0,
            similarity=0.0,
            is_match=False,
            confidence=0.0,
            match_level=MatchLevel.NONE,
        )

        for candidate in candidates:
            try:
                target = self.validate(candidate.embedding)
            except (DimensionMismatchError, MalformedVectorError) as e:
                logger.warning(f"Embedding invalide ignoré pour le sujet {candidate.subject_id}: {e}")
                continue

            result = self.compare(query_vec, target)
            if best is None or result.distance < best_result.distance:
                best = candidate
                best_result = result

        return best, best_result


# Instance globale du service
embedding_matcher = EmbeddingMatcher()
