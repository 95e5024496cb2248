"""
Erreurs métier de la borne biométrique
"""


class BiometricError(Exception):
    """Erreur de base du cœur biométrique"""


class ValidationError(BiometricError):
    """Entrée invalide, rejetée avant l'exécution de toute vérification"""


class DimensionMismatchError(ValidationError):
    """Vecteur de longueur inattendue"""

    def __init__(self, expected: int, received: int):
        self.expected = expected
        self.received = received
        super().__init__(f"Dimension attendue {expected}, reçue {received}")


class MalformedVectorError(ValidationError):
    """Vecteur contenant une valeur non finie ou non numérique"""


class InvalidTransitionError(ValidationError):
    """Transition de statut de session non monotone"""


class NotFoundError(BiometricError):
    """Session, sujet ou alerte inconnu (non réessayable)"""


class ExternalProviderError(BiometricError):
    """Fournisseur externe indisponible, en erreur ou hors délai"""


class AuditIntegrityError(BiometricError):
    """La chaîne d'audit ne se revérifie pas"""

    def __init__(self, invalid_event_ids):
        self.invalid_event_ids = list(invalid_event_ids)
        super().__init__(f"Chaîne d'audit invalide ({len(self.invalid_event_ids)} événements)")


class AuditWriteError(BiometricError):
    """Écriture d'audit impossible - toujours fatale pour l'appelant"""
