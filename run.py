"""
Script de démarrage de l'application
"""
import uvicorn
import asyncio
import logging

from borne_biometrique.config import validate_settings
from borne_biometrique.database import init_db
from borne_biometrique.services.auth_service import create_access_token

logger = logging.getLogger(__name__)


async def main():
    """Initialisation avant démarrage"""
    logger.info("Démarrage de la borne biométrique...")

    # Refuser de démarrer avec une configuration incohérente
    validate_settings()

    # Initialiser la base de données
    await init_db()
    logger.info("Base de données initialisée")

    # Jeton opérateur de démonstration
    token = create_access_token("admin", role="admin")
    logger.info(f"Jeton opérateur (admin): {token}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)

    # Initialisation
    asyncio.run(main())

    # Démarrer le serveur
    logger.info("Serveur démarré sur http://localhost:8000")
    logger.info("Documentation API: http://localhost:8000/docs")

    uvicorn.run(
        "borne_biometrique.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
