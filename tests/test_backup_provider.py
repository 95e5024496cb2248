import json

import httpx
import pytest

from borne_biometrique.config import settings
from borne_biometrique.exceptions import ExternalProviderError
from borne_biometrique.services.backup_provider import (
    HttpBackupProvider, NullBackupProvider, get_backup_provider
)


def provider_returning(handler, api_key=""):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpBackupProvider("https://comparaison.example/api/", api_key=api_key, client=client)


async def test_similarity_is_returned():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"similarity": 93.5})

    provider = provider_returning(handler, api_key="cle-api")
    similarity = await provider.compare("data:image/jpeg;base64,QUJD", "REVG")

    assert similarity == 93.5
    assert seen["url"] == "https://comparaison.example/api/compare"
    assert seen["auth"] == "Bearer cle-api"
    assert seen["body"] == {"source_image": "QUJD", "target_image": "REVG"}


async def test_no_authorization_without_key():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"similarity": 10})

    await provider_returning(handler).compare("a", "b")
    assert seen["auth"] is None


@pytest.mark.parametrize("response", [
    httpx.Response(500, json={"detail": "panne"}),
    httpx.Response(200, json={"score": 90}),
    httpx.Response(200, json={"similarity": "élevée"}),
    httpx.Response(200, json={"similarity": 130}),
    httpx.Response(200, text="pas du json"),
])
async def test_invalid_responses_raise(response):
    provider = provider_returning(lambda request: response)
    with pytest.raises(ExternalProviderError):
        await provider.compare("a", "b")


async def test_transport_failure_raises():
    def handler(request):
        raise httpx.ConnectError("connexion refusée", request=request)

    with pytest.raises(ExternalProviderError):
        await provider_returning(handler).compare("a", "b")


async def test_null_provider():
    provider = NullBackupProvider()
    assert not provider.available
    with pytest.raises(ExternalProviderError):
        await provider.compare("a", "b")


def test_factory_follows_configuration(monkeypatch):
    monkeypatch.setattr(settings, "BACKUP_PROVIDER_URL", "")
    assert isinstance(get_backup_provider(), NullBackupProvider)

    monkeypatch.setattr(settings, "BACKUP_PROVIDER_URL", "https://comparaison.example")
    provider = get_backup_provider()
    assert isinstance(provider, HttpBackupProvider)
    assert provider.available
    assert provider.timeout == settings.CASCADE.backup_timeout_seconds
