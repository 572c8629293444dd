from __future__ import annotations

from typing import Any

from fastapi.testclient import TestClient

from app.auth.encryption import TokenCipher
from tests.conftest import adopt_oauth_cookie, connected_session, set_oauth_cookie

SETUP_BODY: dict[str, Any] = {
    "ga4Property": {
        "propertyId": "properties/100",
        "displayName": "Main site",
        "websiteUrl": "https://www.example.com",
        "timeZone": "Europe/Berlin",
        "currencyCode": "EUR",
    },
    "gscSite": {"siteUrl": "sc-domain:example.com", "permissionLevel": "siteOwner"},
}


def complete_site_setup(client: TestClient, cipher: TokenCipher) -> None:
    set_oauth_cookie(client, cipher, connected_session())
    response = client.post("/sites/setup", json=SETUP_BODY)
    assert response.status_code == 200
    adopt_oauth_cookie(client, response)
