import os
import sys
import time
from pathlib import Path

# Required settings must exist before the app module is imported.
os.environ.setdefault("FLASK_SECRET_KEY", "test-secret-key-for-testing-only")
os.environ.setdefault("AAD_CLIENT_ID", "test-client-id")
os.environ.setdefault("AAD_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("FLASK_COOKIE_SECURE", "false")
os.environ.setdefault("LOG_JSON", "false")

import msal  # noqa: E402
import pytest  # noqa: E402
import requests  # noqa: E402
from cachelib import SimpleCache  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from auth.config import AuthSettings  # noqa: E402
from auth.token_store import TokenCacheStore  # noqa: E402

CT = msal.TokenCache.CredentialType
TENANT = "tenant-0001"
ENVIRONMENT = "login.microsoftonline.com"
CLIENT_ID = "test-client-id"


class CountingCache(SimpleCache):
    """In-memory cachelib backend that records writes."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.writes = 0
        self.keys = set()

    def set(self, key, value, timeout=None):
        self.writes += 1
        self.keys.add(key)
        return super().set(key, value, timeout=timeout)

    def count_for(self, subject):
        """Records stored for `subject` across every browser session."""
        total = 0
        for key in self.keys:
            entry = self.get(key)
            if key.endswith(f":{subject}") and isinstance(entry, dict):
                total += entry["count"]
        return total


def _at_entry(subject, scopes, secret, expires_in, client_id=CLIENT_ID):
    now = int(time.time())
    return {
        "credential_type": CT.ACCESS_TOKEN,
        "secret": secret,
        "home_account_id": f"{subject}.{TENANT}",
        "environment": ENVIRONMENT,
        "client_id": client_id,
        "target": " ".join(sorted(scopes)),
        "realm": TENANT,
        "token_type": "Bearer",
        "cached_at": str(now),
        "expires_on": str(now + expires_in),
        "extended_expires_on": str(now + expires_in),
    }


def populate_cache(
    cache,
    subject,
    scopes,
    access_token="cached-access-token",
    expires_in=3600,
    refresh_token="cached-refresh-token",
    client_id=CLIENT_ID,
):
    """Write account, access, refresh and id token records the way MSAL lays them out."""

    home = f"{subject}.{TENANT}"
    account = {
        "home_account_id": home,
        "environment": ENVIRONMENT,
        "realm": TENANT,
        "local_account_id": subject,
        "username": f"{subject}@example.com",
        "authority_type": "MSSTS",
    }
    cache.modify(CT.ACCOUNT, account, account)
    if access_token:
        at = _at_entry(subject, scopes, access_token, expires_in, client_id)
        cache.modify(CT.ACCESS_TOKEN, at, at)
    if refresh_token:
        rt = {
            "credential_type": CT.REFRESH_TOKEN,
            "secret": refresh_token,
            "home_account_id": home,
            "environment": ENVIRONMENT,
            "client_id": client_id,
            "target": " ".join(sorted(scopes)),
        }
        cache.modify(CT.REFRESH_TOKEN, rt, rt)
    idt = {
        "credential_type": CT.ID_TOKEN,
        "secret": "header.payload.signature",
        "home_account_id": home,
        "environment": ENVIRONMENT,
        "realm": TENANT,
        "client_id": client_id,
    }
    cache.modify(CT.ID_TOKEN, idt, idt)
    return cache


def cache_blob(subject, scopes, **kwargs):
    """Serialized MSAL cache for one signed-in subject."""
    return populate_cache(msal.SerializableTokenCache(), subject, scopes, **kwargs).serialize()


class FakeProvider:
    """Stands in for the Entra token endpoint's refresh-token grant."""

    def __init__(self):
        self.refresh_calls = 0
        self.clients_built = 0
        self.issued = 0
        self.reject_with = None
        self.server_error = None
        self.transport_error = None

    def redeem(self, cache, client_id, rt, scopes):
        self.refresh_calls += 1
        if self.transport_error is not None:
            raise self.transport_error
        if self.reject_with:
            return {"error": self.reject_with, "error_description": "AADSTS70000: The provided grant is invalid."}
        if self.server_error:
            return {"error": self.server_error, "error_description": "AADSTS90033: The service is unavailable."}

        self.issued += 1
        subject = rt["home_account_id"].split(".", 1)[0]
        token = f"refreshed-access-token-{self.issued}"
        at = _at_entry(subject, scopes, token, 3600, client_id)
        cache.modify(CT.ACCESS_TOKEN, at, at)
        cache.modify(CT.REFRESH_TOKEN, rt, {"secret": f"rotated-refresh-token-{self.issued}"})
        return {"access_token": token, "token_type": "Bearer", "expires_in": 3600}


class FakeConfidentialClient:
    """
    The slice of msal.ConfidentialClientApplication the acquisition flow uses,
    working on the real token cache it is given.
    """

    def __init__(self, provider, settings, cache):
        self.provider = provider
        self.client_id = settings.client_id
        self.cache = cache

    def get_accounts(self):
        return list(self.cache.search(CT.ACCOUNT))

    def acquire_token_silent_with_error(self, scopes, account):
        query = {"home_account_id": account["home_account_id"], "client_id": self.client_id}
        for at in list(self.cache.search(CT.ACCESS_TOKEN, target=scopes, query=query)):
            expires_in = int(at["expires_on"]) - int(time.time())
            if expires_in > 300:
                return {"access_token": at["secret"], "token_type": "Bearer", "expires_in": expires_in}
        rts = list(self.cache.search(CT.REFRESH_TOKEN, query=query))
        if not rts:
            return None
        return self.provider.redeem(self.cache, self.client_id, rts[0], scopes)


@pytest.fixture
def settings():
    return AuthSettings(
        client_id=CLIENT_ID,
        client_secret="test-client-secret",
        redirect_uri=None,
        tenant_id=TENANT,
        scopes=("openid", "offline_access", "mail.read"),
    )


@pytest.fixture
def backend():
    return CountingCache()


@pytest.fixture
def store(backend):
    return TokenCacheStore(backend, scope="session-scope-1", timeout=3600)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def client_factory(provider):
    def factory(settings, cache):
        provider.clients_built += 1
        return FakeConfidentialClient(provider, settings, cache)

    return factory


class FakeResponse:
    def __init__(self, payload=None, status_code=200, reason="OK"):
        self._payload = payload if payload is not None else {}
        self.status_code = status_code
        self.reason = reason

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return self._payload


class FakeHttpSession:
    """Records Graph calls and answers them from a path -> response table."""

    def __init__(self, responses=None):
        self.responses = responses or {}
        self.calls = []

    def get(self, url, headers=None, params=None, timeout=None):
        self.calls.append({"url": url, "headers": headers or {}, "params": params or {}, "timeout": timeout})
        for suffix, response in self.responses.items():
            if url.endswith(suffix):
                if isinstance(response, Exception):
                    raise response
                return response
        raise requests.ConnectionError(f"no fake response for {url}")


@pytest.fixture
def http_session():
    return FakeHttpSession()
