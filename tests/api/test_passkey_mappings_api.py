"""
Tests for the passkey mappings endpoint: status codes, check order and the
three actions end to end against a temporary database.
"""

import pytest
from fastapi.testclient import TestClient

from fluxus.main import create_app
from fluxus.middleware.rate_limit import FixedWindowRateLimiter, get_rate_limiter
from fluxus.registry.server_store import PasskeyMappingDatabase, get_passkey_mapping_database

SECRET = "k" * 48
ADDRESS = "0x" + "1" * 40
CREDENTIAL = "credential-0001"
URL = "/api/passkey-mappings"


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def limiter(clock):
    return FixedWindowRateLimiter(limit=30, window_seconds=60, clock=clock)


@pytest.fixture
def secret():
    return {"value": SECRET}


@pytest.fixture
def database(tmp_path, secret):
    db = PasskeyMappingDatabase(tmp_path / "mappings.sqlite", secret_provider=lambda: secret["value"])
    yield db
    db.close()


@pytest.fixture
def client(limiter, database):
    app = create_app()
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    app.dependency_overrides[get_passkey_mapping_database] = lambda: database
    return TestClient(app)


def post(client, payload=None, **kwargs):
    if payload is not None:
        kwargs["json"] = payload
    return client.post(URL, **kwargs)


# =============================================================================
# Actions
# =============================================================================

def test_has_any_on_empty_registry(client):
    response = post(client, {"action": "hasAny"})

    assert response.status_code == 200
    assert response.json() == {"hasAny": False}


def test_upsert_then_resolve(client):
    response = post(client, {"action": "upsert", "credentialId": CREDENTIAL, "address": ADDRESS})
    assert response.status_code == 200
    assert response.json() == {"ok": True}

    response = post(client, {"action": "resolve", "credentialId": CREDENTIAL})
    assert response.status_code == 200
    assert response.json() == {"address": ADDRESS}

    assert post(client, {"action": "hasAny"}).json() == {"hasAny": True}


def test_resolve_unknown_credential(client):
    response = post(client, {"action": "resolve", "credentialId": "never-stored"})

    assert response.status_code == 200
    assert response.json() == {"address": None}


def test_mapping_is_bound_to_request_origin(limiter, database):
    app = create_app()
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    app.dependency_overrides[get_passkey_mapping_database] = lambda: database

    first = TestClient(app, base_url="https://wallet-a.example")
    second = TestClient(app, base_url="https://wallet-b.example")

    post(first, {"action": "upsert", "credentialId": CREDENTIAL, "address": ADDRESS})

    assert post(first, {"action": "resolve", "credentialId": CREDENTIAL}).json() == {"address": ADDRESS}
    assert post(second, {"action": "resolve", "credentialId": CREDENTIAL}).json() == {"address": None}


# =============================================================================
# Validation
# =============================================================================

def test_invalid_json(client):
    response = post(client, content=b"{not json", headers={"content-type": "application/json"})

    assert response.status_code == 400
    assert "error" in response.json()


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"action": "delete"},
        {"action": "resolve"},
        {"action": "resolve", "credentialId": "short"},
        {"action": "resolve", "credentialId": 12345678},
        {"action": "resolve", "credentialId": "x" * 4097},
        {"action": "upsert", "credentialId": CREDENTIAL},
        {"action": "upsert", "credentialId": CREDENTIAL, "address": "0x1234"},
        {"action": "upsert", "credentialId": CREDENTIAL, "address": "0x" + "g" * 40},
        ["hasAny"],
        "hasAny",
    ],
)
def test_invalid_payloads(client, payload):
    response = post(client, payload)

    assert response.status_code == 400
    assert "error" in response.json()


def test_body_too_large(client):
    payload = {"action": "resolve", "credentialId": CREDENTIAL, "padding": "x" * 5000}

    response = post(client, payload)

    assert response.status_code == 413


# =============================================================================
# Readiness and rate limiting
# =============================================================================

@pytest.mark.parametrize("value", ["", "too-short"])
def test_missing_secret_returns_503(client, secret, value):
    secret["value"] = value

    response = post(client, {"action": "hasAny"})

    assert response.status_code == 503
    assert "error" in response.json()


def test_not_ready_is_reported_before_validation(client, secret):
    secret["value"] = ""

    assert post(client, {"action": "nope"}).status_code == 503
    assert post(client, content=b"x" * 10_000).status_code == 503


def test_rate_limit_returns_429_with_retry_after(client, clock):
    headers = {"x-forwarded-for": "203.0.113.7, 10.0.0.1"}
    for _ in range(30):
        assert post(client, {"action": "hasAny"}, headers=headers).status_code == 200

    clock.now += 15
    response = post(client, {"action": "hasAny"}, headers=headers)

    assert response.status_code == 429
    assert response.headers["retry-after"] == "45"
    assert "error" in response.json()

    # other clients are unaffected
    other = {"x-forwarded-for": "198.51.100.1"}
    assert post(client, {"action": "hasAny"}, headers=other).status_code == 200

    clock.now += 45
    assert post(client, {"action": "hasAny"}, headers=headers).status_code == 200


def test_rate_limit_applies_before_readiness(client, secret):
    secret["value"] = ""
    for _ in range(30):
        assert post(client, {"action": "hasAny"}).status_code == 503

    assert post(client, {"action": "hasAny"}).status_code == 429


def test_bad_requests_count_against_the_limit(client):
    for _ in range(30):
        post(client, content=b"{", headers={"x-forwarded-for": "192.0.2.1"})

    assert post(client, {"action": "hasAny"}, headers={"x-forwarded-for": "192.0.2.1"}).status_code == 429


# =============================================================================
# Server failures
# =============================================================================

def test_undecryptable_mapping_returns_500(client, database):
    post(client, {"action": "upsert", "credentialId": CREDENTIAL, "address": ADDRESS})
    with database._guard:
        conn = database._db()
        with conn:
            conn.execute("UPDATE passkey_wallet_mappings SET iv = 'AAAAAAAAAAAAAAAA'")

    response = post(client, {"action": "resolve", "credentialId": CREDENTIAL})

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to resolve passkey mapping."}


def test_storage_failure_returns_500(client, database):
    post(client, {"action": "hasAny"})
    with database._guard:
        database._db().execute("DROP TABLE passkey_wallet_mappings")

    assert post(client, {"action": "hasAny"}).status_code == 500
    assert post(client, {"action": "upsert", "credentialId": CREDENTIAL, "address": ADDRESS}).status_code == 500


# =============================================================================
# Health
# =============================================================================

def test_healthz_reports_readiness(client, secret):
    assert client.get("/healthz").json() == {"status": "healthy", "passkey_registry_ready": True}

    secret["value"] = ""
    assert client.get("/healthz").json() == {"status": "degraded", "passkey_registry_ready": False}
