"""HTTP surface: routes, auth, response envelope and error mapping."""

import jwt
import pytest
from fastapi.testclient import TestClient

from gymqueue_api.app import create_app
from gymqueue_api.core.config import get_settings
from gymqueue_api.core.dependencies import get_query_service, get_queue_coordinator
from gymqueue_shared.errors import InvalidTransition
from gymqueue_shared.models import QueueStatus
from tests.conftest import TEST_INTERNAL_KEY, TEST_JWT_SECRET

RACK = "squat-rack-1"


def _token(member_id, name=None):
    claims = {"sub": member_id}
    if name:
        claims["name"] = name
    return jwt.encode(claims, TEST_JWT_SECRET, algorithm="HS256")


def _auth(member_id, name=None):
    return {"Authorization": f"Bearer {_token(member_id, name)}"}


INTERNAL = {"X-Internal-Key": TEST_INTERNAL_KEY}


@pytest.fixture
def client(coordinator, query):
    app = create_app(get_settings(), with_lifespan=False)
    app.dependency_overrides[get_queue_coordinator] = lambda: coordinator
    app.dependency_overrides[get_query_service] = lambda: query
    with TestClient(app) as test_client:
        yield test_client


def _assert_error(response, status_code, code):
    assert response.status_code == status_code
    body = response.json()
    assert body["success"] is False
    assert body["error"]["code"] == code
    assert body["error"]["message"]


# ----------------------------------------------------------------------
# Member routes
# ----------------------------------------------------------------------


def test_join_returns_position_in_envelope(client):
    response = client.post(f"/equipment/{RACK}/queue", headers=_auth("alice", "Alice"))

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["position"] == 1
    assert body["data"]["queue_length"] == 1
    assert body["data"]["status"] == "WAITING"
    assert body["data"]["estimated_wait_minutes"] == 30


def test_join_twice_is_conflict(client):
    client.post(f"/equipment/{RACK}/queue", headers=_auth("alice"))

    response = client.post(f"/equipment/{RACK}/queue", headers=_auth("alice"))

    _assert_error(response, 409, "AlreadyQueued")


def test_join_without_token_is_unauthorized(client):
    _assert_error(client.post(f"/equipment/{RACK}/queue"), 401, "Unauthorized")


def test_join_with_bad_token_is_unauthorized(client):
    response = client.post(
        f"/equipment/{RACK}/queue", headers={"Authorization": "Bearer not-a-jwt"}
    )
    _assert_error(response, 401, "Unauthorized")


def test_auth_cookie_is_accepted(client):
    client.cookies.set("auth_token", _token("alice"))

    response = client.post(f"/equipment/{RACK}/queue")

    assert response.status_code == 200


def test_leave_not_in_queue(client):
    _assert_error(
        client.delete(f"/equipment/{RACK}/queue/me", headers=_auth("alice")), 404, "NotInQueue"
    )


def test_leave_returns_left_entry(client):
    client.post(f"/equipment/{RACK}/queue", headers=_auth("alice"))

    response = client.delete(f"/equipment/{RACK}/queue/me", headers=_auth("alice"))

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "LEFT"


def test_claim_before_turn_is_conflict(client):
    client.post(f"/equipment/{RACK}/queue", headers=_auth("alice"))

    response = client.post(f"/equipment/{RACK}/queue/claim", headers=_auth("alice"))

    _assert_error(response, 409, "NotYourTurn")


def test_claim_after_window_is_conflict(client, clock):
    client.post(f"/equipment/{RACK}/queue", headers=_auth("alice"))
    client.post(f"/internal/equipment/{RACK}/freed", headers=INTERNAL)
    clock.advance(minutes=5, seconds=1)

    response = client.post(f"/equipment/{RACK}/queue/claim", headers=_auth("alice"))

    _assert_error(response, 409, "ClaimWindowExpired")


def test_full_flow_over_http(client, store, clock):
    for member in ("alice", "bob"):
        client.post(f"/equipment/{RACK}/queue", headers=_auth(member))

    freed = client.post(f"/internal/equipment/{RACK}/freed", headers=INTERNAL)
    assert freed.json()["data"]["promoted"] is True
    assert freed.json()["data"]["member_id"] == "alice"

    position = client.get(f"/equipment/{RACK}/queue/position", headers=_auth("alice"))
    assert position.json()["data"]["status"] == "NOTIFIED"
    assert position.json()["data"]["expires_at"] is not None

    claim = client.post(f"/equipment/{RACK}/queue/claim", headers=_auth("alice"))
    assert claim.status_code == 200
    assert claim.json()["data"]["status"] == "CLAIMED"

    position = client.get(f"/equipment/{RACK}/queue/position", headers=_auth("bob"))
    assert position.json()["data"]["position"] == 1
    assert store.statuses(RACK)["alice"] is QueueStatus.CLAIMED


def test_position_when_not_in_queue(client):
    response = client.get(f"/equipment/{RACK}/queue/position", headers=_auth("alice"))

    assert response.status_code == 200
    assert response.json()["data"] == {
        "in_queue": False,
        "total_in_queue": 0,
        "queue_id": None,
        "position": None,
        "status": None,
        "joined_at": None,
        "notified_at": None,
        "expires_at": None,
        "estimated_wait_minutes": None,
    }


def test_queue_listing_is_public(client):
    client.post(f"/equipment/{RACK}/queue", headers=_auth("alice", "Alice"))
    client.post(f"/equipment/{RACK}/queue", headers=_auth("bob", "Bob"))

    response = client.get(f"/equipment/{RACK}/queue")

    data = response.json()["data"]
    assert data["queue_length"] == 2
    assert [e["member_name"] for e in data["entries"]] == ["Alice", "Bob"]


def test_history_lists_finished_entries(client):
    client.post(f"/equipment/{RACK}/queue", headers=_auth("alice"))
    client.delete(f"/equipment/{RACK}/queue/me", headers=_auth("alice"))

    response = client.get("/members/me/queue-history", headers=_auth("alice"))

    entries = response.json()["data"]
    assert len(entries) == 1
    assert entries[0]["status"] == "LEFT"
    assert entries[0]["resolved_at"] is not None


def test_history_limit_is_validated(client):
    response = client.get("/members/me/queue-history?limit=0", headers=_auth("alice"))
    _assert_error(response, 422, "ValidationError")


# ----------------------------------------------------------------------
# Internal routes
# ----------------------------------------------------------------------


def test_internal_routes_require_key(client):
    _assert_error(client.post(f"/internal/equipment/{RACK}/freed"), 403, "Forbidden")
    _assert_error(
        client.post("/internal/queue/sweep", headers={"X-Internal-Key": "wrong"}),
        403,
        "Forbidden",
    )


def test_freed_on_empty_queue(client):
    response = client.post(f"/internal/equipment/{RACK}/freed", headers=INTERNAL)

    assert response.status_code == 200
    assert response.json()["data"]["promoted"] is False


def test_manual_sweep(client, clock):
    for member in ("alice", "bob"):
        client.post(f"/equipment/{RACK}/queue", headers=_auth(member))
    client.post(f"/internal/equipment/{RACK}/freed", headers=INTERNAL)
    clock.advance(minutes=6)

    response = client.post("/internal/queue/sweep", headers=INTERNAL)

    assert response.json()["data"] == {"expired": 1, "promoted": 1}


# ----------------------------------------------------------------------
# Service endpoints
# ----------------------------------------------------------------------


def test_unknown_route_uses_error_envelope(client):
    _assert_error(client.get("/no-such-route"), 404, "NotFound")


def test_ping_and_health(client):
    assert client.get("/ping").text == "pong"
    assert client.get("/health").json()["status"] == "healthy"


class _RejectingCoordinator:
    async def on_resource_freed(self, equipment_id):
        raise InvalidTransition("Cannot move queue entry from LEFT to NOTIFIED")

    async def sweep_expired(self):
        raise InvalidTransition("Cannot move queue entry from CLAIMED to EXPIRED")


def test_internal_routes_keep_queue_error_codes(query):
    app = create_app(get_settings(), with_lifespan=False)
    app.dependency_overrides[get_queue_coordinator] = lambda: _RejectingCoordinator()
    app.dependency_overrides[get_query_service] = lambda: query

    with TestClient(app) as client:
        freed = client.post(f"/internal/equipment/{RACK}/freed", headers=INTERNAL)
        sweep = client.post("/internal/queue/sweep", headers=INTERNAL)

    _assert_error(freed, 409, "InvalidTransition")
    _assert_error(sweep, 409, "InvalidTransition")
