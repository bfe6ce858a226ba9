import random
from unittest.mock import MagicMock

import pytest
import yaml
from fastapi import HTTPException
from fastapi.testclient import TestClient

from collate.application.study_service import SessionSettings, StudyService
from collate.consts import VERSION
from collate.infrastructure.stores import YamlCardStore
from collate.server import SessionRegistry, app

DECK = {
    "cards": [
        {"id": f"c{i}", "question": f"Q{i}", "answer": f"A{i}", "file_id": "f1", "file_name": "L1.pdf"}
        for i in range(1, 4)
    ]
    + [
        {
            "id": "m1",
            "question": "Mastered?",
            "answer": "Yes",
            "stats": {"latest_rating": 5, "rating_count": 3, "consecutive_fives": 3, "mastered": True,
                      "average_rating": 5.0},
        }
    ],
}


@pytest.fixture
def deck(tmp_path):
    path = tmp_path / "deck.yaml"
    path.write_text(yaml.safe_dump(DECK, sort_keys=False))
    return path


def _client_for(store):
    app.state.service = StudyService(
        store, rng=random.Random(0), settings=SessionSettings(pacing_delay=0)
    )
    return TestClient(app)


@pytest.fixture
def client(deck):
    with _client_for(YamlCardStore(deck)) as c:
        yield c


def _start(client, **body):
    response = client.post("/sessions", json=body)
    assert response.status_code == 201, response.text
    return response.json()


def _flip_and_rate(client, session_id, rating):
    client.post(f"/sessions/{session_id}/flip")
    return client.post(f"/sessions/{session_id}/rate", json={"rating": rating})


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["version"] == VERSION
    assert data["store_responsive"] is True


def test_health_reports_unreachable_store(tmp_path):
    with _client_for(YamlCardStore(tmp_path / "missing.yaml")) as client:
        data = client.get("/health").json()
    assert data["status"] == "ok"
    assert data["store_responsive"] is False


def test_get_version(client):
    response = client.get("/version")
    assert response.status_code == 200
    assert response.json() == {"version": VERSION}


def test_preview(client):
    response = client.get("/preview")

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 4
    assert data["mastered"] == 1
    assert data["never_studied"] == 3
    assert data["limits"] == [None]


def test_preview_scope_requires_id(client):
    response = client.get("/preview", params={"scope": "course"})
    assert response.status_code == 400


def test_mastery(client):
    response = client.get("/mastery")

    assert response.status_code == 200
    assert response.json() == {"percentage": 100, "tier": "high", "studied_count": 1}


def test_start_session_hides_answer(client):
    data = _start(client)

    assert data["state"] == "studying"
    assert data["queue_length"] == 3
    assert data["card"]["answer"] is None
    assert data["card"]["id"] != "m1"

    flipped = client.post(f"/sessions/{data['session_id']}/flip").json()
    assert flipped["flipped"] is True
    assert flipped["card"]["answer"].startswith("A")


@pytest.mark.parametrize("body", [{"limit": 0}, {"mode": "fast"}, {"scope": "file"}])
def test_start_session_bad_request(client, body):
    assert client.post("/sessions", json=body).status_code == 400


def test_start_session_nothing_to_study(client):
    response = client.post("/sessions", json={"scope": "deck", "id": "empty"})
    assert response.status_code == 404


def test_full_session_and_summary(client, deck):
    session_id = _start(client, mode="all")["session_id"]

    for rating in (5, 4, 3):
        response = _flip_and_rate(client, session_id, rating)
        assert response.status_code == 200
        assert response.json()["accepted"] is True

    state = client.get(f"/sessions/{session_id}").json()
    assert state["state"] == "complete"
    assert state["card"] is None

    assert client.post(f"/sessions/{session_id}/rate", json={"rating": 5}).status_code == 409
    assert client.post(f"/sessions/{session_id}/next").status_code == 409

    summary = client.post(f"/sessions/{session_id}/end").json()
    assert summary["total_cards"] == 4
    assert summary["cards_studied"] == 3
    assert summary["average_rating"] == 4.0
    assert summary["mastery_percentage"] == 75
    assert summary["rating_distribution"] == [
        {"rating": 1, "count": 0},
        {"rating": 2, "count": 0},
        {"rating": 3, "count": 1},
        {"rating": 4, "count": 1},
        {"rating": 5, "count": 1},
    ]
    assert summary["file_breakdown"][0]["file_name"] == "L1.pdf"
    assert summary["file_breakdown"][0]["card_count"] == 3

    assert len(yaml.safe_load(deck.read_text())["ratings"]) == 3


def test_rate_before_flip_not_accepted(client):
    session_id = _start(client)["session_id"]

    response = client.post(f"/sessions/{session_id}/rate", json={"rating": 4})

    assert response.status_code == 200
    assert response.json()["accepted"] is False
    assert response.json()["position"] == 0


def test_rate_invalid_value(client):
    session_id = _start(client)["session_id"]
    client.post(f"/sessions/{session_id}/flip")

    assert client.post(f"/sessions/{session_id}/rate", json={"rating": 7}).status_code == 400


def test_rate_wrong_card(client):
    session_id = _start(client)["session_id"]
    client.post(f"/sessions/{session_id}/flip")

    response = client.post(f"/sessions/{session_id}/rate", json={"rating": 3, "card_id": "m1"})
    assert response.status_code == 404


def test_low_rating_requeues(client):
    session_id = _start(client)["session_id"]

    data = _flip_and_rate(client, session_id, 1).json()

    assert data["queue_length"] == 4
    assert data["cards_requeued"] == 1


def test_navigation(client):
    session_id = _start(client)["session_id"]

    data = client.post(f"/sessions/{session_id}/previous").json()
    assert data["position"] == 2
    data = client.post(f"/sessions/{session_id}/next").json()
    assert data["state"] == "complete"


def test_unknown_session(client):
    assert client.get("/sessions/nope").status_code == 404
    assert client.post("/sessions/nope/flip").status_code == 404


def test_restart_rekeys_session(client):
    old_id = _start(client)["session_id"]
    for _ in range(3):
        _flip_and_rate(client, old_id, 3)

    response = client.post(f"/sessions/{old_id}/restart")

    assert response.status_code == 200
    new_id = response.json()["session_id"]
    assert new_id != old_id
    assert response.json()["queue_length"] == 3
    assert client.get(f"/sessions/{old_id}").status_code == 404
    assert client.get(f"/sessions/{new_id}").status_code == 200


def test_delete_session(client):
    session_id = _start(client)["session_id"]

    assert client.delete(f"/sessions/{session_id}").status_code == 204
    assert client.get(f"/sessions/{session_id}").status_code == 404


def test_persistence_failure_maps_to_502(store, make_card):
    store.fetch_pool.return_value = [make_card("a"), make_card("b")]
    store.persist_rating_update.return_value = False

    with _client_for(store) as client:
        session_id = _start(client)["session_id"]
        response = _flip_and_rate(client, session_id, 4)
        assert response.status_code == 502

        state = client.get(f"/sessions/{session_id}").json()
        assert state["position"] == 0
        assert state["flipped"] is True
        assert state["awaiting_rating"] is False


def test_store_read_failure_maps_to_502(tmp_path):
    with _client_for(YamlCardStore(tmp_path / "missing.yaml")) as client:
        assert client.get("/preview").status_code == 502
        assert client.post("/sessions", json={}).status_code == 502


def test_shutdown_closes_store(store):
    with _client_for(store) as client:
        client.get("/health")
        store.aclose.assert_not_awaited()

    store.aclose.assert_awaited_once()


def _idle_session(session_id):
    session = MagicMock()
    session.session_id = session_id
    session.awaiting_rating = False
    return session


def test_registry_drops_idle_sessions():
    now = [0.0]
    registry = SessionRegistry(idle_ttl=10, clock=lambda: now[0])
    registry.add(_idle_session("old"))
    now[0] = 8.0
    registry.add(_idle_session("recent"))

    now[0] = 15.0
    registry.add(_idle_session("new"))

    assert len(registry) == 2
    assert registry.get("recent").session_id == "recent"
    with pytest.raises(HTTPException) as exc:
        registry.get("old")
    assert exc.value.status_code == 404


def test_registry_access_keeps_session_alive():
    now = [0.0]
    registry = SessionRegistry(idle_ttl=10, clock=lambda: now[0])
    registry.add(_idle_session("a"))

    now[0] = 9.0
    registry.get("a")
    now[0] = 15.0
    assert registry.evict_idle() == 0

    now[0] = 30.0
    assert registry.evict_idle() == 1
    assert len(registry) == 0


def test_registry_keeps_session_with_rating_in_flight():
    now = [0.0]
    registry = SessionRegistry(idle_ttl=10, clock=lambda: now[0])
    busy = _idle_session("busy")
    busy.awaiting_rating = True
    registry.add(busy)

    now[0] = 100.0
    assert registry.evict_idle() == 0
    assert registry.get("busy") is busy
