from __future__ import annotations

import json

from fastapi.testclient import TestClient

from puppy_shuffle.config import FEED_DELAY_MS, MAX_STAGE
from puppy_shuffle.main import create_app
from puppy_shuffle.services.leaderboard import LeaderboardEntry, LeaderboardService, leaderboard_key, nickname_key
from puppy_shuffle.services.round import RoundMachine
from puppy_shuffle.services.session import (
    LINK_READY,
    NICKNAME_NOT_SAVED,
    NICKNAME_REQUIRED,
    SCORE_NOT_SAVED,
    SHARING_UNAVAILABLE,
    GameSession,
)
from puppy_shuffle.services.sharing import build_ranking_url
from puppy_shuffle.services.timing import shuffle_duration_ms


def create_session(client, **payload):
    resp = client.post("/v1/sessions", json=payload)
    assert resp.status_code == 201
    return resp.json()


def named_session(client, nickname: str = "Fox", **payload):
    body = create_session(client, **payload)
    resp = client.put(f"/v1/sessions/{body['session_id']}/nickname", json={"nickname": nickname})
    assert resp.status_code == 200
    return resp.json()


def target_of(app, session_id: str) -> int:
    return app.state.sessions.get(session_id).state.target_dog_id


def play_to_guessing(api, scheduler, session_id: str, stage: int | None = None):
    resp = api.post(f"/v1/sessions/{session_id}/rounds", json={"stage": stage})
    assert resp.status_code == 200
    started = resp.json()["round"]
    scheduler.advance(FEED_DELAY_MS + shuffle_duration_ms(started["stage"]))
    body = api.get(f"/v1/sessions/{session_id}").json()
    assert body["round"]["phase"] == "guessing"
    return body


def test_new_session_is_ready_without_nickname(client):
    api, _, _ = client

    body = create_session(api)

    assert body["nickname"] == ""
    assert body["client_id"] == body["session_id"]
    assert body["round"]["phase"] == "ready"
    assert body["round"]["stage"] == 1
    assert [dog["position"] for dog in body["round"]["dogs"]] == [15.0, 50.0, 85.0]
    assert body["leaderboard"] == []


def test_start_waits_for_nickname_then_resumes(client):
    api, _, _ = client
    session_id = create_session(api)["session_id"]

    pending = api.post(f"/v1/sessions/{session_id}/rounds", json={}).json()
    assert pending["notice"] == NICKNAME_REQUIRED
    assert pending["pending_start"] is True
    assert pending["round"]["phase"] == "ready"

    confirmed = api.put(f"/v1/sessions/{session_id}/nickname", json={"nickname": "  Lucky   Pup "}).json()
    assert confirmed["nickname"] == "Lucky Pup"
    assert confirmed["pending_start"] is False
    assert confirmed["round"]["phase"] == "feeding"
    assert confirmed["round"]["target_dog_id"] in {1, 2, 3}
    assert confirmed["round"]["target_position"] in {15.0, 50.0, 85.0}


def test_correct_pick_advances_to_next_stage(client):
    api, app, scheduler = client
    session_id = named_session(api)["session_id"]

    guessing = play_to_guessing(api, scheduler, session_id, stage=1)
    assert guessing["round"]["target_dog_id"] is None
    assert guessing["round"]["progress"] == 100

    target = target_of(app, session_id)
    result = api.post(f"/v1/sessions/{session_id}/picks", json={"dog_id": target}).json()
    assert result["round"]["phase"] == "result"
    assert result["round"]["outcome"] == "success"
    assert result["round"]["target_dog_id"] == target

    advanced = api.post(f"/v1/sessions/{session_id}/advance").json()
    assert advanced["round"]["stage"] == 2
    assert advanced["round"]["phase"] == "feeding"
    assert advanced["round"]["selected_dog_id"] is None


def test_clearing_last_stage_finishes_the_run(client):
    api, app, scheduler = client
    session_id = named_session(api, client_id="device-9")["session_id"]

    play_to_guessing(api, scheduler, session_id, stage=MAX_STAGE)
    body = api.post(f"/v1/sessions/{session_id}/picks", json={"dog_id": target_of(app, session_id)}).json()

    assert body["round"]["phase"] == "ranking"
    assert body["round"]["final_score"] == MAX_STAGE
    assert body["last_score"] == MAX_STAGE
    assert body["leaderboard"][0]["score"] == MAX_STAGE

    again = api.post(f"/v1/sessions/{session_id}/advance").json()
    assert again["round"]["phase"] == "ranking"


def test_wrong_pick_ends_run_and_records_score(client, store):
    api, app, scheduler = client
    session_id = named_session(api, client_id="device-1")["session_id"]

    guessing = play_to_guessing(api, scheduler, session_id, stage=4)
    target = target_of(app, session_id)
    wrong = next(dog["id"] for dog in guessing["round"]["dogs"] if dog["id"] != target)

    body = api.post(f"/v1/sessions/{session_id}/picks", json={"dog_id": wrong}).json()
    assert body["round"]["phase"] == "ranking"
    assert body["round"]["outcome"] == "fail"
    assert body["round"]["target_dog_id"] is None
    assert body["last_score"] == 3
    assert [(row["rank"], row["nickname"], row["score"]) for row in body["leaderboard"]] == [(1, "Fox", 3)]

    stored = json.loads(store._values[leaderboard_key("device-1")])
    assert stored[0]["nickname"] == "Fox"
    assert stored[0]["score"] == 3

    restarted = api.post(f"/v1/sessions/{session_id}/rounds", json={}).json()
    assert restarted["round"]["phase"] == "feeding"
    assert restarted["round"]["stage"] == 1
    assert restarted["last_score"] is None


def test_same_client_reloads_nickname_and_board(client, store):
    api, _, _ = client
    store._values[leaderboard_key("device-2")] = json.dumps([{"nickname": "Owl", "score": 8, "playedAt": 5}])
    named_session(api, nickname="Fox", client_id="device-2")

    body = create_session(api, client_id="device-2")

    assert body["nickname"] == "Fox"
    assert store._values[nickname_key("device-2")] == "Fox"
    assert [row["nickname"] for row in body["leaderboard"]] == ["Owl"]


def test_nickname_check_statuses(client):
    api, _, _ = client
    shared = build_ranking_url("https://puppy.example/", [LeaderboardEntry(nickname="Fox", score=4, played_at=1)])
    session_id = create_session(api, query=shared)["session_id"]

    def check(nickname):
        resp = api.post(f"/v1/sessions/{session_id}/nickname/check", json={"nickname": nickname})
        assert resp.status_code == 200
        return resp.json()["status"]

    assert check("a") == "invalid"
    assert check("ThisNameIsWay2Long") == "invalid"
    assert check(" fox ") == "duplicate"
    assert check("ab") == "ok"

    rejected = api.put(f"/v1/sessions/{session_id}/nickname", json={"nickname": "FOX"}).json()
    assert rejected["nickname"] == ""
    assert rejected["notice"] == "Nickname is already taken."


def test_shared_ranking_link_opens_ranking(client):
    api, _, _ = client
    shared = build_ranking_url(
        "https://puppy.example/",
        [
            LeaderboardEntry(nickname="Fox", score=9, played_at=1),
            LeaderboardEntry(nickname="Owl", score=12, played_at=2),
        ],
    )

    body = create_session(api, query=shared)

    assert body["is_shared_ranking"] is True
    assert body["round"]["phase"] == "ranking"
    assert [row["nickname"] for row in body["leaderboard"]] == ["Owl", "Fox"]


def test_shared_stage_link_opens_that_stage(client):
    api, _, _ = client

    body = create_session(api, query="?stage=7")

    assert body["round"]["phase"] == "ready"
    assert body["round"]["stage"] == 7
    assert body["round"]["dog_count"] == 5


def test_restart_clamps_stage(client):
    api, _, scheduler = client
    session_id = named_session(api)["session_id"]
    api.post(f"/v1/sessions/{session_id}/rounds", json={"stage": 3})
    scheduler.advance(FEED_DELAY_MS + 200)

    low = api.post(f"/v1/sessions/{session_id}/restart", json={"stage": 0}).json()
    assert low["round"]["phase"] == "ready"
    assert low["round"]["stage"] == 1
    assert scheduler.live == 0

    high = api.post(f"/v1/sessions/{session_id}/restart", json={"stage": 400}).json()
    assert high["round"]["stage"] == MAX_STAGE


def test_share_links(client):
    api, app, _ = client
    app.state.public_base_url = "https://puppy.example/play"
    session_id = create_session(api, query="stage=12")["session_id"]

    stage_share = api.post(f"/v1/sessions/{session_id}/share").json()
    assert stage_share["url"] == "https://puppy.example/play?stage=12"
    assert stage_share["message"] == LINK_READY

    ranking_share = api.post(f"/v1/sessions/{session_id}/ranking/share").json()
    assert ranking_share["url"].startswith("https://puppy.example/play?view=ranking")


def test_sharing_unavailable_when_base_url_is_unset(client):
    api, _, _ = client
    session_id = create_session(api)["session_id"]

    stage_share = api.post(f"/v1/sessions/{session_id}/share").json()
    ranking_share = api.post(f"/v1/sessions/{session_id}/ranking/share").json()

    assert stage_share == {"url": None, "message": SHARING_UNAVAILABLE}
    assert ranking_share == {"url": None, "message": SHARING_UNAVAILABLE}
    assert api.get(f"/v1/sessions/{session_id}").json()["notice"] == SHARING_UNAVAILABLE


def test_sharing_unavailable_without_base_url(store, timers):
    session = GameSession("s1", "c1", LeaderboardService(store), RoundMachine(timers))

    result = session.share_ranking(None)

    assert result.url is None
    assert result.message == SHARING_UNAVAILABLE
    assert session.notice == SHARING_UNAVAILABLE
    assert session.share_current_state("https://puppy.example/").url == "https://puppy.example/?stage=1"


def test_unknown_session_returns_404(client):
    api, _, _ = client

    response = api.get("/v1/sessions/nope")

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "SESSION_NOT_FOUND"


def test_invalid_pick_payload_returns_400(client):
    api, _, _ = client
    session_id = create_session(api)["session_id"]

    response = api.post(f"/v1/sessions/{session_id}/picks", json={"dog_id": "left"})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_closing_session_stops_it(client):
    api, _, scheduler = client
    session_id = named_session(api)["session_id"]
    api.post(f"/v1/sessions/{session_id}/rounds", json={})

    assert api.delete(f"/v1/sessions/{session_id}").status_code == 204
    assert scheduler.live == 0
    assert api.get(f"/v1/sessions/{session_id}").status_code == 404


def test_nickname_save_failure_is_a_notice(failing_store, scheduler):
    app = create_app(store=failing_store, scheduler_factory=lambda: scheduler)

    with TestClient(app) as api:
        body = named_session(api, nickname="Fox")

    assert body["nickname"] == "Fox"
    assert body["notice"] == NICKNAME_NOT_SAVED


def test_health_probes(client):
    api, _, _ = client

    assert api.get("/v1/healthz").json() == {"status": "ok"}
    assert api.get("/v1/readyz").json() == {"status": "ok"}


def test_score_save_failure_keeps_result_with_notice(failing_store, scheduler):
    app = create_app(store=failing_store, scheduler_factory=lambda: scheduler)

    with TestClient(app) as api:
        session_id = named_session(api, nickname="Fox")["session_id"]
        guessing = play_to_guessing(api, scheduler, session_id, stage=4)
        target = target_of(app, session_id)
        wrong = next(dog["id"] for dog in guessing["round"]["dogs"] if dog["id"] != target)

        body = api.post(f"/v1/sessions/{session_id}/picks", json={"dog_id": wrong}).json()

    assert body["round"]["phase"] == "ranking"
    assert body["last_score"] == 3
    assert body["notice"] == SCORE_NOT_SAVED
    assert [(row["nickname"], row["score"]) for row in body["leaderboard"]] == [("Fox", 3)]
    assert failing_store._values == {}


def test_deeply_nested_shared_ranking_is_ignored(client):
    api, _, _ = client

    body = create_session(api, query="view=ranking&ranking=" + "[" * 16_000)

    assert body["is_shared_ranking"] is False
    assert body["leaderboard"] == []
    assert body["round"]["phase"] == "ready"


def test_least_recently_used_session_is_evicted(store, scheduler, monkeypatch):
    monkeypatch.setenv("MAX_SESSIONS", "2")
    app = create_app(store=store, scheduler_factory=lambda: scheduler)

    with TestClient(app) as api:
        oldest = named_session(api, nickname="Fox")["session_id"]
        api.post(f"/v1/sessions/{oldest}/rounds", json={})
        idle = create_session(api)["session_id"]
        assert scheduler.live == 1

        # Touching the oldest session makes the untouched one the next to go.
        assert api.get(f"/v1/sessions/{oldest}").status_code == 200
        newest = create_session(api)["session_id"]

        assert api.get(f"/v1/sessions/{idle}").status_code == 404
        assert api.get(f"/v1/sessions/{oldest}").status_code == 200
        assert api.get(f"/v1/sessions/{newest}").status_code == 200
        assert len(app.state.sessions) == 2
        assert scheduler.live == 1

        evicting = create_session(api)["session_id"]

        assert api.get(f"/v1/sessions/{oldest}").status_code == 404
        assert api.get(f"/v1/sessions/{evicting}").status_code == 200
        assert scheduler.live == 0
