import pytest
import requests

from api_errors import GatewayError
from game_store import LocalGameStore, RemoteGameStore, get_game_store
from phase_formats import GameSession, LeaderboardEntry, parse_timestamp


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload
        self.content = b"" if payload is None else b"x"

    def json(self):
        return self._payload


def test_local_store_seeds_quote_catalog_once(tmp_path, clock):
    db_path = str(tmp_path / "seed.db")
    store = LocalGameStore(db_path, clock=clock)
    assert len(store.fetch_active_quotes()) == 16
    LocalGameStore(db_path, clock=clock)
    assert len(store.fetch_active_quotes()) == 16


def test_local_store_round_trips_json_and_bool_columns(store):
    session = store.insert("game_sessions", {"is_active": False})
    player = store.insert(
        "active_players",
        {
            "session_id": session["id"],
            "player_name": "Ada",
            "placements": {"q1": "preparation"},
            "is_completed": False,
        },
    )
    store.update("active_players", {"id": player["id"]}, {"is_completed": True})

    fetched = store.select("active_players", {"session_id": session["id"]})[0]
    assert fetched["placements"] == {"q1": "preparation"}
    assert fetched["is_completed"] is True
    assert store.select("active_players", {"is_completed": False}) == []


def test_local_store_orders_and_limits(store, clock):
    for name, score in (("a", 5), ("b", 50), ("c", 20)):
        clock.advance(1)
        store.insert("leaderboard", {"player_name": name, "score": score, "time_ms": 1})
    rows = store.select("leaderboard", order="score", descending=True, limit=2)
    assert [r["player_name"] for r in rows] == ["b", "c"]


def test_null_filter_matches_missing_values(store):
    store.insert("game_sessions", {"is_active": True, "current_hint": None})
    assert len(store.select("game_sessions", {"current_hint": None})) == 1


def test_duplicate_player_name_is_a_conflict(store):
    store.insert("active_players", {"session_id": "s1", "player_name": "Ada"})
    with pytest.raises(GatewayError) as excinfo:
        store.insert("active_players", {"session_id": "s1", "player_name": "Ada"})
    assert excinfo.value.status_code == 409


def test_unknown_collection_or_column_is_rejected(store):
    with pytest.raises(GatewayError):
        store.select("players")
    with pytest.raises(GatewayError):
        store.insert("game_sessions", {"bogus": 1})


def test_change_feed_filters_and_reports_old_rows(store):
    events = []
    first = store.insert("active_players", {"session_id": "s1", "player_name": "Ada"})
    store.insert("active_players", {"session_id": "s2", "player_name": "Bob"})
    subscription = store.subscribe("active_players", events.append, {"session_id": "s1"})

    store.update("active_players", {"id": first["id"]}, {"score": 10})
    store.update("active_players", {"session_id": "s2"}, {"score": 99})
    store.delete("active_players", {"session_id": "s1"})

    assert [e.event_type for e in events] == ["update", "delete"]
    assert events[0].old_row["score"] == 0
    assert events[0].new_row["score"] == 10
    assert events[1].new_row is None
    assert events[1].row["player_name"] == "Ada"

    subscription.unsubscribe()
    store.insert("active_players", {"session_id": "s1", "player_name": "Cy"})
    assert len(events) == 2


def test_failing_subscriber_does_not_block_others(store):
    seen = []

    def _broken(_event):
        raise RuntimeError("subscriber bug")

    store.subscribe("leaderboard", _broken)
    store.subscribe("leaderboard", seen.append)
    store.insert("leaderboard", {"player_name": "Ada", "score": 1, "time_ms": 1})
    assert len(seen) == 1


def test_remote_store_builds_postgrest_requests(monkeypatch, clock):
    calls = []

    def fake_request(method, url, params=None, json=None, headers=None, timeout=None):
        calls.append((method, url, params, json, headers))
        if method == "GET":
            return FakeResponse(200, [{"id": "s1", "is_active": True}])
        if method == "POST":
            return FakeResponse(201, [dict(json)])
        return FakeResponse(200, [{"id": "s1", "current_hint": None}])

    monkeypatch.setattr("game_store.requests.request", fake_request)
    store = RemoteGameStore("https://db.example.com/", "secret", clock=clock)
    events = []
    store.subscribe("game_sessions", events.append)

    rows = store.select(
        "game_sessions", {"is_active": True, "game_ended_at": None}, order="created_at",
        descending=True, limit=1,
    )
    assert rows == [{"id": "s1", "is_active": True}]
    method, url, params, _, headers = calls[0]
    assert url == "https://db.example.com/rest/v1/game_sessions"
    assert params["is_active"] == "eq.true"
    assert params["game_ended_at"] == "is.null"
    assert params["order"] == "created_at.desc"
    assert params["limit"] == 1
    assert headers["apikey"] == "secret"
    assert headers["Authorization"] == "Bearer secret"

    inserted = store.insert("game_sessions", {"is_active": False})
    assert inserted["created_at"] == clock()
    store.update("game_sessions", {"id": "s1"}, {"current_hint": None})
    assert calls[2][0] == "PATCH"
    assert calls[2][2] == {"id": "eq.s1"}
    assert [e.event_type for e in events] == ["insert", "update"]


def test_remote_store_reads_and_writes_iso_timestamps(monkeypatch, clock):
    calls = []
    session_row = {
        "id": "s1",
        "is_active": True,
        "timer_seconds": 600,
        "timer_started_at": "2025-01-01T00:00:00+00:00",
        "game_ended_at": None,
        "created_at": "2024-12-31T23:59:30.12345Z",
        "updated_at": "2025-01-01 00:00:00",
    }

    def fake_request(method, url, params=None, json=None, headers=None, timeout=None):
        calls.append((method, url, json))
        if method == "GET":
            return FakeResponse(200, [dict(session_row)])
        return FakeResponse(201, [dict(json)])

    monkeypatch.setattr("game_store.requests.request", fake_request)
    store = RemoteGameStore("https://db.example.com", clock=clock)

    session = GameSession.from_row(store.fetch_current_session())
    assert session.timer_started_at == 1735689600.0
    assert session.game_ended_at is None
    assert session.created_at == pytest.approx(1735689570.12345)
    assert session.updated_at == 1735689600.0
    assert session.remaining_seconds(1735689600.0 + 90) == 510

    entry = LeaderboardEntry.from_row(
        store.insert("leaderboard", {"player_name": "Ada", "score": 40, "time_ms": 1000})
    )
    sent = calls[-1][2]
    assert "updated_at" not in sent
    assert sent["created_at"] == "2024-12-31T21:20:00+00:00"
    assert entry.created_at == clock()

    store.insert("saved_leaderboards", {"game_name": "Friday", "players": []})
    assert set(calls[-1][2]) == {"id", "game_name", "players", "saved_at"}

    store.update("game_sessions", {"id": "s1"}, {"timer_started_at": 1735689600.0})
    assert calls[-1][2]["timer_started_at"] == "2025-01-01T00:00:00+00:00"


def test_remote_store_rejects_unreadable_timestamps(monkeypatch):
    monkeypatch.setattr(
        "game_store.requests.request",
        lambda *_a, **_k: FakeResponse(200, [{"id": "s1", "timer_started_at": "soon"}]),
    )
    store = RemoteGameStore("https://db.example.com")
    with pytest.raises(GatewayError) as excinfo:
        store.fetch_current_session()
    assert excinfo.value.status_code == 502


def test_parse_timestamp_accepts_epoch_and_iso_values():
    assert parse_timestamp(None) is None
    assert parse_timestamp("") is None
    assert parse_timestamp(12.5) == 12.5
    assert parse_timestamp("12.5") == 12.5
    assert parse_timestamp("2025-01-01T00:00:00Z") == 1735689600.0
    assert parse_timestamp("2025-01-01T01:00:00+01:00") == 1735689600.0
    with pytest.raises(ValueError):
        parse_timestamp("yesterday")


def test_local_store_only_stamps_columns_the_table_has(store, clock):
    entry = store.insert("leaderboard", {"player_name": "Ada", "score": 1, "time_ms": 1})
    assert "updated_at" not in entry
    assert entry["created_at"] == clock()

    clock.advance(5)
    store.update("leaderboard", {"id": entry["id"]}, {"score": 2})
    assert store.select("leaderboard")[0]["created_at"] == clock() - 5

    player = store.insert("active_players", {"session_id": "s1", "player_name": "Ada"})
    assert player["joined_at"] == clock()
    store.update("active_players", {"id": player["id"]}, {"score": 3})
    assert store.select("active_players")[0]["updated_at"] == clock()


def test_remote_store_maps_failures_to_gateway_errors(monkeypatch):
    def unreachable(*_args, **_kwargs):
        raise requests.ConnectionError("down")

    monkeypatch.setattr("game_store.requests.request", unreachable)
    store = RemoteGameStore("https://db.example.com")
    with pytest.raises(GatewayError):
        store.select("custom_quotes")

    monkeypatch.setattr(
        "game_store.requests.request", lambda *_a, **_k: FakeResponse(409, {"message": "dup"})
    )
    with pytest.raises(GatewayError) as excinfo:
        store.insert("active_players", {"session_id": "s1", "player_name": "Ada"})
    assert excinfo.value.status_code == 409

    monkeypatch.setattr(
        "game_store.requests.request", lambda *_a, **_k: FakeResponse(500, {"message": "x"})
    )
    with pytest.raises(GatewayError) as excinfo:
        store.delete("active_players", {"session_id": "s1"})
    assert excinfo.value.status_code == 502


def test_get_game_store_picks_backend_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("GAME_DB", str(tmp_path / "env.db"))
    monkeypatch.setenv("GAME_API_URL", "https://db.example.com")
    monkeypatch.setenv("GAME_API_KEY", "k")
    monkeypatch.setenv("APP_STANDALONE", "false")
    assert isinstance(get_game_store(), RemoteGameStore)

    monkeypatch.setenv("APP_STANDALONE", "true")
    assert isinstance(get_game_store(), LocalGameStore)

    monkeypatch.setenv("APP_STANDALONE", "false")
    monkeypatch.delenv("GAME_API_URL")
    assert isinstance(get_game_store(), LocalGameStore)
