import pytest

from api_errors import GatewayError, ValidationError
from session_controller import SessionController


def _messages(controller):
    return [n.message for n in controller.notifier.drain()]


def test_init_session_creates_medium_default(controller, store):
    session = controller.session
    assert session is not None
    assert session.is_active is False
    assert session.difficulty.value == "medium"
    assert session.timer_seconds == 600
    assert session.quote_count == 16
    assert len(store.select("game_sessions")) == 1


def test_init_session_adopts_latest_existing(controller, store, leaderboard, scheduler, clock):
    clock.advance(5)
    newer = store.insert("game_sessions", {"is_active": False, "difficulty": "hard"})
    other = SessionController(
        store=store, leaderboard=leaderboard, scheduler=scheduler, clock=clock
    )
    assert other.init_session().id == newer["id"]
    other.close()


def test_start_pause_end_lifecycle(controller, clock):
    assert controller.start() is True
    assert controller.session.is_active is True
    assert controller.session.timer_started_at == clock()
    assert controller.session.game_ended_at is None

    assert controller.pause() is True
    assert controller.session.is_active is False
    assert controller.session.timer_started_at is None

    clock.advance(3)
    assert controller.end() is True
    assert controller.session.game_ended_at == clock()
    assert _messages(controller) == [
        "Game started!",
        "Game paused",
        "Game ended! Showing leaderboard to players...",
    ]


def test_remaining_seconds_rounds_up(controller, clock):
    controller.set_timer(120)
    controller.start()
    clock.advance(10.4)
    assert controller.snapshot()["remaining_seconds"] == 110
    clock.advance(200)
    assert controller.snapshot()["remaining_seconds"] == 0


def test_set_timer_bounds(controller):
    assert controller.set_timer(60) is True
    assert controller.set_timer(3600) is True
    for bad in (59, 3601, "abc", None):
        with pytest.raises(ValidationError):
            controller.set_timer(bad)
    assert controller.session.timer_seconds == 3600


def test_set_difficulty_applies_timer_and_quote_count(controller):
    assert controller.set_difficulty("hard") is True
    assert controller.session.timer_seconds == 300
    assert controller.session.quote_count == 24
    with pytest.raises(ValidationError):
        controller.set_difficulty("nightmare")


def test_custom_settings_clamp_quote_count(controller):
    assert controller.set_custom_settings(2, 7) is True
    assert controller.session.quote_count == 4
    assert controller.session.timer_seconds == 420

    assert controller.set_custom_settings(500, 60) is True
    assert controller.session.quote_count == 16

    with pytest.raises(ValidationError):
        controller.set_custom_settings(10, 0)
    with pytest.raises(ValidationError):
        controller.set_custom_settings(10, 61)


def test_toggle_double_points(controller):
    assert controller.toggle_double_points() is True
    assert controller.session.double_points_active is True
    assert controller.toggle_double_points() is True
    assert controller.session.double_points_active is False


def test_hint_clears_after_ten_seconds(controller, scheduler):
    assert controller.send_hint("Look at the light bulb") is True
    assert controller.session.current_hint == "Look at the light bulb"
    scheduler.advance(9)
    assert controller.session.current_hint == "Look at the light bulb"
    scheduler.advance(1)
    assert controller.session.current_hint is None


def test_newer_hint_is_not_cleared_by_older_timer(controller, scheduler):
    controller.send_hint("first")
    scheduler.advance(6)
    controller.send_hint("second")
    scheduler.advance(4)
    assert controller.session.current_hint == "second"
    scheduler.advance(6)
    assert controller.session.current_hint is None


def test_hint_clear_skips_text_changed_elsewhere(controller, scheduler, store):
    controller.send_hint("first")
    store.update("game_sessions", {"id": controller.session.id}, {"current_hint": "manual"})
    scheduler.advance(10)
    assert controller.session.current_hint == "manual"


def test_empty_hint_rejected(controller):
    with pytest.raises(ValidationError):
        controller.send_hint("   ")


def test_roster_follows_player_changes(controller, joined_engine):
    assert [p.player_name for p in controller.roster()] == ["Ada"]
    joined_engine.board.attempt_drop(
        joined_engine.board.available_titles[0].id,
        joined_engine.board.available_titles[0].phase.value,
    )
    assert controller.roster()[0].score == 10
    assert controller.snapshot()["player_count"] == 1


def test_clear_players_and_reset_leaderboard(controller, joined_engine, store):
    controller.start()
    controller.end()
    assert controller.reset_leaderboard() is True
    assert store.select("active_players") == []
    session = controller.session
    assert session.is_active is False
    assert session.game_ended_at is None
    assert session.timer_started_at is None
    assert controller.roster() == []
    assert len(store.select("leaderboard")) == 1


def test_save_leaderboard_snapshots_and_resets(controller, make_engine, store):
    for name, points in (("Ada", 30), ("Grace", 50)):
        engine = make_engine()
        engine.load()
        engine.join(name)
        engine.complete_game(points * 10)

    saved = controller.save_leaderboard("Period 3")
    assert saved.game_name == "Period 3"
    assert saved.winner_name == "Grace"
    assert saved.winner_score == 50
    assert len(saved.players) == 2
    assert store.select("active_players") == []

    with pytest.raises(ValidationError):
        controller.save_leaderboard("Empty room")
    with pytest.raises(ValidationError):
        controller.save_leaderboard("  ")


def test_missing_session_reports_instead_of_raising(store, leaderboard, scheduler, clock):
    gm = SessionController(store=store, leaderboard=leaderboard, scheduler=scheduler, clock=clock)
    assert gm.start() is False
    assert gm.toggle_double_points() is False
    assert _messages(gm) == [SessionController.MISSING_SESSION_MESSAGE] * 2


def test_gateway_failure_becomes_notification(controller, monkeypatch):
    def _boom(*_args, **_kwargs):
        raise GatewayError("store offline")

    monkeypatch.setattr(controller.store, "update", _boom)
    assert controller.start() is False
    assert _messages(controller) == ["Failed to start game"]
