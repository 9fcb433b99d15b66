import random

from phase_formats import ActivePlayer, GameState
from leaderboard import rank_players, reveal_stages
from reflection import GENERAL_PROMPTS, REFLECTION_PROMPTS, build_reflection, most_challenging_phase


def _player(name, score, joined_at=0.0):
    return ActivePlayer(
        id=name.lower(), session_id="s1", player_name=name, score=score, joined_at=joined_at
    )


def test_rank_players_breaks_ties_by_join_time():
    ranked = rank_players([_player("Late", 40, 5.0), _player("Early", 40, 1.0), _player("Top", 90)])
    assert [p.player_name for p in ranked] == ["Top", "Early", "Late"]


def test_reveal_stages_with_full_podium():
    players = [_player("A", 10), _player("B", 30), _player("C", 20), _player("D", 5)]
    stages = reveal_stages(players)
    assert [s["stage"] for s in stages] == ["timesup", "third", "second", "first", "full"]
    assert stages[1]["player"]["player_name"] == "A"
    assert stages[3]["player"]["player_name"] == "B"
    assert [p["player_name"] for p in stages[-1]["players"]] == ["B", "C", "A", "D"]


def test_reveal_stages_skip_missing_places():
    stages = reveal_stages([_player("Solo", 12)])
    assert [s["stage"] for s in stages] == ["timesup", "first", "full"]
    assert [s["stage"] for s in reveal_stages([])] == ["timesup", "full"]


def test_leaderboard_history_and_saved_order(leaderboard, clock):
    leaderboard.record_completion(session_id="s1", player_name="Ada", score=40, time_ms=1000)
    leaderboard.record_completion(session_id="s1", player_name="Bob", score=70, time_ms=2000)
    assert [e.player_name for e in leaderboard.history()] == ["Bob", "Ada"]

    leaderboard.save_snapshot(session_id="s1", game_name="Monday", players=[_player("Ada", 1)])
    clock.advance(60)
    leaderboard.save_snapshot(session_id="s1", game_name="Tuesday", players=[_player("Bob", 2)])
    saved = leaderboard.saved()
    assert [s.game_name for s in saved] == ["Tuesday", "Monday"]
    assert saved[0].winner_name == "Bob"


def test_most_challenging_phase_prefers_clear_leader():
    rng = random.Random(3)
    misses = {"preparation": 1, "incubation": 4, "illumination": 0, "verification": 2}
    assert most_challenging_phase(misses, rng).value == "incubation"


def test_most_challenging_phase_falls_back_to_random_choice():
    picks = {most_challenging_phase({}, random.Random(seed)).value for seed in range(40)}
    assert len(picks) > 1
    tied = {"preparation": 2, "verification": 2}
    for seed in range(20):
        assert most_challenging_phase(tied, random.Random(seed)).value in {
            "preparation",
            "verification",
        }


def test_build_reflection_uses_state_and_prompt_tables():
    state = GameState(score=55, base_score=50, time_bonus=5, wrong_attempts=3, elapsed_time=240)
    reflection = build_reflection("Ada", state, {"verification": 3}, random.Random(1))
    assert reflection["score"] == 55
    assert reflection["time_bonus"] == 5
    assert reflection["challenging_phase"] == "verification"
    assert reflection["challenging_phase_title"] == "Verification"
    assert reflection["phase_prompt"] in REFLECTION_PROMPTS[reflection["challenging_phase"]]
    assert reflection["general_prompt"] in GENERAL_PROMPTS
