import pytest

from player_engine import score_placement, streak_bonus_for, time_bonus_for


def test_score_never_drops_below_zero():
    score, streak, wrong = 3, 4, 0
    for _ in range(10):
        score, streak, wrong = score_placement(score, streak, wrong, correct=False)
        assert score >= 0
    assert score == 0
    assert streak == 0
    assert wrong == 10


def test_correct_deltas_grow_with_streak():
    score, streak, wrong = 0, 0, 0
    deltas = []
    for _ in range(6):
        before = score
        score, streak, wrong = score_placement(score, streak, wrong, correct=True)
        deltas.append(score - before)
    assert deltas == [10, 10, 15, 15, 15, 20]
    assert deltas == sorted(deltas)
    assert [streak_bonus_for(n) for n in range(1, 7)] == [0, 0, 5, 5, 5, 10]


def test_double_points_scales_base_and_bonus():
    score, streak, _ = score_placement(0, 2, 0, correct=True, double_points=True)
    assert streak == 3
    assert score == (10 + 5) * 2


def test_titles_skip_streak_bonus_but_keep_streak():
    score, streak, wrong = score_placement(
        12, 5, 1, correct=True, double_points=True, streak_bonus=False
    )
    assert score == 32
    assert streak == 6
    assert wrong == 1


@pytest.mark.parametrize(
    "remaining, expected",
    [(50, 5), (59, 5), (0, 0), (None, 0), (-3, 0), (600, 60)],
)
def test_time_bonus(remaining, expected):
    assert time_bonus_for(remaining) == expected
