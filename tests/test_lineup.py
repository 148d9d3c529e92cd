from __future__ import annotations

import random
from datetime import date, time

import pytest

from futsalhub.database import DayOfWeek, Period, TeamSide
from futsalhub.lineup import (
    balanced_sides,
    credited_side_of,
    day_of_week_for,
    is_lined_up,
    period_for,
    resolve_goal,
    shuffle_sides,
    split_mercenaries,
    vote_rate,
)


@pytest.mark.parametrize(
    ("start", "expected"),
    [
        (time(0, 0), Period.DAWN),
        (time(5, 59), Period.DAWN),
        (time(6, 0), Period.MORNING),
        (time(11, 30), Period.MORNING),
        (time(12, 0), Period.DAY),
        (time(18, 0), Period.EVENING),
        (time(21, 59), Period.EVENING),
        (time(22, 0), Period.NIGHT),
    ],
)
def test_period_boundaries(start, expected):
    assert period_for(start) == expected


def test_day_of_week():
    assert day_of_week_for(date(2024, 6, 1)) == DayOfWeek.SATURDAY
    assert day_of_week_for(date(2024, 6, 3)) == DayOfWeek.MONDAY


def test_lined_up_needs_both_sides():
    assert not is_lined_up([])
    assert not is_lined_up([TeamSide.HOME, TeamSide.HOME, TeamSide.UNDECIDED])
    assert is_lined_up([TeamSide.AWAY, TeamSide.UNDECIDED, TeamSide.HOME])


def test_balanced_sides_fill_the_smaller_side_first():
    assert balanced_sides(0, 0, 3) == [TeamSide.HOME, TeamSide.AWAY, TeamSide.HOME]
    assert balanced_sides(3, 1, 3) == [TeamSide.AWAY, TeamSide.AWAY, TeamSide.HOME]
    assert balanced_sides(2, 2, 0) == []


@pytest.mark.parametrize("players", [1, 2, 7, 10])
def test_shuffle_sides_is_balanced(players):
    home, away = shuffle_sides(list(range(players)), random.Random(players))
    assert abs(len(home) - len(away)) <= 1
    assert sorted(home + away) == list(range(players))


def test_split_mercenaries():
    assert split_mercenaries(0, 3, 3) == (0, 0)
    assert split_mercenaries(4, 3, 4) == (2, 2)
    assert split_mercenaries(3, 2, 3) == (2, 1)
    assert split_mercenaries(3, 3, 2) == (1, 2)
    home, away = split_mercenaries(3, 3, 3, random.Random(5))
    assert home + away == 3
    assert {home, away} == {1, 2}


def test_goal_for_own_side():
    resolved = resolve_goal(TeamSide.HOME, scorer_lineup_side=TeamSide.HOME)
    assert resolved.scorer_side == TeamSide.HOME
    assert not resolved.is_own_goal


def test_goal_for_other_side_is_an_own_goal():
    resolved = resolve_goal(TeamSide.HOME, scorer_lineup_side=TeamSide.AWAY)
    assert resolved.is_own_goal
    assert resolved.scorer_side == TeamSide.AWAY
    assert credited_side_of(resolved.scorer_side, resolved.is_own_goal) == TeamSide.HOME


def test_mercenary_goals():
    scored = resolve_goal(TeamSide.AWAY, scorer_lineup_side=None, is_scored_by_mercenary=True)
    assert scored.scorer_side == TeamSide.AWAY
    assert not scored.is_own_goal

    own = resolve_goal(TeamSide.HOME, scorer_lineup_side=None, is_own_goal=True, is_scored_by_mercenary=True)
    assert own.scorer_side == TeamSide.AWAY
    assert own.is_own_goal
    assert credited_side_of(own.scorer_side, own.is_own_goal) == TeamSide.HOME


def test_invalid_goals_raise():
    with pytest.raises(ValueError):
        resolve_goal(TeamSide.HOME, scorer_lineup_side=TeamSide.HOME, is_own_goal=True)
    with pytest.raises(ValueError):
        resolve_goal(TeamSide.HOME, scorer_lineup_side=TeamSide.UNDECIDED)
    with pytest.raises(ValueError):
        resolve_goal(TeamSide.UNDECIDED, scorer_lineup_side=TeamSide.HOME)


def test_vote_rate_rounds():
    assert vote_rate(0, 0) == 0
    assert vote_rate(1, 3) == 33
    assert vote_rate(2, 3) == 67
    assert vote_rate(4, 4) == 100
