"""Pure helpers for schedule timing, lineup balancing and goal bookkeeping."""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import date, time
from typing import Iterable, Sequence

from .database import DayOfWeek, Period, TeamSide

_WEEKDAYS = (
    DayOfWeek.MONDAY,
    DayOfWeek.TUESDAY,
    DayOfWeek.WEDNESDAY,
    DayOfWeek.THURSDAY,
    DayOfWeek.FRIDAY,
    DayOfWeek.SATURDAY,
    DayOfWeek.SUNDAY,
)


def period_for(start: time) -> Period:
    """Bucket a kick-off time into the period used by schedule filters."""
    if start.hour < 6:
        return Period.DAWN
    if start.hour < 12:
        return Period.MORNING
    if start.hour < 18:
        return Period.DAY
    if start.hour < 22:
        return Period.EVENING
    return Period.NIGHT


def day_of_week_for(value: date) -> DayOfWeek:
    return _WEEKDAYS[value.weekday()]


def opposite(side: TeamSide) -> TeamSide:
    if side == TeamSide.HOME:
        return TeamSide.AWAY
    if side == TeamSide.AWAY:
        return TeamSide.HOME
    raise ValueError("UNDECIDED has no opposite side.")


def is_lined_up(sides: Iterable[TeamSide]) -> bool:
    """A match is lined up once both HOME and AWAY have at least one player."""
    seen = set(sides)
    return TeamSide.HOME in seen and TeamSide.AWAY in seen


def balanced_sides(home_count: int, away_count: int, new_players: int) -> list[TeamSide]:
    """Assign new players one by one to whichever side is currently smaller."""
    assigned: list[TeamSide] = []
    for _ in range(new_players):
        if home_count <= away_count:
            assigned.append(TeamSide.HOME)
            home_count += 1
        else:
            assigned.append(TeamSide.AWAY)
            away_count += 1
    return assigned


def shuffle_sides(
    player_ids: Sequence[int], rng: random.Random | None = None
) -> tuple[list[int], list[int]]:
    """Randomly split players into HOME and AWAY halves.

    With an odd number of players a coin flip decides which side gets the
    extra player.
    """
    rng = rng or random.Random()
    shuffled = list(player_ids)
    rng.shuffle(shuffled)
    home_count = len(shuffled) // 2
    if len(shuffled) % 2 == 1 and rng.random() < 0.5:
        home_count += 1
    return shuffled[:home_count], shuffled[home_count:]


def split_mercenaries(
    total: int, home_players: int, away_players: int, rng: random.Random | None = None
) -> tuple[int, int]:
    """Divide mercenaries between HOME and AWAY after a shuffle.

    An even total is halved. An odd remainder goes to the side with fewer
    players, or to a random side when the players are level.
    """
    if total <= 0:
        return 0, 0
    rng = rng or random.Random()
    base = total // 2
    if total % 2 == 0:
        return base, base
    if home_players < away_players:
        return base + 1, base
    if away_players < home_players:
        return base, base + 1
    if rng.random() < 0.5:
        return base + 1, base
    return base, base + 1


@dataclass
class GoalResolution:
    scorer_side: TeamSide
    is_own_goal: bool
    credited_side: TeamSide


def resolve_goal(
    credited_side: TeamSide,
    *,
    scorer_lineup_side: TeamSide | None,
    is_own_goal: bool = False,
    is_scored_by_mercenary: bool = False,
) -> GoalResolution:
    """Work out which side the scorer played for and whether it was an own goal.

    ``credited_side`` is the side whose score goes up. Lineup players carry
    their own side, so a player scoring for the other side is an own goal
    even when the flag was not set. Mercenaries play for the credited side
    unless the goal is marked as an own goal.
    """
    if credited_side not in (TeamSide.HOME, TeamSide.AWAY):
        raise ValueError("A goal must be credited to HOME or AWAY.")
    if is_scored_by_mercenary:
        scorer_side = opposite(credited_side) if is_own_goal else credited_side
        return GoalResolution(scorer_side=scorer_side, is_own_goal=is_own_goal, credited_side=credited_side)
    if scorer_lineup_side not in (TeamSide.HOME, TeamSide.AWAY):
        raise ValueError("The scorer must be lined up on HOME or AWAY.")
    if is_own_goal and scorer_lineup_side == credited_side:
        raise ValueError("An own goal counts for the other side.")
    own_goal = scorer_lineup_side != credited_side
    return GoalResolution(scorer_side=scorer_lineup_side, is_own_goal=own_goal, credited_side=credited_side)


def credited_side_of(scorer_side: TeamSide, is_own_goal: bool) -> TeamSide:
    """Return the side that was awarded a recorded goal."""
    return opposite(scorer_side) if is_own_goal else scorer_side


def vote_rate(voted: int, total: int) -> int:
    """Rounded percentage of voters, 0 when nobody could vote."""
    if total <= 0:
        return 0
    return int(voted * 100 / total + 0.5)
