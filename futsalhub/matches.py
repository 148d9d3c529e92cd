"""Matches inside a schedule: lineups, mercenaries, goals and status upkeep."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session, select

from .auth import current_user
from .database import (
    AttendanceStatus,
    GoalRecord,
    Lineup,
    Match,
    MatchType,
    Schedule,
    ScheduleAttendance,
    ScheduleStatus,
    Team,
    TeamSide,
    TeamType,
    User,
    get_session,
)
from .errors import ActionError, Forbidden, NotFound, ok
from .lineup import (
    balanced_sides,
    credited_side_of,
    is_lined_up,
    resolve_goal,
    shuffle_sides,
    split_mercenaries,
)
from .schedules import get_attendance, get_live_schedule
from .teams import is_approved_member, team_summary
from .users import user_summary

router = APIRouter()
logger = logging.getLogger(__name__)

FROZEN_STATUSES = (ScheduleStatus.PENDING, ScheduleStatus.REJECTED, ScheduleStatus.DELETED)
MERCENARY_LABEL = "Mercenary"


class LineupSideUpdate(BaseModel):
    side: TeamSide


class MatchMercenaries(BaseModel):
    home: int
    away: int


class GoalCreate(BaseModel):
    side: TeamSide
    scorer_id: int | None = None
    assist_id: int | None = None
    is_own_goal: bool = False
    is_scored_by_mercenary: bool = False
    is_assisted_by_mercenary: bool = False


def refresh_schedule_status(session: Session, schedule: Schedule) -> ScheduleStatus:
    """Derive a schedule's status from its matches.

    PENDING, REJECTED and DELETED schedules are left alone. Otherwise no
    matches means CONFIRMED, matches without a lined-up one mean READY, and
    any lined-up match means PLAY.
    """
    if schedule.status in FROZEN_STATUSES:
        return schedule.status
    session.flush()
    matches = session.exec(select(Match).where(Match.schedule_id == schedule.id)).all()
    if not matches:
        status = ScheduleStatus.CONFIRMED
    elif any(match.is_lined_up for match in matches):
        status = ScheduleStatus.PLAY
    else:
        status = ScheduleStatus.READY
    if status != schedule.status:
        logger.info("Schedule %s moved from %s to %s", schedule.id, schedule.status.value, status.value)
        schedule.status = status
        session.add(schedule)
    return status


def _lineups(session: Session, match_id: int) -> list[Lineup]:
    return list(session.exec(select(Lineup).where(Lineup.match_id == match_id).order_by(Lineup.id)).all())


def refresh_lined_up(session: Session, match: Match) -> bool:
    session.flush()
    match.is_lined_up = is_lined_up(lineup.side for lineup in _lineups(session, match.id))
    match.updated_at = datetime.utcnow()
    session.add(match)
    return match.is_lined_up


def _save_lineup_change(session: Session, match: Match, schedule: Schedule) -> None:
    refresh_lined_up(session, match)
    refresh_schedule_status(session, schedule)
    session.commit()


def get_match(session: Session, match_id: int) -> tuple[Match, Schedule]:
    match = session.get(Match, match_id)
    if not match:
        raise NotFound("Match not found.")
    schedule = get_live_schedule(session, match.schedule_id)
    return match, schedule


def require_participant(session: Session, schedule: Schedule, user: User) -> None:
    """Players on the roster and members of either team may manage matches."""
    if get_attendance(session, schedule.id, user.id):
        return
    if is_approved_member(session, schedule.host_team_id, user.id):
        return
    if is_approved_member(session, schedule.invited_team_id, user.id):
        return
    raise Forbidden("Only players of this schedule can manage its matches.")


def _attending(session: Session, schedule_id: int) -> list[ScheduleAttendance]:
    return list(
        session.exec(
            select(ScheduleAttendance)
            .where(
                ScheduleAttendance.schedule_id == schedule_id,
                ScheduleAttendance.attendance_status == AttendanceStatus.ATTENDING,
            )
            .order_by(ScheduleAttendance.id)
        ).all()
    )


def _team_side(team_type: TeamType) -> TeamSide:
    return TeamSide.HOME if team_type == TeamType.HOST else TeamSide.AWAY


def add_match(session: Session, user: User, schedule_id: int) -> Match:
    schedule = get_live_schedule(session, schedule_id)
    if schedule.status in FROZEN_STATUSES:
        raise ActionError("Matches can only be added to confirmed schedules.")
    if schedule.match_type == MatchType.TEAM and not schedule.invited_team_id:
        raise ActionError("This schedule has no invited team.")
    if not get_attendance(session, schedule.id, user.id):
        raise Forbidden("Only players on this schedule can add matches.")

    match = Match(
        schedule_id=schedule.id,
        created_by_id=user.id,
        home_team_id=schedule.host_team_id,
        away_team_id=schedule.invited_team_id if schedule.match_type == MatchType.TEAM else schedule.host_team_id,
    )
    if schedule.match_type == MatchType.TEAM:
        match.home_team_mercenary_count = schedule.host_team_mercenary_count
        match.away_team_mercenary_count = schedule.invited_team_mercenary_count
    else:
        match.undecided_team_mercenary_count = schedule.host_team_mercenary_count
    session.add(match)
    session.flush()

    if schedule.match_type == MatchType.TEAM:
        for attendance in _attending(session, schedule.id):
            session.add(Lineup(match_id=match.id, user_id=attendance.user_id, side=_team_side(attendance.team_type)))

    refresh_lined_up(session, match)
    refresh_schedule_status(session, schedule)
    session.commit()
    session.refresh(match)
    return match


def delete_match(session: Session, user: User, match_id: int) -> Schedule:
    match, schedule = get_match(session, match_id)
    require_participant(session, schedule, user)
    for goal in session.exec(select(GoalRecord).where(GoalRecord.match_id == match.id)).all():
        session.delete(goal)
    for lineup in _lineups(session, match.id):
        session.delete(lineup)
    session.delete(match)
    refresh_schedule_status(session, schedule)
    session.commit()
    session.refresh(schedule)
    return schedule


def duplicate_match(session: Session, user: User, match_id: int) -> Match:
    """Copy a match's lineups and mercenaries into a fresh, scoreless match."""
    source, schedule = get_match(session, match_id)
    require_participant(session, schedule, user)
    copy = Match(
        schedule_id=schedule.id,
        created_by_id=user.id,
        home_team_id=source.home_team_id,
        away_team_id=source.away_team_id,
        home_team_mercenary_count=source.home_team_mercenary_count,
        away_team_mercenary_count=source.away_team_mercenary_count,
        undecided_team_mercenary_count=source.undecided_team_mercenary_count,
        duration_minutes=source.duration_minutes,
    )
    session.add(copy)
    session.flush()
    for lineup in _lineups(session, source.id):
        session.add(Lineup(match_id=copy.id, user_id=lineup.user_id, side=lineup.side))
    refresh_lined_up(session, copy)
    refresh_schedule_status(session, schedule)
    session.commit()
    session.refresh(copy)
    return copy


def sync_squad_lineup(session: Session, user: User, match_id: int) -> int:
    """Add attending players missing from a SQUAD lineup, evening out the sides."""
    match, schedule = get_match(session, match_id)
    require_participant(session, schedule, user)
    if schedule.match_type != MatchType.SQUAD:
        raise ActionError("Only squad matches can be synced this way.")
    lineups = _lineups(session, match.id)
    present = {lineup.user_id for lineup in lineups}
    missing = [attendance for attendance in _attending(session, schedule.id) if attendance.user_id not in present]
    if not missing:
        return 0
    counts = Counter(lineup.side for lineup in lineups)
    sides = balanced_sides(counts[TeamSide.HOME], counts[TeamSide.AWAY], len(missing))
    for attendance, side in zip(missing, sides):
        session.add(Lineup(match_id=match.id, user_id=attendance.user_id, side=side))
    _save_lineup_change(session, match, schedule)
    return len(missing)


def sync_team_lineup(session: Session, user: User, match_id: int, side: TeamSide | None = None) -> int:
    """Rebuild a TEAM lineup from attendance; HOST plays HOME and INVITED plays AWAY.

    When ``side`` is given only that side is rebuilt.
    """
    match, schedule = get_match(session, match_id)
    require_participant(session, schedule, user)
    if schedule.match_type != MatchType.TEAM:
        raise ActionError("Only team matches can be synced this way.")
    if side == TeamSide.UNDECIDED:
        raise ActionError("Choose HOME or AWAY.")
    for lineup in _lineups(session, match.id):
        if side is None or lineup.side == side:
            session.delete(lineup)
    session.flush()
    remaining = {lineup.user_id for lineup in _lineups(session, match.id)}
    added = 0
    for attendance in _attending(session, schedule.id):
        target = _team_side(attendance.team_type)
        if side is not None and target != side:
            continue
        if attendance.user_id in remaining:
            continue
        session.add(Lineup(match_id=match.id, user_id=attendance.user_id, side=target))
        added += 1
    _save_lineup_change(session, match, schedule)
    return added


def _get_lineup(session: Session, lineup_id: int) -> tuple[Lineup, Match, Schedule]:
    lineup = session.get(Lineup, lineup_id)
    if not lineup:
        raise NotFound("Lineup entry not found.")
    match, schedule = get_match(session, lineup.match_id)
    return lineup, match, schedule


def update_lineup_side(session: Session, user: User, lineup_id: int, side: TeamSide) -> Lineup:
    lineup, match, schedule = _get_lineup(session, lineup_id)
    require_participant(session, schedule, user)
    lineup.side = side
    session.add(lineup)
    _save_lineup_change(session, match, schedule)
    session.refresh(lineup)
    return lineup


def remove_from_lineup(session: Session, user: User, lineup_id: int) -> None:
    lineup, match, schedule = _get_lineup(session, lineup_id)
    require_participant(session, schedule, user)
    session.delete(lineup)
    _save_lineup_change(session, match, schedule)


def reset_lineups(session: Session, user: User, match_id: int) -> Match:
    match, schedule = get_match(session, match_id)
    require_participant(session, schedule, user)
    if schedule.match_type != MatchType.SQUAD:
        raise ActionError("Only squad lineups can be reset.")
    for lineup in _lineups(session, match.id):
        lineup.side = TeamSide.UNDECIDED
        session.add(lineup)
    match.home_team_mercenary_count = 0
    match.away_team_mercenary_count = 0
    match.undecided_team_mercenary_count = schedule.host_team_mercenary_count
    _save_lineup_change(session, match, schedule)
    session.refresh(match)
    return match


def shuffle_lineups(session: Session, user: User, match_id: int, rng=None) -> dict[str, int]:
    """Randomly split the lineup into balanced halves and share out mercenaries."""
    match, schedule = get_match(session, match_id)
    require_participant(session, schedule, user)
    lineups = _lineups(session, match.id)
    if not lineups:
        raise ActionError("There is nobody in the lineup to shuffle.")
    by_user = {lineup.user_id: lineup for lineup in lineups}
    home_ids, away_ids = shuffle_sides(list(by_user), rng)
    for user_id in home_ids:
        by_user[user_id].side = TeamSide.HOME
        session.add(by_user[user_id])
    for user_id in away_ids:
        by_user[user_id].side = TeamSide.AWAY
        session.add(by_user[user_id])
    home_mercs, away_mercs = split_mercenaries(
        schedule.host_team_mercenary_count, len(home_ids), len(away_ids), rng
    )
    match.home_team_mercenary_count = home_mercs
    match.away_team_mercenary_count = away_mercs
    match.undecided_team_mercenary_count = 0
    _save_lineup_change(session, match, schedule)
    return {
        "home": len(home_ids),
        "away": len(away_ids),
        "home_mercenaries": home_mercs,
        "away_mercenaries": away_mercs,
    }


def update_match_mercenaries(session: Session, user: User, match_id: int, home: int, away: int) -> Match:
    match, schedule = get_match(session, match_id)
    require_participant(session, schedule, user)
    if home < 0 or away < 0:
        raise ActionError("Mercenary counts cannot be negative.")
    if schedule.match_type == MatchType.SQUAD:
        newly_assigned = (home + away) - (match.home_team_mercenary_count + match.away_team_mercenary_count)
        match.undecided_team_mercenary_count = max(0, match.undecided_team_mercenary_count - newly_assigned)
    match.home_team_mercenary_count = home
    match.away_team_mercenary_count = away
    match.updated_at = datetime.utcnow()
    session.add(match)
    session.commit()
    session.refresh(match)
    return match


def create_goal(session: Session, user: User, match_id: int, data: GoalCreate) -> GoalRecord:
    match, schedule = get_match(session, match_id)
    require_participant(session, schedule, user)
    sides = {lineup.user_id: lineup.side for lineup in _lineups(session, match.id)}

    scorer_side = None
    if not data.is_scored_by_mercenary:
        if data.scorer_id is None:
            raise ActionError("Choose who scored.")
        if data.scorer_id not in sides:
            raise ActionError("The scorer is not in this match's lineup.")
        scorer_side = sides[data.scorer_id]
    try:
        resolved = resolve_goal(
            data.side,
            scorer_lineup_side=scorer_side,
            is_own_goal=data.is_own_goal,
            is_scored_by_mercenary=data.is_scored_by_mercenary,
        )
    except ValueError as exc:
        raise ActionError(str(exc)) from exc

    assist_id = None
    assisted_by_mercenary = False
    if not resolved.is_own_goal:
        assisted_by_mercenary = data.is_assisted_by_mercenary
        if data.assist_id is not None and not assisted_by_mercenary:
            if data.assist_id not in sides:
                raise ActionError("The assisting player is not in this match's lineup.")
            if data.assist_id == data.scorer_id:
                raise ActionError("A player cannot assist their own goal.")
            assist_id = data.assist_id

    goal = GoalRecord(
        match_id=match.id,
        scorer_id=None if data.is_scored_by_mercenary else data.scorer_id,
        assist_id=assist_id,
        scorer_side=resolved.scorer_side,
        is_own_goal=resolved.is_own_goal,
        is_scored_by_mercenary=data.is_scored_by_mercenary,
        is_assisted_by_mercenary=assisted_by_mercenary,
    )
    session.add(goal)
    if resolved.credited_side == TeamSide.HOME:
        match.home_score += 1
    else:
        match.away_score += 1
    match.updated_at = datetime.utcnow()
    session.add(match)
    session.commit()
    session.refresh(goal)
    return goal


def delete_goal(session: Session, user: User, goal_id: int) -> Match:
    goal = session.get(GoalRecord, goal_id)
    if not goal:
        raise NotFound("Goal not found.")
    match, schedule = get_match(session, goal.match_id)
    require_participant(session, schedule, user)
    if credited_side_of(goal.scorer_side, goal.is_own_goal) == TeamSide.HOME:
        match.home_score = max(0, match.home_score - 1)
    else:
        match.away_score = max(0, match.away_score - 1)
    match.updated_at = datetime.utcnow()
    session.delete(goal)
    session.add(match)
    session.commit()
    session.refresh(match)
    return match


def goal_summary(session: Session, match_id: int) -> dict[str, list[str]]:
    """Scorer lines per side such as ``"Kim 2"``; mercenaries are grouped and own goals skipped."""
    goals = session.exec(
        select(GoalRecord).where(GoalRecord.match_id == match_id).order_by(GoalRecord.created_at, GoalRecord.id)
    ).all()
    tallies: dict[TeamSide, Counter] = {TeamSide.HOME: Counter(), TeamSide.AWAY: Counter()}
    order: dict[TeamSide, list[str]] = {TeamSide.HOME: [], TeamSide.AWAY: []}
    for goal in goals:
        if goal.is_own_goal:
            continue
        if goal.is_scored_by_mercenary or goal.scorer_id is None:
            label = MERCENARY_LABEL
        else:
            scorer = session.get(User, goal.scorer_id)
            label = (scorer.nickname or scorer.name or f"Player {scorer.id}") if scorer else MERCENARY_LABEL
        side = goal.scorer_side
        if label not in tallies[side]:
            order[side].append(label)
        tallies[side][label] += 1
    return {side.value: [f"{label} {tallies[side][label]}" for label in order[side]] for side in order}


def match_detail(session: Session, match: Match, schedule: Schedule) -> dict[str, object]:
    lineups = session.exec(
        select(Lineup, User).join(User, User.id == Lineup.user_id).where(Lineup.match_id == match.id).order_by(Lineup.id)
    ).all()
    goals = session.exec(
        select(GoalRecord).where(GoalRecord.match_id == match.id).order_by(GoalRecord.created_at, GoalRecord.id)
    ).all()
    siblings = session.exec(select(Match.id).where(Match.schedule_id == schedule.id).order_by(Match.id)).all()
    return {
        "id": match.id,
        "order": list(siblings).index(match.id) + 1,
        "schedule_id": schedule.id,
        "match_type": schedule.match_type,
        "home_team": team_summary(session.get(Team, match.home_team_id)),
        "away_team": team_summary(session.get(Team, match.away_team_id)),
        "home_score": match.home_score,
        "away_score": match.away_score,
        "is_lined_up": match.is_lined_up,
        "mercenaries": {
            "home": match.home_team_mercenary_count,
            "away": match.away_team_mercenary_count,
            "undecided": match.undecided_team_mercenary_count,
        },
        "lineups": [
            {"id": lineup.id, "side": lineup.side, "user": user_summary(player)} for lineup, player in lineups
        ],
        "goals": [
            {
                "id": goal.id,
                "scorer_id": goal.scorer_id,
                "assist_id": goal.assist_id,
                "scorer_side": goal.scorer_side,
                "is_own_goal": goal.is_own_goal,
                "is_scored_by_mercenary": goal.is_scored_by_mercenary,
                "is_assisted_by_mercenary": goal.is_assisted_by_mercenary,
            }
            for goal in goals
        ],
        "summary": goal_summary(session, match.id),
    }


def _match_payload(match: Match) -> dict[str, object]:
    return {
        "id": match.id,
        "schedule_id": match.schedule_id,
        "home_score": match.home_score,
        "away_score": match.away_score,
        "is_lined_up": match.is_lined_up,
    }


@router.post("/api/schedules/{schedule_id}/matches", name="add_match")
async def add_match_route(
    schedule_id: int,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    match = add_match(session, user, schedule_id)
    return ok(_match_payload(match), status_code=201)


@router.get("/api/matches/{match_id}", name="match_detail")
async def match_detail_route(match_id: int, session: Session = Depends(get_session)):
    match, schedule = get_match(session, match_id)
    return ok(match_detail(session, match, schedule))


@router.delete("/api/matches/{match_id}", name="delete_match")
async def delete_match_route(
    match_id: int,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    schedule = delete_match(session, user, match_id)
    return ok({"schedule_status": schedule.status}, message="Match deleted.")


@router.post("/api/matches/{match_id}/duplicate", name="duplicate_match")
async def duplicate_match_route(
    match_id: int,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    match = duplicate_match(session, user, match_id)
    return ok(_match_payload(match), status_code=201)


@router.post("/api/matches/{match_id}/lineups/sync", name="sync_lineup")
async def sync_lineup_route(
    match_id: int,
    side: TeamSide | None = None,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    match, schedule = get_match(session, match_id)
    if schedule.match_type == MatchType.SQUAD:
        added = sync_squad_lineup(session, user, match.id)
    else:
        added = sync_team_lineup(session, user, match.id, side)
    return ok({"added": added})


@router.post("/api/matches/{match_id}/lineups/reset", name="reset_lineups")
async def reset_lineups_route(
    match_id: int,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    match = reset_lineups(session, user, match_id)
    return ok(_match_payload(match))


@router.post("/api/matches/{match_id}/lineups/shuffle", name="shuffle_lineups")
async def shuffle_lineups_route(
    match_id: int,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    return ok(shuffle_lineups(session, user, match_id))


@router.put("/api/matches/{match_id}/mercenaries", name="update_match_mercenaries")
async def update_match_mercenaries_route(
    match_id: int,
    body: MatchMercenaries,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    match = update_match_mercenaries(session, user, match_id, body.home, body.away)
    return ok(
        {
            "home": match.home_team_mercenary_count,
            "away": match.away_team_mercenary_count,
            "undecided": match.undecided_team_mercenary_count,
        }
    )


@router.put("/api/lineups/{lineup_id}", name="update_lineup_side")
async def update_lineup_side_route(
    lineup_id: int,
    body: LineupSideUpdate,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    lineup = update_lineup_side(session, user, lineup_id, body.side)
    return ok({"id": lineup.id, "side": lineup.side})


@router.delete("/api/lineups/{lineup_id}", name="remove_from_lineup")
async def remove_from_lineup_route(
    lineup_id: int,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    remove_from_lineup(session, user, lineup_id)
    return ok(None, message="Removed from the lineup.")


@router.post("/api/matches/{match_id}/goals", name="create_goal")
async def create_goal_route(
    match_id: int,
    body: GoalCreate,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    goal = create_goal(session, user, match_id, body)
    match = session.get(Match, goal.match_id)
    return ok({"id": goal.id, "home_score": match.home_score, "away_score": match.away_score}, status_code=201)


@router.delete("/api/goals/{goal_id}", name="delete_goal")
async def delete_goal_route(
    goal_id: int,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    match = delete_goal(session, user, goal_id)
    return ok({"home_score": match.home_score, "away_score": match.away_score})
