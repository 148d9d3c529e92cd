from __future__ import annotations

from datetime import date, timedelta

import pytest
from sqlmodel import Session

MATCH_DATE = (date.today() + timedelta(days=3)).isoformat()


@pytest.fixture
def squad_team(app_db, make_user, make_team):
    with Session(app_db) as db:
        captain = make_user(db, "captain")
        winger = make_user(db, "winger")
        pivot = make_user(db, "pivot")
        team = make_team(db, captain, "Matchday FC", members=[winger, pivot])
        return team.id, captain.id, winger.id, pivot.id


@pytest.fixture
def two_teams(app_db, make_user, make_team):
    with Session(app_db) as db:
        host_owner = make_user(db)
        host_player = make_user(db)
        away_owner = make_user(db)
        away_player = make_user(db)
        host = make_team(db, host_owner, "Home Side FC", members=[host_player])
        away = make_team(db, away_owner, "Away Side FC", members=[away_player])
        return host.id, away.id, host_owner.id, away_owner.id


def _schedule_body(host_id, invited_id=None):
    return {
        "host_team_id": host_id,
        "invited_team_id": invited_id,
        "match_type": "TEAM" if invited_id else "SQUAD",
        "place": "Seongsu Futsal Dome",
        "match_date": MATCH_DATE,
        "start_time": "19:00:00",
        "end_time": "21:00:00",
    }


async def _schedule_status(client, schedule_id):
    return (await client.get(f"/api/schedules/{schedule_id}")).json()["data"]["status"]


@pytest.mark.asyncio
async def test_squad_matchday_through_the_api(async_client, squad_team, login):
    team_id, captain_id, winger_id, pivot_id = squad_team
    login(async_client, captain_id)

    response = await async_client.post("/api/schedules", json=_schedule_body(team_id))
    assert response.status_code == 201
    schedule_id = response.json()["data"]["id"]
    assert response.json()["data"]["status"] == "CONFIRMED"

    response = await async_client.put(
        f"/api/schedules/{schedule_id}/teams/{team_id}/attendances",
        json={"team_type": "HOST", "status": "ATTENDING"},
    )
    assert response.json()["data"] == {"updated": 3}

    response = await async_client.post(f"/api/schedules/{schedule_id}/matches")
    assert response.status_code == 201
    match_id = response.json()["data"]["id"]
    assert await _schedule_status(async_client, schedule_id) == "READY"

    response = await async_client.post(f"/api/matches/{match_id}/lineups/sync")
    assert response.json()["data"] == {"added": 3}
    detail = (await async_client.get(f"/api/matches/{match_id}")).json()["data"]
    assert detail["is_lined_up"] is True
    sides = {entry["user"]["id"]: entry["side"] for entry in detail["lineups"]}
    assert sorted(sides.values()) == ["AWAY", "HOME", "HOME"]
    assert await _schedule_status(async_client, schedule_id) == "PLAY"

    winger_side = sides[winger_id]
    response = await async_client.post(
        f"/api/matches/{match_id}/goals", json={"side": winger_side, "scorer_id": winger_id}
    )
    assert response.status_code == 201
    score_key = "home_score" if winger_side == "HOME" else "away_score"
    assert response.json()["data"][score_key] == 1
    detail = (await async_client.get(f"/api/matches/{match_id}")).json()["data"]
    assert detail["summary"][winger_side] == ["winger 1"]

    response = await async_client.post(f"/api/schedules/{schedule_id}/mvp", json={"user_id": winger_id})
    assert response.json()["data"] == {"user_id": winger_id, "mvp_received": 1}
    login(async_client, pivot_id)
    response = await async_client.post(f"/api/schedules/{schedule_id}/mvp", json={"user_id": winger_id})
    assert response.json()["data"]["mvp_received"] == 2
    login(async_client, winger_id)
    response = await async_client.post(f"/api/schedules/{schedule_id}/mvp", json={"user_id": winger_id})
    assert response.status_code == 400

    mvp = (await async_client.get(f"/api/schedules/{schedule_id}/mvp")).json()["data"]
    assert mvp["attendances"][0]["user"]["id"] == winger_id
    assert mvp["attendances"][0]["mvp_received"] == 2
    assert mvp["stats"]["HOST"]["voted"] == 2
    assert mvp["stats"]["HOST"]["not_voted"] == 1


@pytest.mark.asyncio
async def test_team_lineup_sync_rebuilds_one_side(async_client, two_teams, login):
    host_id, away_id, host_owner_id, away_owner_id = two_teams
    login(async_client, host_owner_id)
    response = await async_client.post("/api/schedules", json=_schedule_body(host_id, away_id))
    assert response.status_code == 201
    schedule_id = response.json()["data"]["id"]
    assert response.json()["data"]["status"] == "PENDING"
    assert (await async_client.post(f"/api/schedules/{schedule_id}/matches")).status_code == 400

    login(async_client, away_owner_id)
    response = await async_client.post(f"/api/schedules/{schedule_id}/invitation", json={"response": "ACCEPT"})
    assert response.status_code == 200
    await async_client.put(
        f"/api/schedules/{schedule_id}/teams/{away_id}/attendances",
        json={"team_type": "INVITED", "status": "ATTENDING"},
    )
    login(async_client, host_owner_id)
    await async_client.put(
        f"/api/schedules/{schedule_id}/teams/{host_id}/attendances",
        json={"team_type": "HOST", "status": "ATTENDING"},
    )

    match_id = (await async_client.post(f"/api/schedules/{schedule_id}/matches")).json()["data"]["id"]
    detail = (await async_client.get(f"/api/matches/{match_id}")).json()["data"]
    assert sorted(entry["side"] for entry in detail["lineups"]) == ["AWAY", "AWAY", "HOME", "HOME"]
    assert detail["is_lined_up"] is True

    response = await async_client.post(f"/api/matches/{match_id}/lineups/sync", params={"side": "AWAY"})
    assert response.json()["data"] == {"added": 2}
    response = await async_client.post(f"/api/matches/{match_id}/lineups/sync", params={"side": "UNDECIDED"})
    assert response.status_code == 400
    assert await _schedule_status(async_client, schedule_id) == "PLAY"
