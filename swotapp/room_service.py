"""Room lobby operations: creation, joining, matchmaking and standings."""

from __future__ import annotations

import logging
import random
import uuid
from dataclasses import dataclass
from typing import List, Optional

from swotapp.entities import Match, Room, RoomStatus, Team, TeamSlot
from swotapp.match_engine import EngineResult, MatchEngine, no_op_result
from swotapp.utils.logging_helpers import match_logger
from swotapp.utils.time_utils import to_timestamp_ms


@dataclass(frozen=True)
class LeaderboardEntry:
    rank: int
    team_id: str
    name: str
    winnings: int
    members: List[str]


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def new_match(match_id: Optional[str] = None, team_a_id: str = "", team_b_id: str = "") -> Match:
    return Match(
        id=match_id or _new_id("m"),
        team_a_id=team_a_id,
        team_b_id=team_b_id,
    )


def leaderboard(room: Room) -> List[LeaderboardEntry]:
    """Teams ordered by winnings, highest first, ties broken by name."""

    ordered = sorted(room.teams, key=lambda team: (-team.winnings, team.name))
    return [
        LeaderboardEntry(
            rank=index + 1,
            team_id=team.id,
            name=team.name,
            winnings=team.winnings,
            members=list(team.members),
        )
        for index, team in enumerate(ordered)
    ]


class RoomService:
    """Lobby and scheduling operations on top of :class:`MatchEngine`.

    Matches are only rearranged while the room is PREPARING; once a room is
    playing the engine's intents are the only way to change a match.
    """

    def __init__(
        self,
        engine: MatchEngine,
        *,
        rng: Optional[random.Random] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._engine = engine
        self._rng = rng or random.Random()
        self._logger = match_logger(
            logger or logging.getLogger(__name__), component="room_service"
        )

    async def create_room(self, name: str, total_teams: int) -> Room:
        name = (name or "").strip()
        if not name:
            raise ValueError("Room name must not be blank")
        if total_teams < 2:
            raise ValueError("A room needs at least two teams")

        room_id = _new_id("r")
        room = Room(
            id=room_id,
            name=name,
            total_teams=total_teams,
            status=RoomStatus.PREPARING,
            teams=[
                Team(id=_new_id("t"), name=f"Team {index + 1}", room_id=room_id)
                for index in range(total_teams)
            ],
            created_at=to_timestamp_ms(),
        )
        await self._engine.store.save([room])
        self._logger.info(
            "Room created",
            extra={
                "room_id": room.id,
                "event_type": "room_created",
                "total_teams": total_teams,
            },
        )
        return room

    async def delete_room(self, room_id: str) -> None:
        await self._engine.delete_room(room_id)
        self._logger.info(
            "Room deleted", extra={"room_id": room_id, "event_type": "room_deleted"}
        )

    async def join_team(self, room_id: str, team_id: str, member_name: str) -> EngineResult:
        member = (member_name or "").strip()

        def mutation(room: Room) -> EngineResult:
            if not member:
                return EngineResult(success=False, message="Member name must not be blank")
            team = room.find_team(team_id)
            if team is None:
                return EngineResult(success=False, message="Team %s not found" % team_id)
            if member in team.members:
                return no_op_result("Already a member of %s" % team.name)
            team.members.append(member)
            return EngineResult(success=True, changed=True, message="Joined %s" % team.name)

        return await self._engine.update_room(
            room_id, "join_team", mutation, team_id=team_id
        )

    async def auto_match(self, room_id: str) -> EngineResult:
        """Shuffle the teams and pair them; an odd team sits out."""

        def mutation(room: Room) -> EngineResult:
            if room.status is not RoomStatus.PREPARING:
                return no_op_result("Matches are fixed once the room starts")
            shuffled = list(room.teams)
            self._rng.shuffle(shuffled)
            room.matches = [
                new_match(
                    team_a_id=shuffled[index].id, team_b_id=shuffled[index + 1].id
                )
                for index in range(0, len(shuffled) - 1, 2)
            ]
            return EngineResult(
                success=True,
                changed=True,
                message="Paired %s matches" % len(room.matches),
            )

        return await self._engine.update_room(room_id, "auto_match", mutation)

    async def assign_team(
        self, room_id: str, match_index: int, team_id: str, slot: TeamSlot
    ) -> EngineResult:
        """Place ``team_id`` (or nobody, when blank) into a match slot.

        A team placed here is first removed from any other slot. Assigning
        past the end of the list creates the missing matches.
        """

        def mutation(room: Room) -> EngineResult:
            if room.status is not RoomStatus.PREPARING:
                return no_op_result("Matches are fixed once the room starts")
            if match_index < 0:
                return EngineResult(success=False, message="Invalid match index")
            if team_id and room.find_team(team_id) is None:
                return EngineResult(success=False, message="Team %s not found" % team_id)

            while len(room.matches) <= match_index:
                room.matches.append(new_match())
            if team_id:
                for match in room.matches:
                    if match.team_a_id == team_id:
                        match.team_a_id = ""
                    if match.team_b_id == team_id:
                        match.team_b_id = ""

            target = room.matches[match_index]
            if slot is TeamSlot.A:
                target.team_a_id = team_id
            else:
                target.team_b_id = team_id
            return EngineResult(
                success=True,
                changed=True,
                message="Slot %s of match %s updated" % (slot.value, match_index + 1),
                match_id=target.id,
            )

        return await self._engine.update_room(
            room_id, "assign_team", mutation, team_id=team_id or None
        )

    async def leaderboard(self, room_id: str) -> List[LeaderboardEntry]:
        room = await self._engine.get_room(room_id)
        if room is None:
            return []
        return leaderboard(room)
