"""Boundary to the generative text and image collaborator.

The collaborator only ever sees deep copies of the records; whatever text it
returns is stored verbatim on the match or room.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

from aiohttp import ClientError, ClientSession, ClientTimeout

from swotapp.entities import CARDS, MAX_AI_HELPS, Match, Room, RoundStatus, Team
from swotapp.match_engine import EngineResult, MatchEngine, no_op_result
from swotapp.room_service import leaderboard
from swotapp.utils.logging_helpers import match_logger


class AdvisorError(Exception):
    """Raised when the generative collaborator cannot produce a result."""


class Advisor(Protocol):
    async def summarize(self, room: Room) -> str:
        ...

    async def advise(self, team: Team, opponent: Team, match: Match) -> str:
        ...

    async def render_poster(self, team: Team, images: Sequence[str], names: str) -> str:
        ...


def advice_context(team: Team, opponent: Team, match: Match) -> Dict[str, Any]:
    """What a team may know about the active round.

    The opponent's card is reduced to its colour (even cards are black) and
    the set of cards it has not played yet.
    """

    round_number = match.current_round
    mine = team.round_strategy(round_number)
    theirs = opponent.round_strategy(round_number)
    opponent_played = {
        entry.card for entry in opponent.strategy[: round_number - 1]
    }
    return {
        "round": round_number,
        "total_rounds": len(team.strategy),
        "team": {
            "name": team.name,
            "card": mine.card,
            "chips": mine.chips,
            "winnings": team.winnings,
        },
        "opponent": {
            "name": opponent.name,
            "chips": theirs.chips,
            "card_colour": "black" if theirs.card % 2 == 0 else "white",
            "remaining_cards": [card for card in CARDS if card not in opponent_played],
        },
        "carry_over": match.carry_over,
        "round_status": match.round_status.value,
    }


def summary_context(room: Room) -> Dict[str, Any]:
    return {
        "room": room.name,
        "teams": [
            {
                "name": team.name,
                "winnings": team.winnings,
                "members": list(team.members),
                "strategy": [entry.to_dict() for entry in team.strategy],
            }
            for team in room.teams
        ],
        "matches": [
            {
                "team_a_id": match.team_a_id,
                "team_b_id": match.team_b_id,
                "team_a_score": match.team_a_score,
                "team_b_score": match.team_b_score,
                "history": [entry.to_dict() for entry in match.history],
            }
            for match in room.matches
        ],
    }


class HttpAdvisorClient:
    """JSON-over-HTTP client for a hosted text/image generation service.

    Each endpoint answers ``{"text": ...}``; transport errors, non-2xx
    statuses and malformed bodies surface as :class:`AdvisorError`.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str = "",
        timeout_seconds: float = 60.0,
        session: Optional[ClientSession] = None,
    ) -> None:
        if not base_url:
            raise ValueError("Advisor base URL must be configured")
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = ClientTimeout(total=timeout_seconds)
        self._session = session
        self._owns_session = session is None

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    def _ensure_session(self) -> ClientSession:
        if self._session is None:
            self._session = ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def _post(self, endpoint: str, payload: Dict[str, Any]) -> str:
        url = f"{self._base_url}/{endpoint}"
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        session = self._ensure_session()
        try:
            async with session.post(url, json=payload, headers=headers) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise AdvisorError(
                        "Advisor endpoint %s returned %s: %s"
                        % (endpoint, response.status, body[:200])
                    )
                data = await response.json()
        except (ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise AdvisorError("Advisor endpoint %s failed: %r" % (endpoint, exc)) from exc

        text = data.get("text") if isinstance(data, dict) else None
        if not isinstance(text, str) or not text:
            raise AdvisorError("Advisor endpoint %s returned no text" % endpoint)
        return text

    async def summarize(self, room: Room) -> str:
        return await self._post("summarize", summary_context(room))

    async def advise(self, team: Team, opponent: Team, match: Match) -> str:
        return await self._post("advise", advice_context(team, opponent, match))

    async def render_poster(self, team: Team, images: Sequence[str], names: str) -> str:
        return await self._post(
            "poster",
            {"team": team.name, "images": list(images), "names": names},
        )


class AdvisorService:
    """AI help counters, advice storage, room feedback and the winner poster."""

    def __init__(
        self,
        engine: MatchEngine,
        advisor: Advisor,
        *,
        max_helps: int = MAX_AI_HELPS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._engine = engine
        self._advisor = advisor
        self._max_helps = max_helps
        self._logger = match_logger(
            logger or logging.getLogger(__name__), component="advisor"
        )

    def _advisor_failure(self, exc: AdvisorError, **extra: Any) -> EngineResult:
        self._logger.warning(
            "Advisor call failed",
            extra={
                "event_type": "advisor_failed",
                "error_type": type(exc).__name__,
                **extra,
            },
            exc_info=True,
        )
        return EngineResult(
            success=False,
            recoverable=True,
            message="The advisor is unavailable; try again later",
        )

    def _help_blocker(self, match: Optional[Match], team_id: str) -> Optional[str]:
        if match is None:
            return "Team has no match"
        if match.round_status is RoundStatus.FINISHED:
            return "Match has finished"
        if match.ai_helps.get(team_id, 0) >= self._max_helps:
            return "No AI help left"
        return None

    def helps_left(self, match: Match, team_id: str) -> int:
        return max(self._max_helps - match.ai_helps.get(team_id, 0), 0)

    async def request_advice(self, room_id: str, team_id: str) -> EngineResult:
        snapshot = await self._engine.snapshot_room(room_id)
        if snapshot.room is None:
            return snapshot
        room = snapshot.room
        match = room.match_for_team(team_id)
        blocker = self._help_blocker(match, team_id)
        if blocker is not None:
            return no_op_result(blocker)

        team = room.find_team(team_id)
        opponent = room.find_team(match.opponent_of(team_id))
        if team is None or opponent is None or not team.strategy or not opponent.strategy:
            return no_op_result("Both strategies must be locked first")

        try:
            advice = await self._advisor.advise(
                copy.deepcopy(team), copy.deepcopy(opponent), copy.deepcopy(match)
            )
        except AdvisorError as exc:
            return self._advisor_failure(exc, room_id=room_id, team_id=team_id)

        def mutation(fresh: Room) -> EngineResult:
            fresh_match = fresh.match_for_team(team_id)
            reason = self._help_blocker(fresh_match, team_id)
            if reason is not None:
                return no_op_result(reason)
            fresh_match.ai_helps = {
                **fresh_match.ai_helps,
                team_id: fresh_match.ai_helps.get(team_id, 0) + 1,
            }
            fresh_match.ai_advice = {**fresh_match.ai_advice, team_id: advice}
            return EngineResult(
                success=True,
                changed=True,
                message=advice,
                match_id=fresh_match.id,
                round=fresh_match.current_round,
            )

        return await self._engine.update_room(
            room_id, "request_advice", mutation, team_id=team_id
        )

    async def clear_advice(self, room_id: str, team_id: str) -> EngineResult:
        def mutation(room: Room) -> EngineResult:
            match = room.match_for_team(team_id)
            if match is None or team_id not in match.ai_advice:
                return no_op_result("No advice to clear")
            match.ai_advice = {
                key: value for key, value in match.ai_advice.items() if key != team_id
            }
            return EngineResult(
                success=True, changed=True, message="Advice cleared", match_id=match.id
            )

        return await self._engine.update_room(
            room_id, "clear_advice", mutation, team_id=team_id
        )

    async def generate_feedback(self, room_id: str) -> EngineResult:
        snapshot = await self._engine.snapshot_room(room_id)
        if snapshot.room is None:
            return snapshot
        room = snapshot.room
        try:
            feedback = await self._advisor.summarize(copy.deepcopy(room))
        except AdvisorError as exc:
            return self._advisor_failure(exc, room_id=room_id)

        def mutation(fresh: Room) -> EngineResult:
            fresh.feedback = feedback
            return EngineResult(success=True, changed=True, message="Feedback stored")

        return await self._engine.update_room(room_id, "generate_feedback", mutation)

    async def generate_poster(
        self,
        room_id: str,
        images: Sequence[str] = (),
        names: Optional[str] = None,
    ) -> EngineResult:
        """Render a poster for the team at the top of the leaderboard."""

        snapshot = await self._engine.snapshot_room(room_id)
        if snapshot.room is None:
            return snapshot
        room = snapshot.room
        standings = leaderboard(room)
        if not standings:
            return no_op_result("Room has no teams")
        winner = room.require_team(standings[0].team_id)
        member_names = names if names is not None else ", ".join(winner.members)

        try:
            poster = await self._advisor.render_poster(
                copy.deepcopy(winner), list(images), member_names
            )
        except AdvisorError as exc:
            return self._advisor_failure(exc, room_id=room_id, team_id=winner.id)

        def mutation(fresh: Room) -> EngineResult:
            fresh.winner_poster_url = poster
            return EngineResult(
                success=True, changed=True, message="Poster stored"
            )

        return await self._engine.update_room(
            room_id, "generate_poster", mutation, team_id=winner.id
        )


__all__: List[str] = [
    "Advisor",
    "AdvisorError",
    "AdvisorService",
    "HttpAdvisorClient",
    "advice_context",
    "summary_context",
]
