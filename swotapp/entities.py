#!/usr/bin/env python3

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from swotapp.config import get_game_constants


_GAME_CONSTANTS = get_game_constants().game


def _coerce_int(value, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


TOTAL_ROUNDS = _coerce_int(_GAME_CONSTANTS.get("total_rounds", 10), 10)
TOTAL_CHIPS = _coerce_int(_GAME_CONSTANTS.get("total_chips", 30), 30)
MIN_ROUND_CHIPS = _coerce_int(_GAME_CONSTANTS.get("min_round_chips", 1), 1)
MAX_AI_HELPS = _coerce_int(_GAME_CONSTANTS.get("max_ai_helps", 3), 3)
CARDS = tuple(
    _coerce_int(card, -1) for card in _GAME_CONSTANTS.get("cards", range(10))
)
NO_CARD = -1

RoomId = str
TeamId = str
MatchId = str
Chips = int


class RoundStatus(str, enum.Enum):
    READY = "READY"
    DECISION = "DECISION"
    SHOWDOWN = "SHOWDOWN"
    RESULT = "RESULT"
    FINISHED = "FINISHED"


class RoundOutcome(str, enum.Enum):
    A_WON = "A_WON"
    B_WON = "B_WON"
    DRAW = "DRAW"
    A_FOLDED = "A_FOLDED"
    B_FOLDED = "B_FOLDED"


class RoomStatus(str, enum.Enum):
    PREPARING = "PREPARING"
    PLAYING = "PLAYING"
    FINISHED = "FINISHED"


class MatchAction(str, enum.Enum):
    FOLD = "FOLD"
    CALL = "CALL"
    STEAL = "STEAL"
    SHOWDOWN = "SHOWDOWN"
    CONFIRM = "CONFIRM"


class TeamSlot(str, enum.Enum):
    A = "A"
    B = "B"


class MatchException(Exception):
    pass


@dataclass
class RoundStrategy:
    round: int
    card: int = NO_CARD
    chips: Chips = MIN_ROUND_CHIPS

    def to_dict(self) -> Dict[str, Any]:
        return {"round": self.round, "card": self.card, "chips": self.chips}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RoundStrategy":
        return cls(
            round=_coerce_int(data.get("round"), 0),
            card=_coerce_int(data.get("card"), NO_CARD),
            chips=_coerce_int(data.get("chips"), 0),
        )

    @classmethod
    def blank_strategy(cls, total_rounds: int = TOTAL_ROUNDS) -> List["RoundStrategy"]:
        """Return the editable starting allocation: no cards, one chip per round."""

        return [
            cls(round=index + 1, card=NO_CARD, chips=MIN_ROUND_CHIPS)
            for index in range(total_rounds)
        ]


@dataclass
class Team:
    id: TeamId
    name: str
    room_id: RoomId = ""
    is_ready: bool = False
    winnings: Chips = 0
    members: List[str] = field(default_factory=list)
    strategy: List[RoundStrategy] = field(default_factory=list)

    def round_strategy(self, round_number: int) -> RoundStrategy:
        """Return the allocation for the 1-based ``round_number``."""

        index = round_number - 1
        if not 0 <= index < len(self.strategy):
            raise MatchException(
                "Team %s has no strategy for round %s" % (self.id, round_number)
            )
        return self.strategy[index]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "room_id": self.room_id,
            "is_ready": self.is_ready,
            "winnings": self.winnings,
            "members": list(self.members),
            "strategy": [entry.to_dict() for entry in self.strategy],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Team":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            room_id=str(data.get("room_id", "")),
            is_ready=bool(data.get("is_ready", False)),
            winnings=_coerce_int(data.get("winnings"), 0),
            members=[str(member) for member in data.get("members") or []],
            strategy=[
                RoundStrategy.from_dict(entry) for entry in data.get("strategy") or []
            ],
        )


@dataclass(frozen=True)
class RoundResult:
    round: int
    team_a_card: int
    team_b_card: int
    team_a_chips: Chips
    team_b_chips: Chips
    result: RoundOutcome
    pot_won: Chips

    def to_dict(self) -> Dict[str, Any]:
        return {
            "round": self.round,
            "team_a_card": self.team_a_card,
            "team_b_card": self.team_b_card,
            "team_a_chips": self.team_a_chips,
            "team_b_chips": self.team_b_chips,
            "result": self.result.value,
            "pot_won": self.pot_won,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RoundResult":
        return cls(
            round=_coerce_int(data.get("round"), 0),
            team_a_card=_coerce_int(data.get("team_a_card"), NO_CARD),
            team_b_card=_coerce_int(data.get("team_b_card"), NO_CARD),
            team_a_chips=_coerce_int(data.get("team_a_chips"), 0),
            team_b_chips=_coerce_int(data.get("team_b_chips"), 0),
            result=RoundOutcome(data["result"]),
            pot_won=_coerce_int(data.get("pot_won"), 0),
        )


@dataclass(frozen=True)
class LastAction:
    team_id: TeamId
    action: MatchAction

    def to_dict(self) -> Dict[str, Any]:
        return {"team_id": self.team_id, "action": self.action.value}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LastAction":
        return cls(team_id=str(data["team_id"]), action=MatchAction(data["action"]))


@dataclass
class Match:
    id: MatchId
    team_a_id: TeamId
    team_b_id: TeamId
    team_a_score: int = 0
    team_b_score: int = 0
    current_round: int = 1
    round_status: RoundStatus = RoundStatus.READY
    turn_owner: Optional[TeamId] = None
    pot: Chips = 0
    carry_over: Chips = 0
    history: List[RoundResult] = field(default_factory=list)
    ai_helps: Dict[TeamId, int] = field(default_factory=dict)
    ai_advice: Dict[TeamId, str] = field(default_factory=dict)
    last_round_result: Optional[RoundResult] = None
    result_confirmed: Dict[TeamId, bool] = field(default_factory=dict)
    last_action: Optional[LastAction] = None

    def involves(self, team_id: TeamId) -> bool:
        return bool(team_id) and team_id in (self.team_a_id, self.team_b_id)

    def slot_of(self, team_id: TeamId) -> Optional[TeamSlot]:
        if not team_id:
            return None
        if team_id == self.team_a_id:
            return TeamSlot.A
        if team_id == self.team_b_id:
            return TeamSlot.B
        return None

    def opponent_of(self, team_id: TeamId) -> TeamId:
        slot = self.slot_of(team_id)
        if slot is None:
            raise MatchException("Team %s is not part of match %s" % (team_id, self.id))
        return self.team_b_id if slot is TeamSlot.A else self.team_a_id

    @property
    def is_finished(self) -> bool:
        return self.round_status is RoundStatus.FINISHED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "team_a_id": self.team_a_id,
            "team_b_id": self.team_b_id,
            "team_a_score": self.team_a_score,
            "team_b_score": self.team_b_score,
            "current_round": self.current_round,
            "round_status": self.round_status.value,
            "turn_owner": self.turn_owner,
            "pot": self.pot,
            "carry_over": self.carry_over,
            "history": [entry.to_dict() for entry in self.history],
            "ai_helps": dict(self.ai_helps),
            "ai_advice": dict(self.ai_advice),
            "last_round_result": (
                self.last_round_result.to_dict() if self.last_round_result else None
            ),
            "result_confirmed": dict(self.result_confirmed),
            "last_action": self.last_action.to_dict() if self.last_action else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Match":
        last_round_result = data.get("last_round_result")
        last_action = data.get("last_action")
        return cls(
            id=str(data["id"]),
            team_a_id=str(data.get("team_a_id") or ""),
            team_b_id=str(data.get("team_b_id") or ""),
            team_a_score=_coerce_int(data.get("team_a_score"), 0),
            team_b_score=_coerce_int(data.get("team_b_score"), 0),
            current_round=_coerce_int(data.get("current_round"), 1),
            round_status=RoundStatus(data.get("round_status", RoundStatus.READY.value)),
            turn_owner=data.get("turn_owner") or None,
            pot=_coerce_int(data.get("pot"), 0),
            carry_over=_coerce_int(data.get("carry_over"), 0),
            history=[RoundResult.from_dict(entry) for entry in data.get("history") or []],
            ai_helps={
                str(key): _coerce_int(value, 0)
                for key, value in (data.get("ai_helps") or {}).items()
            },
            ai_advice={
                str(key): str(value)
                for key, value in (data.get("ai_advice") or {}).items()
            },
            last_round_result=(
                RoundResult.from_dict(last_round_result) if last_round_result else None
            ),
            result_confirmed={
                str(key): bool(value)
                for key, value in (data.get("result_confirmed") or {}).items()
            },
            last_action=LastAction.from_dict(last_action) if last_action else None,
        )


@dataclass
class Room:
    id: RoomId
    name: str
    total_teams: int = 0
    status: RoomStatus = RoomStatus.PREPARING
    teams: List[Team] = field(default_factory=list)
    matches: List[Match] = field(default_factory=list)
    feedback: Optional[str] = None
    winner_poster_url: Optional[str] = None
    created_at: int = 0

    def find_team(self, team_id: TeamId) -> Optional[Team]:
        for team in self.teams:
            if team.id == team_id:
                return team
        return None

    def require_team(self, team_id: TeamId) -> Team:
        team = self.find_team(team_id)
        if team is None:
            raise MatchException("Team %s not found in room %s" % (team_id, self.id))
        return team

    def find_match(self, match_id: MatchId) -> Optional[Match]:
        for match in self.matches:
            if match.id == match_id:
                return match
        return None

    def match_for_team(self, team_id: TeamId) -> Optional[Match]:
        for match in self.matches:
            if match.involves(team_id):
                return match
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "total_teams": self.total_teams,
            "status": self.status.value,
            "teams": [team.to_dict() for team in self.teams],
            "matches": [match.to_dict() for match in self.matches],
            "feedback": self.feedback,
            "winner_poster_url": self.winner_poster_url,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Room":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            total_teams=_coerce_int(data.get("total_teams"), 0),
            status=RoomStatus(data.get("status", RoomStatus.PREPARING.value)),
            teams=[Team.from_dict(entry) for entry in data.get("teams") or []],
            matches=[Match.from_dict(entry) for entry in data.get("matches") or []],
            feedback=data.get("feedback"),
            winner_poster_url=data.get("winner_poster_url"),
            created_at=_coerce_int(data.get("created_at"), 0),
        )
