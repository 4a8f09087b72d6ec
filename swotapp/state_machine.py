"""Round status transitions and turn ownership for a match."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional

from swotapp import economy
from swotapp.entities import (
    TOTAL_ROUNDS,
    Match,
    MatchException,
    RoundResult,
    RoundStatus,
    Team,
)

logger = logging.getLogger(__name__)


_TRANSITIONS: Dict[RoundStatus, FrozenSet[RoundStatus]] = {
    RoundStatus.READY: frozenset({RoundStatus.DECISION, RoundStatus.SHOWDOWN}),
    RoundStatus.DECISION: frozenset({RoundStatus.SHOWDOWN, RoundStatus.RESULT}),
    RoundStatus.SHOWDOWN: frozenset({RoundStatus.RESULT}),
    RoundStatus.RESULT: frozenset({RoundStatus.READY, RoundStatus.FINISHED}),
    RoundStatus.FINISHED: frozenset(),
}


@dataclass(frozen=True)
class ReadyEvaluation:
    """Result of comparing both teams' bets for the active round."""

    round: int
    status: RoundStatus
    turn_owner: Optional[str]
    team_a_chips: int
    team_b_chips: int


class MatchStateMachine:
    """Owns every write to ``round_status``, ``turn_owner`` and ``current_round``."""

    def __init__(self, *, total_rounds: int = TOTAL_ROUNDS) -> None:
        self._total_rounds = total_rounds

    @property
    def total_rounds(self) -> int:
        return self._total_rounds

    def is_final_round(self, match: Match) -> bool:
        return match.current_round >= self._total_rounds

    def _transition(self, match: Match, target: RoundStatus) -> None:
        allowed = _TRANSITIONS[match.round_status]
        if target not in allowed:
            raise MatchException(
                "Illegal round transition %s -> %s for match %s"
                % (match.round_status.value, target.value, match.id)
            )
        match.round_status = target

    # Authorisation -----------------------------------------------------

    def may_decide(self, match: Match, team_id: str) -> bool:
        return (
            match.round_status is RoundStatus.DECISION
            and bool(team_id)
            and match.turn_owner == team_id
        )

    def may_trigger_showdown(self, match: Match, team_id: str) -> bool:
        return match.round_status is RoundStatus.SHOWDOWN and match.involves(team_id)

    def may_confirm(self, match: Match, team_id: str) -> bool:
        return match.round_status is RoundStatus.RESULT and match.involves(team_id)

    # Transitions -------------------------------------------------------

    def evaluate_ready(
        self,
        match: Match,
        team_a: Team,
        team_b: Team,
        *,
        expected_round: Optional[int] = None,
    ) -> Optional[ReadyEvaluation]:
        """Leave READY for DECISION or SHOWDOWN.

        Returns ``None`` without touching the match when it is no longer
        READY at ``expected_round`` or when either team has not locked its
        strategy, so repeated evaluations of the same round are harmless.
        """

        if match.round_status is not RoundStatus.READY:
            return None
        if expected_round is not None and match.current_round != expected_round:
            return None
        if not (team_a.is_ready and team_b.is_ready):
            return None

        round_number = match.current_round
        a_chips = team_a.round_strategy(round_number).chips
        b_chips = team_b.round_strategy(round_number).chips

        if a_chips == b_chips:
            target = RoundStatus.SHOWDOWN
            turn_owner = None
        else:
            target = RoundStatus.DECISION
            turn_owner = team_a.id if a_chips < b_chips else team_b.id

        self._transition(match, target)
        match.turn_owner = turn_owner
        match.pot = economy.pot(a_chips, b_chips, match.carry_over)

        logger.debug(
            "Evaluated READY round",
            extra={
                "match_id": match.id,
                "round": round_number,
                "round_status": target.value,
                "turn_owner": turn_owner,
            },
        )
        return ReadyEvaluation(
            round=round_number,
            status=target,
            turn_owner=turn_owner,
            team_a_chips=a_chips,
            team_b_chips=b_chips,
        )

    def enter_showdown(self, match: Match, *, live_pot: int) -> None:
        self._transition(match, RoundStatus.SHOWDOWN)
        match.turn_owner = None
        match.pot = live_pot

    def enter_result(self, match: Match, result: RoundResult) -> None:
        self._transition(match, RoundStatus.RESULT)
        match.turn_owner = None
        match.pot = 0
        match.history.append(result)
        match.last_round_result = result
        match.result_confirmed = {}

    def advance(self, match: Match) -> RoundStatus:
        """Move past a confirmed round to the next READY or to FINISHED."""

        if self.is_final_round(match):
            self._transition(match, RoundStatus.FINISHED)
        else:
            self._transition(match, RoundStatus.READY)
            match.current_round += 1
        match.result_confirmed = {}
        match.last_round_result = None
        match.last_action = None
        match.turn_owner = None
        return match.round_status
