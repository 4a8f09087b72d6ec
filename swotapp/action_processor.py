"""Fold, call, steal and showdown for the active round of a match."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from swotapp import economy
from swotapp.economy import LedgerState
from swotapp.entities import (
    MIN_ROUND_CHIPS,
    LastAction,
    Match,
    MatchAction,
    MatchException,
    RoundResult,
    Team,
    TeamSlot,
)
from swotapp.state_machine import MatchStateMachine


class ActionStatus(str, Enum):
    APPLIED = "applied"
    NO_OP = "no_op"
    STEAL_REQUIRED = "steal_required"
    REJECTED = "rejected"


class StealRejected(str, Enum):
    """Reasons a steal plan is refused as a whole."""

    NOT_REQUIRED = "not_required"
    EMPTY_PLAN = "empty_plan"
    NON_POSITIVE_AMOUNT = "non_positive_amount"
    NOT_FUTURE_ROUND = "not_future_round"
    BELOW_FLOOR = "below_floor"
    SHORT_OF_NEEDED = "short_of_needed"
    EXCEEDS_NEEDED = "exceeds_needed"


@dataclass(frozen=True)
class ChipTransfer:
    """Move ``amount`` chips from a future round into the current one."""

    from_round: int
    amount: int


@dataclass(slots=True)
class ActionOutcome:
    status: ActionStatus
    action: MatchAction
    message: str = ""
    needed: int = 0
    round_result: Optional[RoundResult] = None
    steal_rejection: Optional[StealRejected] = None

    @property
    def applied(self) -> bool:
        return self.status is ActionStatus.APPLIED


class ActionProcessor:
    """Applies team decisions to a match and its two teams.

    Each operation computes the complete economic outcome on a frozen
    :class:`LedgerState` first and only then writes the match and team
    records, so a rejected or no-op action leaves them untouched.
    """

    def __init__(
        self,
        state_machine: MatchStateMachine,
        *,
        min_round_chips: int = MIN_ROUND_CHIPS,
    ) -> None:
        self._machine = state_machine
        self._min_round_chips = min_round_chips

    @staticmethod
    def _check_pair(match: Match, team_a: Team, team_b: Team) -> None:
        if team_a.id != match.team_a_id or team_b.id != match.team_b_id:
            raise MatchException(
                "Teams %s/%s do not belong to match %s"
                % (team_a.id, team_b.id, match.id)
            )

    @staticmethod
    def _sides(
        match: Match, team_a: Team, team_b: Team, team_id: str
    ) -> Tuple[Team, Team, TeamSlot]:
        slot = match.slot_of(team_id)
        if slot is TeamSlot.A:
            return team_a, team_b, slot
        if slot is TeamSlot.B:
            return team_b, team_a, slot
        raise MatchException("Team %s is not part of match %s" % (team_id, match.id))

    @staticmethod
    def _ledger(match: Match, team_a: Team, team_b: Team) -> LedgerState:
        return LedgerState(
            team_a_winnings=team_a.winnings,
            team_b_winnings=team_b.winnings,
            team_a_score=match.team_a_score,
            team_b_score=match.team_b_score,
            carry_over=match.carry_over,
        )

    @staticmethod
    def _commit(ledger: LedgerState, match: Match, team_a: Team, team_b: Team) -> None:
        team_a.winnings = ledger.team_a_winnings
        team_b.winnings = ledger.team_b_winnings
        match.team_a_score = ledger.team_a_score
        match.team_b_score = ledger.team_b_score
        match.carry_over = ledger.carry_over

    @staticmethod
    def _no_op(action: MatchAction, message: str) -> ActionOutcome:
        return ActionOutcome(status=ActionStatus.NO_OP, action=action, message=message)

    def _round_result(
        self, match: Match, team_a: Team, team_b: Team, settlement
    ) -> RoundResult:
        a_strategy = team_a.round_strategy(match.current_round)
        b_strategy = team_b.round_strategy(match.current_round)
        return RoundResult(
            round=match.current_round,
            team_a_card=a_strategy.card,
            team_b_card=b_strategy.card,
            team_a_chips=a_strategy.chips,
            team_b_chips=b_strategy.chips,
            result=settlement.outcome,
            pot_won=settlement.pot_won,
        )

    def _current_pot(self, match: Match, team_a: Team, team_b: Team) -> int:
        return economy.pot(
            team_a.round_strategy(match.current_round).chips,
            team_b.round_strategy(match.current_round).chips,
            match.carry_over,
        )

    def call_difference(self, match: Match, team_a: Team, team_b: Team, team_id: str) -> int:
        me, opponent, _ = self._sides(match, team_a, team_b, team_id)
        return (
            opponent.round_strategy(match.current_round).chips
            - me.round_strategy(match.current_round).chips
        )

    def steal_needed(self, match: Match, team_a: Team, team_b: Team, team_id: str) -> int:
        """Chips the caller must take from future rounds to afford a call."""

        me, _, _ = self._sides(match, team_a, team_b, team_id)
        diff = self.call_difference(match, team_a, team_b, team_id)
        return max(diff - me.winnings, 0)

    # Actions -----------------------------------------------------------

    def fold(self, match: Match, team_a: Team, team_b: Team, team_id: str) -> ActionOutcome:
        self._check_pair(match, team_a, team_b)
        if not self._machine.may_decide(match, team_id):
            return self._no_op(MatchAction.FOLD, "Only the deciding team may fold")

        _, _, slot = self._sides(match, team_a, team_b, team_id)
        amount = self._current_pot(match, team_a, team_b)
        settlement = economy.settle_fold(self._ledger(match, team_a, team_b), slot, amount)
        result = self._round_result(match, team_a, team_b, settlement)

        self._commit(settlement.ledger, match, team_a, team_b)
        self._machine.enter_result(match, result)
        match.last_action = LastAction(team_id=team_id, action=MatchAction.FOLD)
        return ActionOutcome(
            status=ActionStatus.APPLIED,
            action=MatchAction.FOLD,
            message="Folded",
            round_result=result,
        )

    def call(self, match: Match, team_a: Team, team_b: Team, team_id: str) -> ActionOutcome:
        self._check_pair(match, team_a, team_b)
        if not self._machine.may_decide(match, team_id):
            return self._no_op(MatchAction.CALL, "Only the deciding team may call")

        me, _, slot = self._sides(match, team_a, team_b, team_id)
        diff = self.call_difference(match, team_a, team_b, team_id)
        if me.winnings < diff:
            needed = diff - me.winnings
            return ActionOutcome(
                status=ActionStatus.STEAL_REQUIRED,
                action=MatchAction.CALL,
                message="Winnings do not cover the call",
                needed=needed,
            )

        ledger = economy.apply_call_debit(self._ledger(match, team_a, team_b), slot, diff)
        self._commit(ledger, match, team_a, team_b)
        me.round_strategy(match.current_round).chips += diff
        self._machine.enter_showdown(
            match, live_pot=self._current_pot(match, team_a, team_b)
        )
        match.last_action = LastAction(team_id=team_id, action=MatchAction.CALL)
        return ActionOutcome(
            status=ActionStatus.APPLIED, action=MatchAction.CALL, message="Called"
        )

    def check_steal_plan(
        self,
        match: Match,
        team: Team,
        transfers: Iterable[ChipTransfer],
        needed: int,
    ) -> Tuple[Optional[StealRejected], Dict[int, int]]:
        """Validate ``transfers`` and return the per-round amounts to take."""

        taken: Dict[int, int] = defaultdict(int)
        plan: List[ChipTransfer] = list(transfers or [])
        if not plan:
            return StealRejected.EMPTY_PLAN, {}

        for transfer in plan:
            if transfer.amount <= 0:
                return StealRejected.NON_POSITIVE_AMOUNT, {}
            if not match.current_round < transfer.from_round <= len(team.strategy):
                return StealRejected.NOT_FUTURE_ROUND, {}
            taken[transfer.from_round] += transfer.amount

        for round_number, amount in taken.items():
            if amount > team.round_strategy(round_number).chips - self._min_round_chips:
                return StealRejected.BELOW_FLOOR, {}

        stolen_total = sum(taken.values())
        if stolen_total < needed:
            return StealRejected.SHORT_OF_NEEDED, {}
        if stolen_total > needed:
            return StealRejected.EXCEEDS_NEEDED, {}
        return None, dict(taken)

    def steal(
        self,
        match: Match,
        team_a: Team,
        team_b: Team,
        team_id: str,
        transfers: Iterable[ChipTransfer],
    ) -> ActionOutcome:
        """Cover an underfunded call with chips from the team's future rounds.

        The plan is accepted only when it takes exactly the shortfall without
        pushing any future round under the minimum bet. On acceptance the
        winnings are spent entirely, the current bet rises to the opponent's
        and the match moves to SHOWDOWN.
        """

        self._check_pair(match, team_a, team_b)
        if not self._machine.may_decide(match, team_id):
            return self._no_op(MatchAction.STEAL, "Only the deciding team may steal")

        me, _, slot = self._sides(match, team_a, team_b, team_id)
        diff = self.call_difference(match, team_a, team_b, team_id)
        needed = self.steal_needed(match, team_a, team_b, team_id)
        if needed <= 0:
            return ActionOutcome(
                status=ActionStatus.REJECTED,
                action=MatchAction.STEAL,
                message="Winnings already cover the call",
                steal_rejection=StealRejected.NOT_REQUIRED,
            )

        rejection, taken = self.check_steal_plan(match, me, transfers, needed)
        if rejection is not None:
            return ActionOutcome(
                status=ActionStatus.REJECTED,
                action=MatchAction.STEAL,
                message="Steal plan refused",
                needed=needed,
                steal_rejection=rejection,
            )

        ledger = economy.apply_steal_debit(self._ledger(match, team_a, team_b), slot)
        self._commit(ledger, match, team_a, team_b)
        for round_number, amount in taken.items():
            me.round_strategy(round_number).chips -= amount
        me.round_strategy(match.current_round).chips += diff
        self._machine.enter_showdown(
            match, live_pot=self._current_pot(match, team_a, team_b)
        )
        match.last_action = LastAction(team_id=team_id, action=MatchAction.STEAL)
        return ActionOutcome(
            status=ActionStatus.APPLIED,
            action=MatchAction.STEAL,
            message="Stole %s chips from future rounds" % needed,
            needed=needed,
        )

    def showdown(self, match: Match, team_a: Team, team_b: Team, team_id: str) -> ActionOutcome:
        self._check_pair(match, team_a, team_b)
        if not self._machine.may_trigger_showdown(match, team_id):
            return self._no_op(MatchAction.SHOWDOWN, "No showdown is pending")

        a_strategy = team_a.round_strategy(match.current_round)
        b_strategy = team_b.round_strategy(match.current_round)
        settlement = economy.settle_showdown(
            self._ledger(match, team_a, team_b),
            team_a_card=a_strategy.card,
            team_b_card=b_strategy.card,
            amount=economy.pot(a_strategy.chips, b_strategy.chips, match.carry_over),
            is_final_round=self._machine.is_final_round(match),
        )
        result = self._round_result(match, team_a, team_b, settlement)

        self._commit(settlement.ledger, match, team_a, team_b)
        self._machine.enter_result(match, result)
        return ActionOutcome(
            status=ActionStatus.APPLIED,
            action=MatchAction.SHOWDOWN,
            message="Showdown resolved",
            round_result=result,
        )
