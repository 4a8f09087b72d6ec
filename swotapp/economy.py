"""Pure chip accounting for a single match.

Every helper takes a frozen :class:`LedgerState` and returns a new one so the
action processor can compute an outcome completely before touching the
mutable match and team records.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Tuple

from swotapp.entities import MatchException, RoundOutcome, TeamSlot


@dataclass(frozen=True)
class LedgerState:
    team_a_winnings: int = 0
    team_b_winnings: int = 0
    team_a_score: int = 0
    team_b_score: int = 0
    carry_over: int = 0

    def winnings_of(self, slot: TeamSlot) -> int:
        return self.team_a_winnings if slot is TeamSlot.A else self.team_b_winnings


@dataclass(frozen=True)
class RoundSettlement:
    """Ledger after a round resolves together with the recorded outcome."""

    ledger: LedgerState
    outcome: RoundOutcome
    pot_won: int


def other_slot(slot: TeamSlot) -> TeamSlot:
    return TeamSlot.B if slot is TeamSlot.A else TeamSlot.A


def pot(team_a_chips: int, team_b_chips: int, carry_over: int) -> int:
    return team_a_chips + team_b_chips + carry_over


def split_pot(amount: int) -> Tuple[int, int]:
    """Split ``amount`` evenly; the odd chip goes to the A slot."""

    half, remainder = divmod(amount, 2)
    return half + remainder, half


def _credit(state: LedgerState, slot: TeamSlot, amount: int) -> LedgerState:
    if slot is TeamSlot.A:
        return replace(state, team_a_winnings=state.team_a_winnings + amount)
    return replace(state, team_b_winnings=state.team_b_winnings + amount)


def apply_win(state: LedgerState, winner: TeamSlot, amount: int) -> LedgerState:
    updated = _credit(state, winner, amount)
    if winner is TeamSlot.A:
        updated = replace(updated, team_a_score=updated.team_a_score + 1)
    else:
        updated = replace(updated, team_b_score=updated.team_b_score + 1)
    return replace(updated, carry_over=0)


def apply_fold(state: LedgerState, folder: TeamSlot, amount: int) -> LedgerState:
    # The score is untouched; only a showdown win counts as a point.
    return replace(_credit(state, other_slot(folder), amount), carry_over=0)


def apply_draw(state: LedgerState, amount: int, is_final_round: bool) -> LedgerState:
    if not is_final_round:
        return replace(state, carry_over=amount)
    a_share, b_share = split_pot(amount)
    updated = _credit(_credit(state, TeamSlot.A, a_share), TeamSlot.B, b_share)
    return replace(updated, carry_over=0)


def apply_call_debit(state: LedgerState, caller: TeamSlot, diff: int) -> LedgerState:
    """Pay ``diff`` out of the caller's winnings."""

    if diff < 0:
        raise MatchException("Call difference cannot be negative: %s" % diff)
    available = state.winnings_of(caller)
    if available < diff:
        raise MatchException(
            "Winnings %s cannot cover a call of %s" % (available, diff)
        )
    return _credit(state, caller, -diff)


def apply_steal_debit(state: LedgerState, caller: TeamSlot) -> LedgerState:
    """Spend all of the caller's winnings towards an underfunded call."""

    if caller is TeamSlot.A:
        return replace(state, team_a_winnings=0)
    return replace(state, team_b_winnings=0)


def settle_showdown(
    state: LedgerState,
    *,
    team_a_card: int,
    team_b_card: int,
    amount: int,
    is_final_round: bool,
) -> RoundSettlement:
    if team_a_card > team_b_card:
        return RoundSettlement(
            apply_win(state, TeamSlot.A, amount), RoundOutcome.A_WON, amount
        )
    if team_b_card > team_a_card:
        return RoundSettlement(
            apply_win(state, TeamSlot.B, amount), RoundOutcome.B_WON, amount
        )
    return RoundSettlement(
        apply_draw(state, amount, is_final_round), RoundOutcome.DRAW, 0
    )


def settle_fold(state: LedgerState, folder: TeamSlot, amount: int) -> RoundSettlement:
    outcome = RoundOutcome.A_FOLDED if folder is TeamSlot.A else RoundOutcome.B_FOLDED
    return RoundSettlement(apply_fold(state, folder, amount), outcome, amount)
