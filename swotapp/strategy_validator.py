"""Validation of a team's ten-round card and chip allocation."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from swotapp.entities import (
    CARDS,
    MIN_ROUND_CHIPS,
    TOTAL_CHIPS,
    TOTAL_ROUNDS,
    RoundStrategy,
)


class StrategyIssue(str, Enum):
    """Enumerates the reasons a strategy cannot be locked."""

    WRONG_ROUND_COUNT = "wrong_round_count"
    INVALID_ROUND_ORDER = "invalid_round_order"
    INVALID_CARD_SET = "invalid_card_set"
    CHIP_TOTAL_MISMATCH = "chip_total_mismatch"
    ROUND_CHIPS_TOO_LOW = "round_chips_too_low"


@dataclass(slots=True)
class ValidationResult:
    """Outcome of validating a strategy submission."""

    is_valid: bool
    issues: List[StrategyIssue] = field(default_factory=list)
    remaining_chips: int = 0
    missing_cards: List[int] = field(default_factory=list)
    unexpected_cards: List[int] = field(default_factory=list)


class StrategyValidator:
    """Check a strategy against the deck and chip budget rules."""

    def __init__(
        self,
        *,
        total_rounds: int = TOTAL_ROUNDS,
        total_chips: int = TOTAL_CHIPS,
        cards: Sequence[int] = CARDS,
        min_round_chips: int = MIN_ROUND_CHIPS,
    ) -> None:
        self._total_rounds = total_rounds
        self._total_chips = total_chips
        self._cards = Counter(cards)
        self._min_round_chips = min_round_chips

    def validate(self, strategy: Optional[Sequence[RoundStrategy]]) -> ValidationResult:
        """Inspect ``strategy`` and report every rule it breaks.

        The card multiset must equal the deck exactly, chips must sum to the
        budget, and no round may bet less than the minimum.
        """

        entries = list(strategy or [])
        issues: List[StrategyIssue] = []

        if len(entries) != self._total_rounds:
            issues.append(StrategyIssue.WRONG_ROUND_COUNT)

        expected_rounds = list(range(1, len(entries) + 1))
        if [entry.round for entry in entries] != expected_rounds:
            issues.append(StrategyIssue.INVALID_ROUND_ORDER)

        used = Counter(entry.card for entry in entries)
        missing_cards = sorted((self._cards - used).elements())
        unexpected_cards = sorted(
            card for card, count in used.items() if count > self._cards.get(card, 0)
        )
        if missing_cards or unexpected_cards:
            issues.append(StrategyIssue.INVALID_CARD_SET)

        chips_total = sum(entry.chips for entry in entries)
        if chips_total != self._total_chips:
            issues.append(StrategyIssue.CHIP_TOTAL_MISMATCH)

        if any(entry.chips < self._min_round_chips for entry in entries):
            issues.append(StrategyIssue.ROUND_CHIPS_TOO_LOW)

        return ValidationResult(
            is_valid=not issues,
            issues=issues,
            remaining_chips=self._total_chips - chips_total,
            missing_cards=missing_cards,
            unexpected_cards=unexpected_cards,
        )
