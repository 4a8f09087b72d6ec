"""Two-party acknowledgement barrier for resolved rounds."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

from swotapp.entities import Match, RoundStatus
from swotapp.state_machine import MatchStateMachine


@dataclass(slots=True)
class ConfirmationOutcome:
    confirmed: Dict[str, bool] = field(default_factory=dict)
    changed: bool = False
    advanced: bool = False
    new_status: Optional[RoundStatus] = None


class ResultConfirmationGate:
    """Collects one confirmation per team before the round may advance.

    Confirming twice, or outside RESULT, returns the current map unchanged.
    The gate fires once, on the confirmation that completes the pair, and
    hands the match to the state machine to advance or finish.
    """

    def __init__(self, state_machine: MatchStateMachine) -> None:
        self._machine = state_machine

    @staticmethod
    def is_complete(match: Match) -> bool:
        return bool(
            match.result_confirmed.get(match.team_a_id)
            and match.result_confirmed.get(match.team_b_id)
        )

    def confirm(self, match: Match, team_id: str) -> ConfirmationOutcome:
        if not self._machine.may_confirm(match, team_id):
            return ConfirmationOutcome(confirmed=dict(match.result_confirmed))
        if match.result_confirmed.get(team_id):
            return ConfirmationOutcome(confirmed=dict(match.result_confirmed))

        match.result_confirmed = {**match.result_confirmed, team_id: True}
        if not self.is_complete(match):
            return ConfirmationOutcome(
                confirmed=dict(match.result_confirmed), changed=True
            )

        new_status = self._machine.advance(match)
        return ConfirmationOutcome(
            confirmed=dict(match.result_confirmed),
            changed=True,
            advanced=True,
            new_status=new_status,
        )
