from conftest import make_room

from swotapp.confirmation_gate import ResultConfirmationGate
from swotapp.entities import RoundOutcome, RoundResult, RoundStatus
from swotapp.state_machine import MatchStateMachine


def _resolved_match(current_round: int = 1):
    room = make_room(current_round=current_round)
    match = room.matches[0]
    machine = MatchStateMachine()
    machine.evaluate_ready(
        match, room.find_team(match.team_a_id), room.find_team(match.team_b_id)
    )
    machine.enter_result(
        match,
        RoundResult(
            round=current_round,
            team_a_card=current_round - 1,
            team_b_card=current_round - 1,
            team_a_chips=3,
            team_b_chips=3,
            result=RoundOutcome.DRAW,
            pot_won=0,
        ),
    )
    return match, ResultConfirmationGate(machine)


def test_first_confirmation_waits_for_the_other_team():
    match, gate = _resolved_match()

    outcome = gate.confirm(match, "t_a")

    assert outcome.changed
    assert not outcome.advanced
    assert outcome.confirmed == {"t_a": True}
    assert match.round_status is RoundStatus.RESULT
    assert match.current_round == 1


def test_confirming_twice_has_no_effect():
    match, gate = _resolved_match()
    gate.confirm(match, "t_a")

    outcome = gate.confirm(match, "t_a")

    assert not outcome.changed
    assert outcome.confirmed == {"t_a": True}
    assert match.current_round == 1


def test_second_team_fires_the_gate_once():
    match, gate = _resolved_match()
    gate.confirm(match, "t_a")

    outcome = gate.confirm(match, "t_b")

    assert outcome.advanced
    assert outcome.new_status is RoundStatus.READY
    assert match.current_round == 2
    assert match.result_confirmed == {}
    assert match.last_round_result is None

    late = gate.confirm(match, "t_a")
    assert not late.changed
    assert match.current_round == 2


def test_outsiders_and_wrong_status_are_ignored():
    match, gate = _resolved_match()

    assert not gate.confirm(match, "t_other").changed
    assert match.result_confirmed == {}

    gate.confirm(match, "t_a")
    gate.confirm(match, "t_b")
    assert not gate.confirm(match, "t_b").changed


def test_final_round_confirmation_finishes_match():
    match, gate = _resolved_match(current_round=10)
    gate.confirm(match, "t_b")

    outcome = gate.confirm(match, "t_a")

    assert outcome.new_status is RoundStatus.FINISHED
    assert match.current_round == 10
    assert gate.is_complete(match) is False
