"""Public intent surface of the match engine.

Every intent runs as a load / mutate / compare-and-swap save cycle on the
whole room document. Intents for one room are serialised in-process by an
``asyncio.Lock``; writers in other processes are detected by the version
check and the intent is re-applied to the freshly loaded room.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from redis import exceptions as redis_exceptions

from swotapp.action_processor import (
    ActionOutcome,
    ActionProcessor,
    ActionStatus,
    ChipTransfer,
    StealRejected,
)
from swotapp.config import Config
from swotapp.confirmation_gate import ResultConfirmationGate
from swotapp.entities import (
    Match,
    MatchException,
    Room,
    RoomStatus,
    RoundResult,
    RoundStatus,
    RoundStrategy,
    Team,
)
from swotapp.metrics import (
    ACTION_DURATION,
    MATCH_ACTIONS_TOTAL,
    ROUNDS_RESOLVED_TOTAL,
    VERSION_CONFLICTS_TOTAL,
)
from swotapp.room_store import RoomStore
from swotapp.state_machine import MatchStateMachine
from swotapp.strategy_validator import StrategyIssue, StrategyValidator
from swotapp.utils.logging_helpers import match_logger

_STORE_ERRORS = (redis_exceptions.RedisError, asyncio.TimeoutError)


@dataclass
class EngineResult:
    success: bool
    message: str = ""
    no_op: bool = False
    changed: bool = False
    recoverable: bool = False
    steal_required: bool = False
    needed: int = 0
    issues: List[StrategyIssue] = field(default_factory=list)
    steal_rejection: Optional[StealRejected] = None
    match_id: Optional[str] = None
    round: Optional[int] = None
    round_status: Optional[RoundStatus] = None
    round_result: Optional[RoundResult] = None
    confirmed: Dict[str, bool] = field(default_factory=dict)
    advanced: bool = False
    room: Optional[Room] = None
    pending_evaluations: List[Tuple[str, int]] = field(default_factory=list, repr=False)

    @property
    def outcome(self) -> str:
        if self.changed:
            return "applied"
        if self.no_op:
            return "no_op"
        if self.steal_required:
            return "steal_required"
        if self.recoverable:
            return "failed"
        return "rejected"


RoomMutation = Callable[[Room], EngineResult]


def no_op_result(message: str, **kwargs) -> EngineResult:
    return EngineResult(success=False, no_op=True, message=message, **kwargs)


class MatchEngine:
    """Applies team and administrator intents to rooms in the shared store."""

    def __init__(
        self,
        store: RoomStore,
        *,
        config: Optional[Config] = None,
        validator: Optional[StrategyValidator] = None,
        state_machine: Optional[MatchStateMachine] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        cfg = config or Config()
        self._store = store
        self._validator = validator or StrategyValidator()
        self._machine = state_machine or MatchStateMachine()
        self._processor = ActionProcessor(self._machine)
        self._gate = ResultConfirmationGate(self._machine)
        self._max_retries = cfg.MAX_VERSION_RETRIES
        self._retry_backoff = cfg.RETRY_BACKOFF_SECONDS
        self._ready_delay = cfg.READY_EVALUATION_DELAY
        self._auto_evaluate_ready = cfg.AUTO_EVALUATE_READY
        self._logger = match_logger(
            logger or logging.getLogger(__name__), component="match_engine"
        )
        self._room_locks: Dict[str, asyncio.Lock] = {}

    @property
    def store(self) -> RoomStore:
        return self._store

    @property
    def state_machine(self) -> MatchStateMachine:
        return self._machine

    def _room_lock(self, room_id: str) -> asyncio.Lock:
        lock = self._room_locks.get(room_id)
        if lock is None:
            lock = asyncio.Lock()
            self._room_locks[room_id] = lock
        return lock

    def _forget_room(self, room_id: str) -> None:
        lock = self._room_locks.get(room_id)
        if lock is not None and not lock.locked():
            del self._room_locks[room_id]

    async def delete_room(self, room_id: str) -> None:
        """Remove a room from the shared store and drop its local lock."""

        async with self._room_lock(room_id):
            await self._store.delete_room(room_id)
        self._forget_room(room_id)

    # Read model ---------------------------------------------------------

    async def get_room(self, room_id: str) -> Optional[Room]:
        return await self._store.load_room(room_id)

    async def list_rooms(self) -> List[Room]:
        return await self._store.load()

    async def snapshot_room(self, room_id: str) -> EngineResult:
        """Read a room, reporting store failures instead of raising."""

        log = self._logger.bind(room_id=room_id, action="snapshot_room")
        try:
            room = await self._store.load_room(room_id)
        except _STORE_ERRORS as exc:
            return self._store_failure(log, exc, stage="load")
        if room is None:
            return EngineResult(success=False, message="Room %s not found" % room_id)
        return EngineResult(success=True, room=room)

    # Persistence cycle --------------------------------------------------

    async def update_room(
        self,
        room_id: str,
        intent: str,
        mutation: RoomMutation,
        *,
        team_id: Optional[str] = None,
    ) -> EngineResult:
        """Run ``mutation`` against the stored room and persist it if changed.

        ``mutation`` may be called more than once when another writer
        commits first; it must derive everything from the room it receives.
        """

        log = self._logger.bind(room_id=room_id, team_id=team_id, action=intent)
        start_time = time.perf_counter()
        try:
            result = await self._apply_with_retry(room_id, intent, mutation, log)
        finally:
            ACTION_DURATION.labels(action=intent).observe(
                time.perf_counter() - start_time
            )
        MATCH_ACTIONS_TOTAL.labels(action=intent, outcome=result.outcome).inc()

        gone = result.room is None and not result.recoverable
        if gone or (result.room is not None and result.room.status is RoomStatus.FINISHED):
            self._forget_room(room_id)
        if result.changed and result.pending_evaluations:
            await self._auto_evaluate(room_id, result)
        return result

    async def _apply_with_retry(
        self, room_id: str, intent: str, mutation: RoomMutation, log
    ) -> EngineResult:
        async with self._room_lock(room_id):
            for attempt in range(1, self._max_retries + 1):
                try:
                    room, version = await self._store.load_room_with_version(room_id)
                except _STORE_ERRORS as exc:
                    return self._store_failure(log, exc, stage="load")
                if room is None:
                    return EngineResult(
                        success=False, message="Room %s not found" % room_id
                    )

                result = mutation(room)
                result.room = room
                if not result.changed:
                    log.debug(
                        "Intent left room unchanged",
                        extra={
                            "event_type": "engine_%s_skipped" % intent,
                            "match_id": result.match_id,
                            "outcome": result.outcome,
                            "reason": result.message,
                        },
                    )
                    return result

                try:
                    saved = await self._store.save_room_with_version_check(room, version)
                except _STORE_ERRORS as exc:
                    return self._store_failure(log, exc, stage="save")

                if saved:
                    self._log_applied(log, intent, result)
                    return result

                VERSION_CONFLICTS_TOTAL.inc()
                log.warning(
                    "Room changed concurrently; retrying intent",
                    extra={
                        "event_type": "engine_version_conflict",
                        "attempt": attempt,
                        "max_attempts": self._max_retries,
                        "expected_version": version,
                    },
                )
                if attempt < self._max_retries:
                    await asyncio.sleep(self._retry_backoff * (2 ** (attempt - 1)))

        log.error(
            "Gave up after repeated version conflicts",
            extra={"event_type": "engine_version_conflict_exhausted"},
        )
        return EngineResult(
            success=False,
            recoverable=True,
            message="Room was modified concurrently; try again",
        )

    @staticmethod
    def _store_failure(log, exc: BaseException, *, stage: str) -> EngineResult:
        log.error(
            "Shared store unavailable",
            extra={
                "event_type": "engine_store_failure",
                "stage": stage,
                "error_type": type(exc).__name__,
            },
            exc_info=True,
        )
        return EngineResult(
            success=False,
            recoverable=True,
            message="Could not reach the shared store; try again",
        )

    def _log_applied(self, log, intent: str, result: EngineResult) -> None:
        extra = {
            "event_type": "engine_%s" % intent,
            "match_id": result.match_id,
            "round": result.round,
            "round_status": result.round_status,
        }
        if result.round_result is not None:
            extra["result"] = result.round_result.result.value
            extra["pot_won"] = result.round_result.pot_won
            ROUNDS_RESOLVED_TOTAL.labels(result=result.round_result.result.value).inc()
        log.info(result.message or "Intent applied", extra=extra)

        if result.advanced:
            finished = result.round_status is RoundStatus.FINISHED
            log.info(
                "Match finished" if finished else "Round advanced",
                extra={
                    "event_type": (
                        "engine_match_finished" if finished else "engine_round_advanced"
                    ),
                    "match_id": result.match_id,
                    "round": result.round,
                },
            )

    async def _auto_evaluate(self, room_id: str, result: EngineResult) -> None:
        if not self._auto_evaluate_ready:
            return
        if self._ready_delay > 0:
            await asyncio.sleep(self._ready_delay)
        for match_id, expected_round in result.pending_evaluations:
            evaluation = await self.evaluate_ready(
                room_id, match_id, expected_round=expected_round
            )
            if evaluation.changed and evaluation.room is not None:
                result.room = evaluation.room
                result.round_status = evaluation.round_status

    # Helpers -----------------------------------------------------------

    @staticmethod
    def _locate(room: Room, team_id: str) -> Optional[Tuple[Match, Team, Team]]:
        if room.status is not RoomStatus.PLAYING:
            return None
        match = room.match_for_team(team_id)
        if match is None:
            return None
        team_a = room.find_team(match.team_a_id)
        team_b = room.find_team(match.team_b_id)
        if team_a is None or team_b is None:
            return None
        return match, team_a, team_b

    @staticmethod
    def _pending_for(match: Match, room: Room) -> List[Tuple[str, int]]:
        if match.round_status is not RoundStatus.READY:
            return []
        team_a = room.find_team(match.team_a_id)
        team_b = room.find_team(match.team_b_id)
        if team_a is None or team_b is None:
            return []
        if not (team_a.is_ready and team_b.is_ready):
            return []
        return [(match.id, match.current_round)]

    @staticmethod
    def _from_outcome(match: Match, outcome: ActionOutcome) -> EngineResult:
        common = {
            "message": outcome.message,
            "match_id": match.id,
            "round": match.current_round,
            "round_status": match.round_status,
        }
        if outcome.status is ActionStatus.APPLIED:
            return EngineResult(
                success=True,
                changed=True,
                needed=outcome.needed,
                round_result=outcome.round_result,
                **common,
            )
        if outcome.status is ActionStatus.STEAL_REQUIRED:
            return EngineResult(
                success=True, steal_required=True, needed=outcome.needed, **common
            )
        if outcome.status is ActionStatus.REJECTED:
            return EngineResult(
                success=False,
                needed=outcome.needed,
                steal_rejection=outcome.steal_rejection,
                **common,
            )
        return no_op_result(**common)

    def _match_action(
        self,
        team_id: str,
        action: Callable[[Match, Team, Team], ActionOutcome],
    ) -> RoomMutation:
        def mutation(room: Room) -> EngineResult:
            located = self._locate(room, team_id)
            if located is None:
                return no_op_result("Team has no active match")
            match, team_a, team_b = located
            return self._from_outcome(match, action(match, team_a, team_b))

        return mutation

    # Team intents ------------------------------------------------------

    async def submit_strategy(
        self, room_id: str, team_id: str, strategy: Sequence[RoundStrategy]
    ) -> EngineResult:
        """Validate and lock a team's allocation.

        A rejected strategy stays editable and the issues are reported back.
        Once locked, the strategy cannot be resubmitted.
        """

        entries = [
            RoundStrategy(round=entry.round, card=entry.card, chips=entry.chips)
            for entry in strategy or []
        ]

        def mutation(room: Room) -> EngineResult:
            team = room.find_team(team_id)
            if team is None:
                return EngineResult(success=False, message="Team %s not found" % team_id)
            if room.status is RoomStatus.FINISHED:
                return no_op_result("Room has finished")
            if team.is_ready:
                return no_op_result("Strategy is already locked")

            validation = self._validator.validate(entries)
            if not validation.is_valid:
                return EngineResult(
                    success=False,
                    message="Strategy rejected",
                    issues=list(validation.issues),
                )

            team.strategy = [
                RoundStrategy(round=entry.round, card=entry.card, chips=entry.chips)
                for entry in entries
            ]
            team.is_ready = True
            match = room.match_for_team(team_id)
            return EngineResult(
                success=True,
                changed=True,
                message="Strategy locked",
                match_id=match.id if match else None,
                pending_evaluations=(
                    self._pending_for(match, room)
                    if match and room.status is RoomStatus.PLAYING
                    else []
                ),
            )

        return await self.update_room(
            room_id, "submit_strategy", mutation, team_id=team_id
        )

    async def fold(self, room_id: str, team_id: str) -> EngineResult:
        mutation = self._match_action(
            team_id,
            lambda match, team_a, team_b: self._processor.fold(
                match, team_a, team_b, team_id
            ),
        )
        return await self.update_room(room_id, "fold", mutation, team_id=team_id)

    async def call(self, room_id: str, team_id: str) -> EngineResult:
        """Match the opponent's bet or report the chips a steal must cover."""

        mutation = self._match_action(
            team_id,
            lambda match, team_a, team_b: self._processor.call(
                match, team_a, team_b, team_id
            ),
        )
        return await self.update_room(room_id, "call", mutation, team_id=team_id)

    async def steal(
        self, room_id: str, team_id: str, transfers: Iterable[ChipTransfer]
    ) -> EngineResult:
        plan = list(transfers or [])
        mutation = self._match_action(
            team_id,
            lambda match, team_a, team_b: self._processor.steal(
                match, team_a, team_b, team_id, plan
            ),
        )
        return await self.update_room(room_id, "steal", mutation, team_id=team_id)

    async def showdown(self, room_id: str, team_id: str) -> EngineResult:
        mutation = self._match_action(
            team_id,
            lambda match, team_a, team_b: self._processor.showdown(
                match, team_a, team_b, team_id
            ),
        )
        return await self.update_room(room_id, "showdown", mutation, team_id=team_id)

    async def confirm_result(self, room_id: str, team_id: str) -> EngineResult:
        def mutation(room: Room) -> EngineResult:
            match = room.match_for_team(team_id)
            if match is None:
                return no_op_result("Team has no match")
            outcome = self._gate.confirm(match, team_id)
            if not outcome.changed:
                return no_op_result(
                    "Nothing to confirm",
                    match_id=match.id,
                    round=match.current_round,
                    round_status=match.round_status,
                    confirmed=outcome.confirmed,
                )

            result = EngineResult(
                success=True,
                changed=True,
                message="Result confirmed",
                match_id=match.id,
                round=match.current_round,
                round_status=match.round_status,
                confirmed=outcome.confirmed,
                advanced=outcome.advanced,
            )
            if outcome.advanced:
                if match.round_status is RoundStatus.READY:
                    result.pending_evaluations = self._pending_for(match, room)
                elif self._all_matches_finished(room):
                    room.status = RoomStatus.FINISHED
            return result

        return await self.update_room(
            room_id, "confirm_result", mutation, team_id=team_id
        )

    async def evaluate_ready(
        self,
        room_id: str,
        match_id: str,
        *,
        expected_round: Optional[int] = None,
    ) -> EngineResult:
        """Move a READY match into DECISION or SHOWDOWN.

        Safe to call from any client: it is a no-op unless the match is
        still READY at ``expected_round`` with both strategies locked.
        """

        def mutation(room: Room) -> EngineResult:
            if room.status is not RoomStatus.PLAYING:
                return no_op_result("Room is not playing", match_id=match_id)
            match = room.find_match(match_id)
            if match is None:
                return no_op_result("Match %s not found" % match_id, match_id=match_id)
            team_a = room.find_team(match.team_a_id)
            team_b = room.find_team(match.team_b_id)
            if team_a is None or team_b is None:
                return no_op_result("Match is missing a team", match_id=match_id)

            try:
                evaluation = self._machine.evaluate_ready(
                    match, team_a, team_b, expected_round=expected_round
                )
            except MatchException as exc:
                return no_op_result(
                    str(exc), match_id=match_id, round=match.current_round
                )
            if evaluation is None:
                return no_op_result(
                    "Round is not awaiting evaluation",
                    match_id=match_id,
                    round=match.current_round,
                    round_status=match.round_status,
                )
            return EngineResult(
                success=True,
                changed=True,
                message="Round opened",
                match_id=match_id,
                round=evaluation.round,
                round_status=evaluation.status,
            )

        return await self.update_room(room_id, "evaluate_ready", mutation)

    # Administrator intents ---------------------------------------------

    async def override_strategy(
        self,
        room_id: str,
        team_id: str,
        strategy: Optional[Sequence[RoundStrategy]] = None,
    ) -> EngineResult:
        """Lock a team without validation, optionally replacing its strategy.

        Trusted escape hatch for demonstrations and testing. Card and chip
        rules are skipped, but a replacement must still cover every round.
        """

        total_rounds = self._machine.total_rounds
        if strategy is not None and len(strategy) != total_rounds:
            return EngineResult(
                success=False,
                message="Override needs %d rounds, got %d"
                % (total_rounds, len(strategy)),
            )

        entries = (
            [
                RoundStrategy(round=entry.round, card=entry.card, chips=entry.chips)
                for entry in strategy
            ]
            if strategy is not None
            else None
        )

        def mutation(room: Room) -> EngineResult:
            team = room.find_team(team_id)
            if team is None:
                return EngineResult(success=False, message="Team %s not found" % team_id)
            if entries is not None:
                team.strategy = [
                    RoundStrategy(round=entry.round, card=entry.card, chips=entry.chips)
                    for entry in entries
                ]
            elif not team.strategy:
                team.strategy = RoundStrategy.blank_strategy(total_rounds)
            team.is_ready = True
            match = room.match_for_team(team_id)
            return EngineResult(
                success=True,
                changed=True,
                message="Strategy locked by override",
                match_id=match.id if match else None,
                pending_evaluations=(
                    self._pending_for(match, room)
                    if match and room.status is RoomStatus.PLAYING
                    else []
                ),
            )

        return await self.update_room(
            room_id, "override_strategy", mutation, team_id=team_id
        )

    async def start_room(self, room_id: str) -> EngineResult:
        def mutation(room: Room) -> EngineResult:
            if room.status is not RoomStatus.PREPARING:
                return no_op_result("Room is %s" % room.status.value)
            room.status = RoomStatus.PLAYING
            pending: List[Tuple[str, int]] = []
            for match in room.matches:
                pending.extend(self._pending_for(match, room))
            return EngineResult(
                success=True,
                changed=True,
                message="Room started",
                pending_evaluations=pending,
            )

        return await self.update_room(room_id, "start_room", mutation)

    async def finish_room(self, room_id: str) -> EngineResult:
        def mutation(room: Room) -> EngineResult:
            if room.status is RoomStatus.FINISHED:
                return no_op_result("Room already finished")
            room.status = RoomStatus.FINISHED
            return EngineResult(success=True, changed=True, message="Room finished")

        return await self.update_room(room_id, "finish_room", mutation)

    @staticmethod
    def _all_matches_finished(room: Room) -> bool:
        scheduled = [
            match for match in room.matches if match.team_a_id and match.team_b_id
        ]
        return bool(scheduled) and all(match.is_finished for match in scheduled)
