"""Round orchestrator: the debate state machine.

The orchestrator owns one ``DebateRunState`` and mutates it only from its own
driver task and from the synchronous part of ``dispatch``. Rounds run on a
background task started by ``Start``; presentation code follows along through
``subscribe`` callbacks or the ``stream()`` channel.

Failure policy: a participant on an auto route whose whole fallback chain
failed is recorded as a non-responder for the round and the debate goes on
without them. A participant pinned to an explicit backend that still fails
after its retry budget ends the debate with ``DebateError``.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import replace

from config.config_loader import DebateConfig, PromptsConfig
from concord.consensus import analyze, identify_prunable_participants
from concord.errors import InvalidRequest
from concord.events import (
    TERMINAL_EVENTS,
    Action,
    AddParticipant,
    ConsensusUpdated,
    DebateCancelled,
    DebateComplete,
    DebateError,
    DebatePaused,
    DebateResumed,
    DebateStarted,
    Event,
    InjectMessage,
    JudgingStarted,
    ParticipantFailed,
    ParticipantPruned,
    ParticipantResponded,
    ParticipantThinking,
    Pause,
    RemoveParticipant,
    Resume,
    RoundComplete,
    RoundStarted,
    SkipToJudge,
    Start,
    Stop,
    UpdateConfig,
    UserInterjected,
    UserInterjectionRequested,
)
from concord.influence import confidence_modifier, raw_influence
from concord.invocation import Invoker
from concord.models import (
    ConsensusAnalysis,
    ConsensusOutcome,
    DebateMode,
    DebateRunState,
    DebateStatus,
    Participant,
    PrunedParticipant,
    Recommendation,
    Response,
    Round,
)
from concord.parsing import (
    extract_agreements_and_disagreements,
    extract_confidence,
    extract_key_points,
    parse_stance,
)
from concord.prompts import build_system_prompt, build_turn_prompt
from concord.routing import is_auto
from concord.synthesis import build_judge_prompt
from concord.weights import apply_reliability

logger = logging.getLogger(__name__)

# Quality gate: warn when fewer than this many participants respond in round 1
_MIN_QUALITY_RESPONSES = 3
_MIN_ACTIVE = 2
_FOCUS_DISPUTE_STREAK = 2

_EDITABLE = (DebateStatus.IDLE, DebateStatus.CONFIGURING, DebateStatus.PAUSED)
_IN_PROGRESS = (
    DebateStatus.RUNNING,
    DebateStatus.PAUSED,
    DebateStatus.WAITING_USER,
    DebateStatus.MAX_ROUNDS,
    DebateStatus.JUDGING,
)

EventHandler = Callable[[Event], None]
HistoryLookup = Callable[[str], Sequence[Round]]


class _Superseded(Exception):
    """The run this work belongs to was stopped or replaced."""


class _DebateAborted(Exception):
    """A failure that ends the debate with DebateError."""


class DebateOrchestrator:
    """Drives one debate at a time from topic intake to the judge's verdict.

    Args:
        invoker: Resilient invocation layer used for every participant turn
            and for the judge.
        prompts: Prompt templates and personas.
        config: Default options for debates started without their own.
        history_lookup: Optional source of past rounds per backend id; when
            given, reliability weights are derived from it on every START.
        sleep: Awaitable used for the pause between sequential responses.
        clock: Wall-clock source for timestamps.
    """

    def __init__(
        self,
        invoker: Invoker,
        prompts: PromptsConfig,
        *,
        config: DebateConfig | None = None,
        history_lookup: HistoryLookup | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._invoker = invoker
        self._prompts = prompts
        self._history_lookup = history_lookup
        self._sleep = sleep
        self._clock = clock
        self._state = DebateRunState(status=DebateStatus.IDLE, config=config or DebateConfig())
        self._handlers: list[EventHandler] = []
        self._streams: list[asyncio.Queue] = []
        self._task: asyncio.Task | None = None
        self._generation = 0
        self._focus_streak = 0
        self._resume = asyncio.Event()
        self._resume.set()
        self._user_input = asyncio.Event()

    # -- observation --------------------------------------------------------

    @property
    def status(self) -> DebateStatus:
        return self._state.status

    @property
    def state(self) -> DebateRunState:
        """A snapshot copy; mutating it does not affect the running debate."""
        s = self._state
        return replace(
            s,
            participants=list(s.participants),
            rounds=list(s.rounds),
            pruned_participants=list(s.pruned_participants),
            non_responders={k: list(v) for k, v in s.non_responders.items()},
            interjections=list(s.interjections),
        )

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register ``handler`` for every event. Returns an unsubscribe function."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def stream(self) -> AsyncIterator[Event]:
        """Channel of events from now on, ending after a terminal event."""
        queue: asyncio.Queue = asyncio.Queue()
        self._streams.append(queue)
        return self._drain(queue)

    async def _drain(self, queue: asyncio.Queue) -> AsyncIterator[Event]:
        try:
            while True:
                event = await queue.get()
                yield event
                if isinstance(event, TERMINAL_EVENTS):
                    return
        finally:
            if queue in self._streams:
                self._streams.remove(queue)

    def _emit(self, event: Event) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed on %s", type(event).__name__)
        for queue in list(self._streams):
            queue.put_nowait(event)

    # -- control ------------------------------------------------------------

    async def dispatch(self, action: Action) -> None:
        """Apply one control action.

        Raises:
            InvalidRequest: For START arguments or edits the current state
                does not accept.
            TypeError: For an object that is not a known action.
        """
        if isinstance(action, Start):
            self._start(action)
        elif isinstance(action, Pause):
            self._pause()
        elif isinstance(action, Resume):
            self._resume_run()
        elif isinstance(action, Stop):
            await self._stop()
        elif isinstance(action, InjectMessage):
            self._inject(action.text)
        elif isinstance(action, SkipToJudge):
            await self._skip_to_judge()
        elif isinstance(action, UpdateConfig):
            self._update_config(action.overrides)
        elif isinstance(action, AddParticipant):
            self._add_participant(action.participant)
        elif isinstance(action, RemoveParticipant):
            self._remove_participant(action.participant_id)
        else:
            raise TypeError(f"Unknown action: {action!r}")

    async def join(self) -> None:
        """Wait until the background run (including a judge-only run) finishes."""
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})

    async def run(
        self,
        topic: str,
        participants: Sequence[Participant],
        config: DebateConfig | None = None,
    ) -> DebateRunState:
        """Start a debate, wait for it to end and return the final state."""
        await self.dispatch(Start(topic=topic, participants=tuple(participants), config=config))
        await self.join()
        return self.state

    def _validate_participants(self, participants: Sequence[Participant]) -> None:
        ids = [p.session_id for p in participants]
        if len(set(ids)) != len(ids):
            raise InvalidRequest("Participant session ids must be unique")
        unknown = sorted({p.backend_id for p in participants if not self._invoker.knows(p.backend_id)})
        if unknown:
            raise InvalidRequest(f"Unknown backend(s): {', '.join(unknown)}")

    def _start(self, action: Start) -> None:
        if self._state.status in _IN_PROGRESS:
            raise InvalidRequest(f"Cannot start: debate is {self._state.status.value}")

        topic = (action.topic or "").strip()
        if not topic:
            raise InvalidRequest("Topic must not be empty")
        participants = list(action.participants) if action.participants is not None else list(self._state.participants)
        if len(participants) < _MIN_ACTIVE:
            raise InvalidRequest(f"A debate needs at least {_MIN_ACTIVE} participants, got {len(participants)}")
        self._validate_participants(participants)

        config = (action.config or self._state.config).validate()
        if not self._invoker.knows(config.judge_backend_id):
            raise InvalidRequest(f"Unknown judge backend: {config.judge_backend_id}")

        if self._history_lookup is not None:
            participants = apply_reliability(participants, self._history_lookup)

        self._generation += 1
        self._focus_streak = 0
        self._resume.set()
        self._user_input.clear()
        self._state = DebateRunState(
            status=DebateStatus.RUNNING,
            config=config,
            topic=topic,
            participants=participants,
            started_at=self._clock(),
        )
        logger.info(
            "Debate started: %d participants, mode=%s, max_rounds=%d",
            len(participants),
            config.mode.value,
            config.max_rounds,
        )
        self._emit(DebateStarted(topic=topic, participants=tuple(participants)))
        self._task = asyncio.get_running_loop().create_task(self._drive(self._generation))

    def _pause(self) -> None:
        if self._state.status != DebateStatus.RUNNING:
            logger.debug("Pause ignored while %s", self._state.status.value)
            return
        self._state.status = DebateStatus.PAUSED
        self._resume.clear()
        self._emit(DebatePaused())

    def _resume_run(self) -> None:
        status = self._state.status
        if status == DebateStatus.PAUSED:
            self._state.status = DebateStatus.RUNNING
            self._resume.set()
        elif status == DebateStatus.WAITING_USER:
            self._state.status = DebateStatus.RUNNING
            self._user_input.set()
        else:
            logger.debug("Resume ignored while %s", status.value)
            return
        self._emit(DebateResumed())

    async def _cancel_task(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        await asyncio.wait({task})

    async def _stop(self) -> None:
        if self._state.status == DebateStatus.CONFIGURING:
            self._state.status = DebateStatus.IDLE
            logger.info("Configuration abandoned before start")
            self._emit(DebateCancelled())
            return
        if self._state.status not in _IN_PROGRESS:
            logger.debug("Stop ignored while %s", self._state.status.value)
            return
        self._generation += 1
        await self._cancel_task()
        self._state.status = DebateStatus.IDLE
        self._state.completed_at = self._clock()
        self._resume.set()
        logger.info("Debate cancelled after %d round(s)", self._state.current_round)
        self._emit(DebateCancelled())

    def _inject(self, text: str) -> None:
        if self._state.status != DebateStatus.WAITING_USER:
            logger.info("Interjection ignored: debate is %s", self._state.status.value)
            return
        message = text.strip()
        if not message:
            raise InvalidRequest("Interjection must not be empty")
        self._state.interjections.append(message)
        self._state.status = DebateStatus.RUNNING
        self._emit(UserInterjected(message=message))
        self._user_input.set()

    async def _skip_to_judge(self) -> None:
        status = self._state.status
        if status not in (DebateStatus.RUNNING, DebateStatus.PAUSED, DebateStatus.WAITING_USER):
            logger.debug("Skip to judge ignored while %s", status.value)
            return
        if not self._state.rounds:
            raise InvalidRequest("Skip to judge needs at least one completed round")

        self._generation += 1
        generation = self._generation
        await self._cancel_task()
        self._resume.set()
        self._state.status = DebateStatus.RUNNING
        logger.info("Skipping to judge after round %d", self._state.current_round)
        self._task = asyncio.get_running_loop().create_task(self._drive(generation, judge_only=True))

    def _require_editable(self, what: str) -> None:
        if self._state.status not in _EDITABLE:
            raise InvalidRequest(f"Cannot {what} while debate is {self._state.status.value}")

    def _edited(self) -> None:
        if self._state.status == DebateStatus.IDLE:
            self._state.status = DebateStatus.CONFIGURING

    def _update_config(self, overrides: dict) -> None:
        self._require_editable("update config")
        self._state.config = self._state.config.with_overrides(**overrides)
        self._edited()

    def _add_participant(self, participant: Participant) -> None:
        self._require_editable("add a participant")
        self._validate_participants([*self._state.participants, participant])
        self._state.participants.append(participant)
        self._edited()

    def _remove_participant(self, participant_id: str) -> None:
        self._require_editable("remove a participant")
        state = self._state
        remaining = [p for p in state.participants if p.session_id != participant_id]
        if len(remaining) == len(state.participants):
            raise InvalidRequest(f"No participant with id {participant_id}")
        if state.status == DebateStatus.PAUSED:
            active = [p for p in remaining if p.session_id not in state.pruned_ids]
            if len(active) < _MIN_ACTIVE:
                raise InvalidRequest(f"A running debate needs at least {_MIN_ACTIVE} active participants")
        state.participants = remaining
        self._edited()

    # -- driver -------------------------------------------------------------

    def _check_generation(self, generation: int) -> None:
        if generation != self._generation:
            raise _Superseded()

    async def _checkpoint(self, generation: int) -> None:
        """Turn boundary: wait out a pause, then confirm this run is still live."""
        await self._resume.wait()
        self._check_generation(generation)

    async def _drive(self, generation: int, judge_only: bool = False) -> None:
        try:
            if not judge_only:
                await self._run_rounds(generation)
            await self._judge(generation)
        except _Superseded:
            logger.debug("Run %d superseded", generation)
        except _DebateAborted as exc:
            self._fail(generation, str(exc))
        except Exception as exc:
            logger.exception("Debate driver crashed")
            self._fail(generation, f"Unexpected error: {exc}")

    def _fail(self, generation: int, message: str) -> None:
        if generation != self._generation or self._state.status.is_terminal:
            return
        logger.error("Debate failed: %s", message)
        self._state.status = DebateStatus.ERROR
        self._state.error = message
        self._state.completed_at = self._clock()
        self._emit(DebateError(error=message))

    async def _run_rounds(self, generation: int) -> None:
        state = self._state
        while True:
            await self._checkpoint(generation)
            config = state.config
            round_number = state.current_round + 1
            active = state.active_participants
            logger.info("Starting round %d with %d participants", round_number, len(active))
            self._emit(RoundStarted(round_number=round_number))

            responses = await self._run_round(generation, round_number, active)
            if not responses:
                raise _DebateAborted(f"No participant responded in round {round_number}")

            if round_number == 1 and len(active) >= _MIN_QUALITY_RESPONSES and len(responses) < _MIN_QUALITY_RESPONSES:
                logger.warning(
                    "Only %d/%d participants responded in round 1. Debate quality is degraded.",
                    len(responses),
                    len(active),
                )

            analysis = analyze(responses, [r.consensus_at_end for r in state.rounds], config)
            shares = {m.participant_id: m.effective_share for m in analysis.influence.model_breakdown}
            finished = tuple(replace(r, effective_influence=shares.get(r.participant_id, 0.0)) for r in responses)
            rnd = Round(number=round_number, responses=finished, consensus_at_end=analysis, timestamp=self._clock())

            self._check_generation(generation)
            state.rounds.append(rnd)
            state.current_round = round_number
            state.consensus = analysis
            logger.info(
                "Round %d complete: %d/%d responded, consensus %.0f%% (%s), %s",
                round_number,
                len(responses),
                len(active),
                analysis.score * 100,
                analysis.level.value,
                analysis.recommendation.value,
            )
            self._emit(RoundComplete(round=rnd))
            self._emit(ConsensusUpdated(consensus=analysis))

            if config.enable_pruning:
                self._prune(finished, round_number)

            await self._checkpoint(generation)
            if not await self._should_continue(generation, analysis, round_number):
                return

    async def _should_continue(self, generation: int, analysis: ConsensusAnalysis, round_number: int) -> bool:
        state = self._state
        config = state.config
        recommendation = analysis.recommendation

        if (
            config.auto_stop_on_consensus
            and recommendation in (Recommendation.COMPLETE, Recommendation.CALL_JUDGE)
            and analysis.stable_rounds >= config.minimum_stable_rounds
        ):
            logger.info("Consensus stable for %d round(s); moving to judge", analysis.stable_rounds)
            return False
        if analysis.consensus_outcome == ConsensusOutcome.DEADLOCK:
            logger.info("Deadlock detected in round %d; moving to judge", round_number)
            return False
        if round_number >= config.max_rounds:
            state.status = DebateStatus.MAX_ROUNDS
            logger.info("Reached max rounds (%d) without consensus", config.max_rounds)
            return False

        self._focus_streak = self._focus_streak + 1 if recommendation == Recommendation.FOCUS_DISPUTE else 0
        if config.allow_user_interjection and self._focus_streak >= _FOCUS_DISPUTE_STREAK:
            self._focus_streak = 0
            state.status = DebateStatus.WAITING_USER
            self._user_input.clear()
            logger.info("Disputes persist after round %d; waiting for user input", round_number)
            self._emit(UserInterjectionRequested())
            await self._user_input.wait()
            self._check_generation(generation)
        return True

    async def _run_round(
        self,
        generation: int,
        round_number: int,
        active: Sequence[Participant],
    ) -> list[Response]:
        state = self._state
        config = state.config
        prior = [(rnd.number, r) for rnd in state.rounds for r in rnd.responses]
        responses: list[Response] = []

        if config.mode == DebateMode.SEQUENTIAL:
            for i, participant in enumerate(active):
                if i > 0 and config.pause_between_responses_ms:
                    await self._sleep(config.pause_between_responses_ms / 1000)
                await self._checkpoint(generation)
                history = prior + [(round_number, r) for r in responses]
                response = await self._take_turn(generation, participant, round_number, history)
                if response is not None:
                    responses.append(response)
            return responses

        await self._checkpoint(generation)
        tasks = [
            asyncio.create_task(self._take_turn(generation, p, round_number, prior))
            for p in active
        ]
        try:
            # Completion order, not participant order.
            for next_done in asyncio.as_completed(tasks):
                response = await next_done
                if response is not None:
                    responses.append(response)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
        return responses

    async def _take_turn(
        self,
        generation: int,
        participant: Participant,
        round_number: int,
        history: Sequence[tuple[int, Response]],
    ) -> Response | None:
        state = self._state
        config = state.config
        self._emit(ParticipantThinking(participant_id=participant.session_id, backend_id=participant.backend_id))

        prompt = build_turn_prompt(
            state.topic,
            self._prompts,
            round_number,
            history,
            state.interjections,
            config.max_context_tokens,
        )
        start = time.monotonic()
        result = await self._invoker.invoke(
            participant,
            prompt,
            request=state.topic,
            strict_shape=False,
            system_prompt=build_system_prompt(participant, self._prompts),
            max_retries=config.max_response_retries,
            retry_backoff_ms=config.retry_backoff_ms,
        )
        self._check_generation(generation)

        if not result.ok:
            self._emit(ParticipantFailed(participant_id=participant.session_id, error=str(result.error)))
            if is_auto(participant.backend_id):
                state.non_responders.setdefault(round_number, []).append(participant.session_id)
                logger.warning("%s did not respond in round %d: %s", participant.title, round_number, result.error)
                return None
            raise _DebateAborted(f"{participant.title} failed in round {round_number}: {result.error}")

        response = self._build_response(participant, result.text or "", int((time.monotonic() - start) * 1000))
        self._emit(ParticipantResponded(response=response))
        return response

    def _build_response(self, participant: Participant, text: str, duration_ms: int) -> Response:
        key_points = extract_key_points(text)
        agreements, disagreements = extract_agreements_and_disagreements(text)
        confidence = extract_confidence(text)
        response = Response(
            participant_id=participant.session_id,
            backend_id=participant.backend_id,
            title=participant.title,
            stance=parse_stance(text),
            content=text,
            key_points=tuple(key_points),
            agreements=tuple(agreements),
            disagreements=tuple(disagreements),
            confidence=confidence,
            user_weight=participant.user_weight,
            reliability_weight=participant.reliability_weight,
            confidence_modifier=confidence_modifier(confidence),
            duration_ms=duration_ms,
            timestamp=self._clock(),
        )
        return replace(response, raw_influence=raw_influence(response))

    def _prune(self, responses: Sequence[Response], round_number: int) -> None:
        state = self._state
        candidates = identify_prunable_participants(responses, state.config.pruning_threshold)
        allowed = max(0, len(state.active_participants) - _MIN_ACTIVE)
        for candidate in candidates[:allowed]:
            state.pruned_participants.append(
                PrunedParticipant(
                    participant_id=candidate.participant_id,
                    title=candidate.title,
                    pruned_at_round=round_number,
                    reason=candidate.reason,
                )
            )
            logger.info("Pruned %s after round %d: %s", candidate.title, round_number, candidate.reason)
            self._emit(
                ParticipantPruned(participant_id=candidate.participant_id, title=candidate.title, reason=candidate.reason)
            )

    async def _judge(self, generation: int) -> None:
        await self._checkpoint(generation)
        state = self._state
        config = state.config
        state.status = DebateStatus.JUDGING
        self._emit(JudgingStarted())
        logger.info("Running judge via %s", config.judge_backend_id)

        judge = Participant(
            session_id="judge",
            backend_id=config.judge_backend_id,
            title="Judge",
            system_prompt=self._prompts.judge_system,
        )
        result = await self._invoker.invoke(
            judge,
            build_judge_prompt(state.topic, state.rounds, state.consensus, self._prompts),
            request=state.topic,
            strict_shape=False,
            max_retries=config.max_response_retries,
            retry_backoff_ms=config.retry_backoff_ms,
        )
        self._check_generation(generation)
        if not result.ok:
            raise _DebateAborted(f"Judge failed: {result.error}")

        state.final_answer = result.text
        state.status = DebateStatus.COMPLETE
        state.completed_at = self._clock()
        logger.info("Debate complete after %d round(s)", state.current_round)
        self._emit(DebateComplete(final_answer=result.text or "", consensus=state.consensus))
