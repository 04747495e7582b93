"""Background controller that owns the engine and speaks the host protocol.

The host never touches the population directly: commands go into an inbox,
a single worker thread applies them and runs generations, and every result
comes back through the outbox as an :class:`~neat_lab.protocol.Event` whose
payload is a fresh snapshot.
"""

from __future__ import annotations

import copy
import threading
from queue import Empty, Queue
from typing import Any, Callable, Mapping, Optional

from loguru import logger

from .config import EvolutionConfig
from .evaluation import EvaluateFn, FitnessEvaluator, GenerationCancelled, evaluate
from .population import Population
from .protocol import Command, CommandType, ControllerState, Event, EventType
from .snapshot import build_snapshot

__all__ = ["EvolutionController"]

Listener = Callable[[Event], None]


class EvolutionController:
    """State machine ``IDLE -> READY <-> RUNNING <-> PAUSED`` driven by commands."""

    def __init__(
        self,
        evaluate_fn: EvaluateFn = evaluate,
        listener: Optional[Listener] = None,
        input_count: int | None = None,
        output_count: int | None = None,
    ) -> None:
        self._evaluate_fn = evaluate_fn
        self._listener = listener
        self._io = (input_count, output_count)

        self.state = ControllerState.IDLE
        self.config = EvolutionConfig()
        self.population: Population | None = None
        self._pending_config: dict[str, Any] = {}

        self._inbox: Queue[Command] = Queue()
        self._outbox: Queue[Event] = Queue()
        self._cancel = threading.Event()
        self._thread: threading.Thread | None = None

        self._handlers = {
            CommandType.INIT: self._on_init,
            CommandType.START: self._on_start,
            CommandType.STOP: self._on_stop,
            CommandType.STEP: self._on_step,
            CommandType.RESET: self._on_reset,
            CommandType.UPDATE_CONFIG: self._on_update_config,
            CommandType.REQUEST_GENOME: self._on_request_genome,
            CommandType.STATE: self._on_state,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Launch the worker thread (idempotent)."""
        if self._thread is None or not self._thread.is_alive():
            self._thread = threading.Thread(target=self._loop, name="neat-controller", daemon=True)
            self._thread.start()
            logger.info("[EvolutionController] Worker started")

    def shutdown(self, timeout: float = 10.0) -> None:
        self._cancel.set()
        self._inbox.put(Command(CommandType.SHUTDOWN))
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        if self.population is not None:
            self.population.evaluator.close()
        logger.info("[EvolutionController] Worker stopped")

    def __enter__(self) -> "EvolutionController":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    # Host side
    # ------------------------------------------------------------------

    def send(self, command: Command | Mapping[str, Any]) -> None:
        if not isinstance(command, Command):
            try:
                command = Command.from_message(command)
            except ValueError as exc:
                self._emit(EventType.ERROR, message=str(exc))
                return
        if command.type is CommandType.RESET:
            # Abandon whatever generation is in flight.
            self._cancel.set()
        self._inbox.put(command)

    def next_event(self, timeout: float | None = None) -> Event:
        """Block for the next outbound event; raises ``queue.Empty`` on timeout."""
        return self._outbox.get(timeout=timeout)

    def drain_events(self) -> list[Event]:
        events = []
        while True:
            try:
                events.append(self._outbox.get_nowait())
            except Empty:
                return events

    @property
    def running(self) -> bool:
        return self.state is ControllerState.RUNNING

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------

    def _loop(self) -> None:
        while True:
            if self.state is ControllerState.RUNNING:
                if not self._drain_inbox():
                    return
                if self.state is ControllerState.RUNNING:
                    self._run_generation()
                continue

            command = self._inbox.get()
            if command.type is CommandType.SHUTDOWN:
                return
            self.handle(command)

    def _drain_inbox(self) -> bool:
        """Apply queued commands between generations; False once asked to shut down."""
        while True:
            try:
                command = self._inbox.get_nowait()
            except Empty:
                return True
            if command.type is CommandType.SHUTDOWN:
                return False
            self.handle(command)

    def handle(self, command: Command) -> None:
        """Apply one command on the calling thread."""
        handler = self._handlers.get(command.type)
        if handler is None:
            self._emit(EventType.ERROR, message=f"Unsupported command: {command.type.value}")
            return
        try:
            handler(command.payload)
        except Exception as exc:
            logger.exception(f"[EvolutionController] {command.type.value} failed")
            self._fail(exc)

    def _emit(self, event_type: EventType, **payload: Any) -> None:
        event = Event(event_type, copy.deepcopy(payload))
        self._outbox.put(event)
        if self._listener is None:
            return
        try:
            self._listener(event)
        except Exception:
            # The event is already queued for the host.
            logger.exception(f"[EvolutionController] Listener failed on {event_type.value}")

    def _snapshot(self) -> dict[str, Any]:
        return build_snapshot(self.population, self.config, self.running)

    def _reject(self, command: CommandType, reason: str) -> None:
        logger.debug(f"[EvolutionController] Rejected {command.value}: {reason}")
        self._emit(EventType.ERROR, message=f"{command.value} rejected: {reason}")

    def _fail(self, exc: Exception) -> None:
        was_running = self.running
        if self.state is not ControllerState.IDLE:
            self.state = ControllerState.PAUSED
        self._emit(EventType.ERROR, message=str(exc) or type(exc).__name__)
        if not was_running:
            return
        try:
            self._apply_pending_config()
        except Exception as pending_exc:
            logger.exception("[EvolutionController] Deferred config update failed")
            self._emit(EventType.ERROR, message=str(pending_exc) or type(pending_exc).__name__)

    def _build_population(self) -> None:
        if self.population is not None:
            self.population.evaluator.close()
        evaluator = FitnessEvaluator(self._evaluate_fn, workers=self.config.workers)
        input_count, output_count = self._io
        self.population = Population(self.config, evaluator, input_count=input_count, output_count=output_count)

    def _run_generation(self) -> bool:
        population = self.population

        def report(value: float) -> None:
            self._emit(EventType.PROGRESS, value=value, generation=population.generation)

        try:
            population.step(on_progress=report, should_cancel=self._cancel.is_set)
            self._emit(EventType.GENERATION_COMPLETE, snapshot=self._snapshot())
        except GenerationCancelled as exc:
            logger.info(f"[EvolutionController] Generation discarded ({exc})")
            return False
        except Exception as exc:
            logger.exception("[EvolutionController] Generation failed")
            self._fail(exc)
            return False
        return True

    def _apply_pending_config(self) -> None:
        if not self._pending_config:
            return
        pending, self._pending_config = self._pending_config, {}
        self._update_config(pending)

    def _update_config(self, payload: Mapping[str, Any]) -> None:
        self.config = self.config.merged(payload)
        if self.population is not None:
            self.population.update_config(self.config)
        self._emit(EventType.CONFIG_UPDATED, snapshot=self._snapshot())

    # ------------------------------------------------------------------
    # Command handlers
    # ------------------------------------------------------------------

    def _on_init(self, payload: Mapping[str, Any]) -> None:
        if self.state is not ControllerState.IDLE:
            self._reject(CommandType.INIT, "engine already initialised; send RESET instead")
            return
        self.config = self.config.merged(payload)
        self._build_population()
        self.state = ControllerState.READY
        self._emit(EventType.INITED, snapshot=self._snapshot())

    def _on_start(self, payload: Mapping[str, Any]) -> None:
        if self.state is ControllerState.IDLE:
            self._reject(CommandType.START, "engine is not initialised")
            return
        if self.state is ControllerState.RUNNING:
            logger.debug("[EvolutionController] START ignored; already running")
            return
        self.state = ControllerState.RUNNING
        self._emit(EventType.STATUS, message="RUNNING", snapshot=self._snapshot())

    def _on_stop(self, payload: Mapping[str, Any]) -> None:
        if self.state is not ControllerState.RUNNING:
            self._reject(CommandType.STOP, f"engine is {self.state.value.lower()}, not running")
            return
        self.state = ControllerState.PAUSED
        self._emit(EventType.STATUS, message="PAUSED", snapshot=self._snapshot())
        self._apply_pending_config()

    def _on_step(self, payload: Mapping[str, Any]) -> None:
        if self.state not in (ControllerState.READY, ControllerState.PAUSED):
            self._reject(CommandType.STEP, f"engine is {self.state.value.lower()}")
            return
        self._run_generation()

    def _on_reset(self, payload: Mapping[str, Any]) -> None:
        self._cancel.clear()
        self._pending_config = {}
        self.config = self.config.merged(payload)
        self.state = ControllerState.READY
        self._build_population()
        self._emit(EventType.RESET, snapshot=self._snapshot())

    def _on_update_config(self, payload: Mapping[str, Any]) -> None:
        if self.state is ControllerState.RUNNING:
            # Applied once the run pauses, never under an active generation.
            self._pending_config.update(payload)
            logger.info(f"[EvolutionController] Deferred config update {sorted(payload)} until paused")
            return
        self._update_config(payload)

    def _on_request_genome(self, payload: Mapping[str, Any]) -> None:
        raw_id = payload.get("id")
        try:
            genome_id = int(raw_id)
        except (TypeError, ValueError):
            self._emit(EventType.ERROR, message=f"Invalid genome id: {raw_id!r}")
            return

        genome = self.population.find_genome(genome_id) if self.population is not None else None
        if genome is None:
            self._emit(EventType.ERROR, message=f"Unknown genome id: {genome_id}")
            return
        self._emit(EventType.GENOME_DETAILS, genome=genome.to_dict())

    def _on_state(self, payload: Mapping[str, Any]) -> None:
        self._emit(EventType.STATE, snapshot=self._snapshot())
