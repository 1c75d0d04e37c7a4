"""Pipeline state machine and the run state it publishes.

  idle ──begin()──> processing ──complete()──> completed
   │                    │
   └──fail(input)──> error <──fail()──┘

completed and error are terminal until reset(), which returns to idle and
drops the artifact. Observers get the new RunState after every change.
"""

import math
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum

from .errors import InputError, InvalidTransitionError


class Phase(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class RunState:
    phase: Phase = Phase.IDLE
    message: str = ""
    progress: int = 0
    artifact: object | None = None
    error: Exception | None = None


def clip_progress(index: int, total: int) -> int:
    """Percentage reported when clip `index` (0-based) of `total` starts."""
    return math.floor(index / total * 100)


class PipelineState:
    def __init__(self):
        self._state = RunState()
        self._observers: list[Callable[[RunState], None]] = []

    @property
    def current(self) -> RunState:
        return self._state

    @property
    def phase(self) -> Phase:
        return self._state.phase

    def subscribe(self, observer: Callable[[RunState], None]) -> None:
        self._observers.append(observer)

    def _set(self, state: RunState) -> RunState:
        self._state = state
        for observer in self._observers:
            observer(state)
        return state

    def _require(self, *phases: Phase, action: str) -> None:
        if self._state.phase not in phases:
            raise InvalidTransitionError(
                f"Cannot {action} while {self._state.phase.value}"
            )

    # ── Transitions ───────────────────────────────────────────────

    def select(self, clip_count: int, base_name: str) -> RunState:
        """Record a freshly selected clip list (idle only)."""
        self._require(Phase.IDLE, action="select clips")
        return self._set(RunState(
            message=f'Ready to merge {clip_count} clips from "{base_name}"',
        ))

    def begin(self, message: str) -> RunState:
        self._require(Phase.IDLE, action="start a run")
        return self._set(RunState(phase=Phase.PROCESSING, message=message))

    def update(self, message: str, progress: int) -> RunState:
        self._require(Phase.PROCESSING, action="report progress")
        return self._set(replace(self._state, message=message, progress=progress))

    def complete(self, artifact, message: str) -> RunState:
        self._require(Phase.PROCESSING, action="complete")
        if artifact is None:
            raise InvalidTransitionError("Cannot complete without an artifact")
        return self._set(RunState(
            phase=Phase.COMPLETED, message=message, progress=100, artifact=artifact,
        ))

    def fail(self, error: Exception, message: str | None = None) -> RunState:
        """Move to error. From idle only an InputError is allowed."""
        if isinstance(error, InputError):
            self._require(Phase.IDLE, Phase.PROCESSING, action="fail")
        else:
            self._require(Phase.PROCESSING, action="fail")
        return self._set(RunState(
            phase=Phase.ERROR,
            message=message or f"Error: {error}",
            progress=0,
            error=error,
        ))

    def reset(self) -> RunState:
        """Return a terminal state to idle, releasing the artifact."""
        self._require(Phase.IDLE, Phase.COMPLETED, Phase.ERROR, action="reset")
        return self._set(RunState())
