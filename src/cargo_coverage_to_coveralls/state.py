from __future__ import annotations

import enum


class PipelineState(str, enum.Enum):
    IDLE = "idle"
    PROVISIONING = "provisioning"
    BUILDING = "building"
    TESTING = "testing"
    AGGREGATING = "aggregating"
    PUBLISHING = "publishing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({PipelineState.SUCCEEDED, PipelineState.FAILED})

FORWARD_TRANSITIONS: dict[PipelineState, frozenset[PipelineState]] = {
    PipelineState.IDLE: frozenset({PipelineState.PROVISIONING}),
    PipelineState.PROVISIONING: frozenset({PipelineState.BUILDING}),
    PipelineState.BUILDING: frozenset({PipelineState.TESTING}),
    PipelineState.TESTING: frozenset({PipelineState.AGGREGATING}),
    PipelineState.AGGREGATING: frozenset({PipelineState.PUBLISHING}),
    PipelineState.PUBLISHING: frozenset({PipelineState.SUCCEEDED}),
}

# Local runs stop after the report is written.
SKIP_PUBLISH_TRANSITIONS = {(PipelineState.AGGREGATING, PipelineState.SUCCEEDED)}


class InvalidTransition(RuntimeError):
    def __init__(self, current: PipelineState, target: PipelineState) -> None:
        super().__init__(f"Invalid pipeline transition {current.value} -> {target.value}")
        self.current = current
        self.target = target


def can_transition(
    current: PipelineState,
    target: PipelineState,
    allow_skip_publish: bool = False,
) -> bool:
    if current.is_terminal:
        return False
    if target is PipelineState.FAILED:
        return True
    if allow_skip_publish and (current, target) in SKIP_PUBLISH_TRANSITIONS:
        return True
    return target in FORWARD_TRANSITIONS.get(current, frozenset())


def transition(
    current: PipelineState,
    target: PipelineState,
    allow_skip_publish: bool = False,
) -> PipelineState:
    """Return target if the move is legal, otherwise raise InvalidTransition."""
    if not can_transition(current, target, allow_skip_publish):
        raise InvalidTransition(current, target)
    return target
