from __future__ import annotations

import fnmatch
from dataclasses import dataclass

from .models import EventKind, RunEvent


@dataclass(frozen=True)
class TriggerRules:
    # '*' matches every branch name, including ones containing '/'.
    push_branches: tuple[str, ...] = ("*",)
    pull_request: bool = True


DEFAULT_TRIGGER_RULES = TriggerRules()


def should_run(event: RunEvent, rules: TriggerRules = DEFAULT_TRIGGER_RULES) -> bool:
    """Return True when the event matches a trigger rule; no match means skip."""
    if event.event_kind is EventKind.PULL_REQUEST:
        return rules.pull_request
    if event.event_kind is EventKind.PUSH:
        if event.is_tag:
            return False
        return any(fnmatch.fnmatchcase(event.branch, pattern) for pattern in rules.push_branches)
    return False
