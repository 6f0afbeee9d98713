"""Loop prevention — duplicate and self-trigger suppression.

Our own final response is posted back into the thread it answers. If it
contains the agent mention, Linear may start another session from it, and
each run would trigger the next. Two independent defences:

1. Identity: events whose actor is our own agent user are skipped.
2. Sanitizing: outbound text never carries a live ``@mention``.

Deduplication covers webhook redelivery. The key is recorded before the run
starts, in the same synchronous step as the check, so no redelivery can slip
in while a slow run is still going.
"""

from __future__ import annotations

import logging
import re
from typing import Literal

from linear_agent.models import WebhookEvent
from linear_agent.registry import SessionRegistry

logger = logging.getLogger(__name__)

SkipReason = Literal["duplicate", "self-trigger"]

# "@handle" not preceded by a word char or dot, so emails stay intact
_MENTION_RE = re.compile(r"(?<![\w.])@(\w+)")


def sanitize_mentions(text: str, token: str = "claude", display_name: str = "Claude") -> str:
    """Rewrite @mentions as plain text so outbound posts can't trigger anyone."""
    text = re.sub(rf"@{re.escape(token)}\b", display_name, text, flags=re.IGNORECASE)
    return _MENTION_RE.sub(r"\1", text)


class LoopGuard:
    """Decides whether a classified event may start a run."""

    def __init__(self, registry: SessionRegistry):
        self.registry = registry

    def check(self, event: WebhookEvent) -> SkipReason | None:
        """Return a skip reason, or None after recording the event's key."""
        key = event.dedup_key
        if key is None:
            return None

        if self.registry.is_processed(key):
            logger.warning("Duplicate event detected, skipping (key=%s)", key)
            return "duplicate"

        if event.is_self_triggered:
            logger.warning(
                "Self-trigger detected, skipping (key=%s, actor=%s)",
                key,
                event.actor_id,
            )
            return "self-trigger"

        self.registry.mark_processed(key)
        return None
