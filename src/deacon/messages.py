"""
Lifecycle message filter, parser and staleness gate.

A message is a lifecycle request when its subject starts with
``LIFECYCLE:`` (any case). The body is JSON ``{"action": "..."}``, or
a bare keyword such as ``cycle`` or ``action: restart``.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from .models import ControlMessage, LifecycleAction, LifecycleRequest

logger = logging.getLogger("deacon.messages")

SUBJECT_PREFIX = "lifecycle:"
MAX_MESSAGE_AGE = timedelta(hours=6)

_FRACTION = re.compile(r"\.(\d+)")

_ACTION_WORDS: dict[str, LifecycleAction] = {
    "restart": LifecycleAction.RESTART,
    "shutdown": LifecycleAction.SHUTDOWN,
    "stop": LifecycleAction.SHUTDOWN,
    "cycle": LifecycleAction.CYCLE,
}


def is_lifecycle_subject(subject: str) -> bool:
    return subject.lower().startswith(SUBJECT_PREFIX)


def _structured_action(body: str) -> Optional[str]:
    """Return the ``action`` field of a JSON body, or None if not structured."""
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        return None
    if not isinstance(data, dict):
        return None
    action = data.get("action", "")
    return action if isinstance(action, str) else None


def _keyword_action(body: str) -> Optional[str]:
    text = body.strip().lower()
    if text.startswith("action:"):
        text = text[len("action:"):].strip()
    return text if text in _ACTION_WORDS else None


def parse_lifecycle_request(msg: ControlMessage) -> Optional[LifecycleRequest]:
    """Extract a lifecycle request from a control message.

    Args:
        msg: Message from the deacon inbox.

    Returns:
        LifecycleRequest, or None when the message is not a lifecycle
        request or names an unknown action.
    """
    if not is_lifecycle_subject(msg.subject):
        return None

    action_text = _structured_action(msg.body)
    if action_text is None:
        action_text = _keyword_action(msg.body)
        if action_text is None:
            logger.info("Lifecycle request with unparseable body: %r", msg.body)
            return None

    action = _ACTION_WORDS.get(action_text.strip().lower())
    if action is None:
        logger.info("Unknown lifecycle action: %r", action_text)
        return None

    return LifecycleRequest(
        sender=msg.from_,
        action=action,
        message_id=msg.id,
        sent_at=parse_timestamp(msg.timestamp),
    )


def parse_timestamp(value: str) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp.

    Returns:
        Timezone-aware datetime, or None if the value is empty, malformed,
        or carries no UTC offset.
    """
    if not value:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    # fromisoformat on 3.10 only takes 3 or 6 fractional digits
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return None
    return parsed


def message_age(sent_at: Optional[datetime], now: Optional[datetime] = None) -> Optional[timedelta]:
    if sent_at is None:
        return None
    return (now or datetime.now(timezone.utc)) - sent_at


def is_stale(
    sent_at: Optional[datetime],
    max_age: timedelta = MAX_MESSAGE_AGE,
    now: Optional[datetime] = None,
) -> bool:
    """Whether a request is too old to act on.

    An unknown send time is never stale. An age exactly equal to
    ``max_age`` is still fresh.
    """
    age = message_age(sent_at, now)
    return age is not None and age > max_age
