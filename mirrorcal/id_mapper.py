from __future__ import annotations

import logging
import re


logger = logging.getLogger(__name__)

# Destination ids are limited to the base32hex alphabet (RFC 2938, section 3.1.2).
INVALID_ID_CHARS = re.compile(r"[^a-v0-9]+")


def fix_id(event_id: str) -> str:
    """Return a destination-safe event id for ``event_id``.

    Every run of characters outside ``[a-v0-9]`` collapses to a single ``0``.
    Valid ids come back unchanged so the destination keeps treating a re-synced
    event as the same copy. Distinct ids may collide after the substitution.
    """
    fixed = INVALID_ID_CHARS.sub("0", event_id)
    if fixed != event_id:
        logger.debug("Fixing event id %s -> %s", event_id, fixed)
    return fixed


def is_valid_id(event_id: str) -> bool:
    return bool(event_id) and INVALID_ID_CHARS.search(event_id) is None
