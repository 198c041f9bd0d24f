from __future__ import annotations

import logging
from typing import Any

from mirrorcal.state_store import StateStore


logger = logging.getLogger(__name__)

CURSOR_KEY_PREFIX = "cursor:"


class CursorStore:
    """Continuation token of one pair, kept in the state database.

    An empty token means there is no prior position; the next run is a cold
    start. ``save`` commits before returning.
    """

    def __init__(self, state_store: StateStore, pair_name: str) -> None:
        self.state_store = state_store
        self.pair_name = pair_name
        self.key = f"{CURSOR_KEY_PREFIX}{pair_name}"

    def load(self) -> str:
        token = self.state_store.get_meta(self.key)
        if token is None:
            logger.info("No stored sync token for pair %s, next run starts cold", self.pair_name)
            return ""
        return token

    def save(self, token: str | None) -> None:
        self.state_store.set_meta(self.key, token or "")
        logger.debug("Stored sync token for pair %s: %s", self.pair_name, token)

    def reset(self) -> None:
        self.save("")

    def describe(self) -> dict[str, Any]:
        token = self.state_store.get_meta(self.key) or ""
        return {
            "pair": self.pair_name,
            "sync_token": token,
            "cold_start": not token,
            "updated_at": self.state_store.get_meta_updated_at(self.key),
        }
