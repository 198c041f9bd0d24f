from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Union

from mirrorcal.models import EventRecord


@dataclass(frozen=True)
class Found:
    event: EventRecord


@dataclass(frozen=True)
class NotFound:
    event_id: str = ""


@dataclass(frozen=True)
class TokenInvalid:
    reason: str = ""


@dataclass
class ChangePage:
    items: list[EventRecord] = field(default_factory=list)
    next_page_token: str | None = None
    next_sync_token: str | None = None


LookupResult = Union[Found, NotFound]
InstancesResult = Union[list[EventRecord], NotFound]
ChangesResult = Union[ChangePage, TokenInvalid]


class SourceAccessor(ABC):
    """Read-only view of the calendar events are copied from.

    Expected conditions come back as values (``TokenInvalid``, ``NotFound``);
    transport and API failures are raised.
    """

    @abstractmethod
    def list_changes(
        self,
        *,
        sync_token: str | None = None,
        page_token: str | None = None,
        time_min: datetime | None = None,
        max_results: int | None = None,
    ) -> ChangesResult:
        """Return one page of changes, either since ``sync_token`` or from ``time_min``."""

    @abstractmethod
    def list_instances(self, recurring_event_id: str, *, max_results: int) -> InstancesResult:
        """Return materialized instances of a recurring series."""


class DestinationAccessor(ABC):
    """Read/write view of the calendar events are copied to."""

    @abstractmethod
    def get(self, event_id: str) -> LookupResult:
        ...

    @abstractmethod
    def list_instances(self, recurring_event_id: str, *, max_results: int) -> InstancesResult:
        ...

    @abstractmethod
    def insert(self, event: EventRecord) -> EventRecord:
        ...

    @abstractmethod
    def update(self, event_id: str, event: EventRecord) -> EventRecord:
        ...

    @abstractmethod
    def delete(self, event_id: str) -> None:
        ...
