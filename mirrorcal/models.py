from __future__ import annotations

import copy
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from mirrorcal.errors import ConfigurationError


STATUS_CONFIRMED = "confirmed"
STATUS_TENTATIVE = "tentative"
STATUS_CANCELLED = "cancelled"

DEFAULT_SLEEP_SECONDS = 1.0
DEFAULT_INSTANCE_PAGE_SIZE = 2000


def _ensure_tz(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def serialize_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return _ensure_tz(value).isoformat()


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


class SyncOperation(str, Enum):
    UNKNOWN = "unknown"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    SKIPPED = "skipped"


@dataclass
class EventTime:
    date: str | None = None
    date_time: str | None = None
    time_zone: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any] | None) -> "EventTime | None":
        if not data:
            return None
        return cls(
            date=_optional_text(data.get("date")),
            date_time=_optional_text(data.get("dateTime")),
            time_zone=_optional_text(data.get("timeZone")),
        )

    def to_api(self) -> dict[str, str]:
        payload: dict[str, str] = {}
        if self.date is not None:
            payload["date"] = self.date
        if self.date_time is not None:
            payload["dateTime"] = self.date_time
        if self.time_zone is not None:
            payload["timeZone"] = self.time_zone
        return payload

    def __str__(self) -> str:
        value = self.date_time or self.date or ""
        if self.time_zone:
            return f"{value} ({self.time_zone})"
        return value


@dataclass
class Attendee:
    email: str = ""
    display_name: str | None = None
    response_status: str = "needsAction"
    comment: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Attendee":
        return cls(
            email=str(data.get("email", "") or ""),
            display_name=_optional_text(data.get("displayName")),
            response_status=str(data.get("responseStatus", "needsAction") or "needsAction"),
            comment=_optional_text(data.get("comment")),
        )

    def to_api(self) -> dict[str, str]:
        payload = {"email": self.email, "responseStatus": self.response_status}
        if self.display_name is not None:
            payload["displayName"] = self.display_name
        if self.comment is not None:
            payload["comment"] = self.comment
        return payload


@dataclass
class EventRecord:
    id: str
    status: str = STATUS_CONFIRMED
    summary: str | None = None
    description: str | None = None
    location: str | None = None
    start: EventTime | None = None
    end: EventTime | None = None
    recurring_event_id: str | None = None
    attendees: list[Attendee] | None = None
    reminders: dict[str, Any] | None = None
    recurrence: list[str] | None = None
    sequence: int = 0
    color_id: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "EventRecord":
        raw_attendees = data.get("attendees")
        attendees = None
        if isinstance(raw_attendees, list):
            attendees = [Attendee.from_api(item) for item in raw_attendees if isinstance(item, dict)]
        raw_recurrence = data.get("recurrence")
        recurrence = [str(rule) for rule in raw_recurrence] if isinstance(raw_recurrence, list) else None
        raw_reminders = data.get("reminders")
        return cls(
            id=str(data.get("id", "")),
            status=str(data.get("status", STATUS_CONFIRMED) or STATUS_CONFIRMED),
            summary=_optional_text(data.get("summary")),
            description=_optional_text(data.get("description")),
            location=_optional_text(data.get("location")),
            start=EventTime.from_api(data.get("start")),
            end=EventTime.from_api(data.get("end")),
            recurring_event_id=_optional_text(data.get("recurringEventId")) or None,
            attendees=attendees,
            reminders=copy.deepcopy(raw_reminders) if isinstance(raw_reminders, dict) else None,
            recurrence=recurrence,
            sequence=max(0, int(data.get("sequence", 0) or 0)),
            color_id=_optional_text(data.get("colorId")),
        )

    def to_api(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "status": self.status,
            "sequence": self.sequence,
        }
        optional = {
            "summary": self.summary,
            "description": self.description,
            "location": self.location,
            "recurringEventId": self.recurring_event_id,
            "reminders": copy.deepcopy(self.reminders) if self.reminders is not None else None,
            "recurrence": list(self.recurrence) if self.recurrence is not None else None,
            "colorId": self.color_id,
        }
        for key, value in optional.items():
            if value is not None:
                payload[key] = value
        if self.start is not None:
            payload["start"] = self.start.to_api()
        if self.end is not None:
            payload["end"] = self.end.to_api()
        if self.attendees is not None:
            payload["attendees"] = [attendee.to_api() for attendee in self.attendees]
        return payload

    @property
    def is_cancelled(self) -> bool:
        return self.status.lower() == STATUS_CANCELLED

    @property
    def is_recurring_instance(self) -> bool:
        return bool(self.recurring_event_id)

    def describe(self) -> str:
        return f"id={self.id}, summary={self.summary}, start={self.start}, status={self.status}"


@dataclass
class GoogleConfig:
    client_secret_file: str = "conf/client_secret.json"
    application_name: str = "mirrorcal"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "GoogleConfig":
        data = data or {}
        return cls(
            client_secret_file=str(data.get("client_secret_file", "conf/client_secret.json")).strip()
            or "conf/client_secret.json",
            application_name=str(data.get("application_name", "mirrorcal")).strip() or "mirrorcal",
        )


@dataclass
class AccountConfig:
    name: str
    token_file: str = ""

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any] | None) -> "AccountConfig":
        data = data or {}
        token_file = str(data.get("token_file", "")).strip() or f"credentials/{name}/token.json"
        return cls(name=name, token_file=token_file)


@dataclass
class PairConfig:
    name: str
    source_account: str
    destination_account: str
    source_calendar: str
    destination_calendar: str
    destination_color: str = ""
    dry_run: bool = False
    summary_appendix: str = ""
    description_appendix: str = ""
    skip_description_pattern: str = ""
    maximum_events: int = 0
    sleep_seconds: float = DEFAULT_SLEEP_SECONDS

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any] | None,
        *,
        index: int = 1,
        default_sleep_seconds: float = DEFAULT_SLEEP_SECONDS,
    ) -> "PairConfig":
        data = data or {}
        raw_sleep = data.get("sleep_seconds")
        sleep_seconds = default_sleep_seconds if raw_sleep is None else float(raw_sleep)
        return cls(
            name=str(data.get("name", "")).strip() or f"sync.{index}",
            source_account=str(data.get("source_account", "")).strip(),
            destination_account=str(data.get("destination_account", "")).strip(),
            source_calendar=str(data.get("source_calendar", "")).strip(),
            destination_calendar=str(data.get("destination_calendar", "")).strip(),
            destination_color=str(data.get("destination_color", "") or "").strip(),
            dry_run=_parse_bool(data.get("dry_run", False)),
            summary_appendix=str(data.get("summary_appendix", "") or "").strip(),
            description_appendix=str(data.get("description_appendix", "") or "").replace("\\n", "\n"),
            skip_description_pattern=str(data.get("skip_description_pattern", "") or ""),
            maximum_events=max(0, int(data.get("maximum_events", 0) or 0)),
            sleep_seconds=max(0.0, sleep_seconds),
        )

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["description_appendix"] = self.description_appendix.replace("\n", "\\n")
        return payload


@dataclass
class SyncSettings:
    interval_seconds: int = 300
    sleep_seconds: float = DEFAULT_SLEEP_SECONDS
    max_token_resets: int = 1
    instance_page_size: int = DEFAULT_INSTANCE_PAGE_SIZE
    probe_page_size: int = 1

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SyncSettings":
        data = data or {}
        return cls(
            interval_seconds=max(30, int(data.get("interval_seconds", 300))),
            sleep_seconds=max(0.0, float(data.get("sleep_seconds", DEFAULT_SLEEP_SECONDS))),
            max_token_resets=max(0, int(data.get("max_token_resets", 1))),
            instance_page_size=max(1, int(data.get("instance_page_size", DEFAULT_INSTANCE_PAGE_SIZE))),
            probe_page_size=max(1, int(data.get("probe_page_size", 1))),
        )


@dataclass
class AppConfig:
    google: GoogleConfig = field(default_factory=GoogleConfig)
    accounts: dict[str, AccountConfig] = field(default_factory=dict)
    pairs: list[PairConfig] = field(default_factory=list)
    sync: SyncSettings = field(default_factory=SyncSettings)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AppConfig":
        data = data or {}
        sync = SyncSettings.from_dict(data.get("sync"))
        raw_accounts = data.get("accounts", {})
        accounts: dict[str, AccountConfig] = {}
        if isinstance(raw_accounts, dict):
            for key, value in raw_accounts.items():
                name = str(key).strip()
                if not name:
                    continue
                accounts[name] = AccountConfig.from_dict(name, value if isinstance(value, dict) else {})
        raw_pairs = data.get("pairs", [])
        pairs: list[PairConfig] = []
        if isinstance(raw_pairs, list):
            for index, item in enumerate(raw_pairs, start=1):
                if isinstance(item, dict):
                    pairs.append(
                        PairConfig.from_dict(item, index=index, default_sleep_seconds=sync.sleep_seconds)
                    )
        return cls(
            google=GoogleConfig.from_dict(data.get("google")),
            accounts=accounts,
            pairs=pairs,
            sync=sync,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "google": asdict(self.google),
            "accounts": {name: {"token_file": account.token_file} for name, account in self.accounts.items()},
            "pairs": [pair.to_dict() for pair in self.pairs],
            "sync": asdict(self.sync),
        }

    def get_pair(self, name: str) -> PairConfig | None:
        return next((pair for pair in self.pairs if pair.name == name), None)

    def validate(self) -> None:
        seen: set[str] = set()
        for pair in self.pairs:
            if pair.name in seen:
                raise ConfigurationError(f"Duplicate pair name: {pair.name}")
            seen.add(pair.name)
            for role, account in (("source", pair.source_account), ("destination", pair.destination_account)):
                if not account:
                    raise ConfigurationError(f"Pair {pair.name} is missing {role}_account")
                if account not in self.accounts:
                    raise ConfigurationError(f"Pair {pair.name} references unknown account: {account}")
            if not pair.source_calendar or not pair.destination_calendar:
                raise ConfigurationError(f"Pair {pair.name} is missing source_calendar/destination_calendar")


@dataclass
class EventOutcome:
    source_id: str
    operation: SyncOperation
    destination_id: str = ""
    reason: str = ""
    applied: bool = False
    planned: SyncOperation = SyncOperation.UNKNOWN

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["operation"] = self.operation.value
        payload["planned"] = self.planned.value
        return payload


@dataclass
class PairResult:
    pair: str
    status: str = "success"
    processed: int = 0
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    failed: int = 0
    token_resets: int = 0
    next_sync_token: str = ""
    message: str = ""

    def record(self, outcome: EventOutcome) -> None:
        if not outcome.applied:
            self.skipped += 1
        elif outcome.operation == SyncOperation.INSERT:
            self.inserted += 1
        elif outcome.operation == SyncOperation.UPDATE:
            self.updated += 1
        elif outcome.operation == SyncOperation.DELETE:
            self.deleted += 1

    @property
    def changes_applied(self) -> int:
        return self.inserted + self.updated + self.deleted

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SyncResult:
    status: str
    message: str
    duration_ms: int
    changes_applied: int
    failures: int
    trigger: str
    pairs: list[PairResult] = field(default_factory=list)
    run_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "duration_ms": self.duration_ms,
            "changes_applied": self.changes_applied,
            "failures": self.failures,
            "trigger": self.trigger,
            "pairs": [pair.to_dict() for pair in self.pairs],
            "run_at": serialize_datetime(self.run_at),
        }


def default_app_config() -> AppConfig:
    return AppConfig()
