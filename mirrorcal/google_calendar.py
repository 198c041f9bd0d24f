from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from mirrorcal.accessors import (
    ChangePage,
    ChangesResult,
    DestinationAccessor,
    Found,
    InstancesResult,
    LookupResult,
    NotFound,
    SourceAccessor,
    TokenInvalid,
)
from mirrorcal.errors import ConfigurationError
from mirrorcal.models import AccountConfig, EventRecord, GoogleConfig


logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]

HTTP_NOT_FOUND = 404
HTTP_GONE = 410


def _status_of(exc: HttpError) -> int:
    try:
        return int(getattr(exc.resp, "status", 0) or 0)
    except (TypeError, ValueError):
        return 0


def _load_credentials(client_secret_file: str, token_file: str, *, interactive: bool = False) -> Credentials:
    """Load, refresh or (when ``interactive``) obtain the OAuth token stored in ``token_file``.

    Outside interactive use a missing or unrefreshable token raises
    ``ConfigurationError`` instead of opening a browser flow.
    """
    token_path = Path(token_file)
    creds = None
    if token_path.exists():
        creds = Credentials.from_authorized_user_file(str(token_path), SCOPES)
    if creds and creds.valid:
        return creds
    if creds and creds.expired and creds.refresh_token:
        logger.info("Refreshing Google credentials from %s", token_path)
        try:
            creds.refresh(Request())
        except RefreshError as exc:
            if not interactive:
                raise ConfigurationError(f"Google token in {token_path} can no longer be refreshed: {exc}") from exc
            logger.warning("Refreshing Google credentials from %s failed: %s", token_path, exc)
            creds = None
    if creds is None or not creds.valid:
        if not interactive:
            raise ConfigurationError(
                f"No usable Google token in {token_path}, authorize the account with `mirrorcal calendars <account>`"
            )
        logger.info("Authorizing Google account, token will be stored in %s", token_path)
        flow = InstalledAppFlow.from_client_secrets_file(client_secret_file, SCOPES)
        creds = flow.run_local_server(port=0)
    token_path.parent.mkdir(parents=True, exist_ok=True)
    token_path.write_text(creds.to_json(), encoding="utf-8")
    return creds


def build_service(google: GoogleConfig, account: AccountConfig, *, interactive: bool = False) -> Any:
    creds = _load_credentials(google.client_secret_file, account.token_file, interactive=interactive)
    return build("calendar", "v3", credentials=creds, cache_discovery=False)


class GoogleCalendar(SourceAccessor, DestinationAccessor):
    """One calendar of one Google account, usable as either end of a pair."""

    def __init__(self, service: Any, calendar_id: str, *, account_name: str = "") -> None:
        self.service = service
        self.calendar_id = calendar_id
        self.account_name = account_name

    @classmethod
    def connect(
        cls,
        google: GoogleConfig,
        account: AccountConfig,
        calendar_id: str,
        *,
        interactive: bool = False,
    ) -> "GoogleCalendar":
        return cls(build_service(google, account, interactive=interactive), calendar_id, account_name=account.name)

    def list_changes(
        self,
        *,
        sync_token: str | None = None,
        page_token: str | None = None,
        time_min: datetime | None = None,
        max_results: int | None = None,
    ) -> ChangesResult:
        params: dict[str, Any] = {"calendarId": self.calendar_id}
        if sync_token:
            params["syncToken"] = sync_token
        elif time_min is not None:
            params["timeMin"] = time_min.astimezone(timezone.utc).isoformat()
        if max_results:
            params["maxResults"] = int(max_results)
        if page_token:
            params["pageToken"] = page_token
        try:
            response = self.service.events().list(**params).execute()
        except HttpError as exc:
            if _status_of(exc) == HTTP_GONE:
                logger.warning("Sync token rejected by %s (calendar %s): %s", self.account_name, self.calendar_id, exc)
                return TokenInvalid(reason=str(exc))
            raise
        return ChangePage(
            items=[EventRecord.from_api(item) for item in response.get("items", [])],
            next_page_token=response.get("nextPageToken") or None,
            next_sync_token=response.get("nextSyncToken") or None,
        )

    def list_instances(self, recurring_event_id: str, *, max_results: int) -> InstancesResult:
        try:
            response = (
                self.service.events()
                .instances(calendarId=self.calendar_id, eventId=recurring_event_id, maxResults=int(max_results))
                .execute()
            )
        except HttpError as exc:
            if _status_of(exc) in {HTTP_NOT_FOUND, HTTP_GONE}:
                return NotFound(event_id=recurring_event_id)
            raise
        return [EventRecord.from_api(item) for item in response.get("items", [])]

    def get(self, event_id: str) -> LookupResult:
        try:
            response = self.service.events().get(calendarId=self.calendar_id, eventId=event_id).execute()
        except HttpError as exc:
            if _status_of(exc) in {HTTP_NOT_FOUND, HTTP_GONE}:
                return NotFound(event_id=event_id)
            raise
        return Found(EventRecord.from_api(response))

    def insert(self, event: EventRecord) -> EventRecord:
        response = self.service.events().insert(calendarId=self.calendar_id, body=event.to_api()).execute()
        return EventRecord.from_api(response)

    def update(self, event_id: str, event: EventRecord) -> EventRecord:
        response = (
            self.service.events()
            .update(calendarId=self.calendar_id, eventId=event_id, body=event.to_api())
            .execute()
        )
        return EventRecord.from_api(response)

    def delete(self, event_id: str) -> None:
        self.service.events().delete(calendarId=self.calendar_id, eventId=event_id).execute()

    def list_calendars(self) -> list[dict[str, str]]:
        calendars: list[dict[str, str]] = []
        page_token = None
        while True:
            response = self.service.calendarList().list(pageToken=page_token).execute()
            for item in response.get("items", []):
                calendars.append({"id": str(item.get("id", "")), "summary": str(item.get("summary", ""))})
            page_token = response.get("nextPageToken")
            if not page_token:
                break
        return calendars

    def list_event_colors(self) -> dict[str, dict[str, str]]:
        response = self.service.colors().get().execute()
        return dict(response.get("event", {}))
