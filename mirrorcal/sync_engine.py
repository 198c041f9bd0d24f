from __future__ import annotations

import logging
import threading
import time
import traceback
from datetime import datetime, timezone
from typing import Any, Callable

from mirrorcal.accessors import DestinationAccessor, NotFound, SourceAccessor, TokenInvalid
from mirrorcal.config_manager import ConfigManager
from mirrorcal.cursor_store import CursorStore
from mirrorcal.errors import SyncRunFatal
from mirrorcal.google_calendar import GoogleCalendar
from mirrorcal.id_mapper import fix_id
from mirrorcal.models import (
    AppConfig,
    EventOutcome,
    EventRecord,
    PairConfig,
    PairResult,
    SyncOperation,
    SyncResult,
    SyncSettings,
)
from mirrorcal.state_store import StateStore
from mirrorcal.translator import translate_event


logger = logging.getLogger(__name__)

AuditHook = Callable[[str, str, dict[str, Any]], None]
AccessorFactory = Callable[[AppConfig, str, str], Any]


def connect_calendar(
    config: AppConfig,
    account_name: str,
    calendar_id: str,
    *,
    interactive: bool = False,
) -> GoogleCalendar:
    return GoogleCalendar.connect(config.google, config.accounts[account_name], calendar_id, interactive=interactive)


def _elapsed_ms(started_at: datetime) -> int:
    return int((datetime.now(timezone.utc) - started_at).total_seconds() * 1000)


class ReconciliationEngine:
    """Copies the changes of one source calendar onto one destination calendar."""

    def __init__(
        self,
        pair: PairConfig,
        source: SourceAccessor,
        destination: DestinationAccessor,
        cursor_store: CursorStore,
        *,
        settings: SyncSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        audit: AuditHook | None = None,
    ) -> None:
        self.pair = pair
        self.source = source
        self.destination = destination
        self.cursor_store = cursor_store
        self.settings = settings or SyncSettings()
        self._sleep = sleep
        self._clock = clock
        self._audit = audit

    def sync(self) -> PairResult:
        """Process one logical change set and advance the cursor.

        An invalidated token resets the cursor and restarts from a cold start,
        at most ``settings.max_token_resets`` times. Any other fetch error
        propagates and leaves the stored cursor where it was.
        """
        result = PairResult(pair=self.pair.name)
        while True:
            token = self.cursor_store.load()
            logger.info(
                "Starting synchronization of pair %s from %s (calendar %s) to %s (calendar %s), last sync token = %s",
                self.pair.name,
                self.pair.source_account,
                self.pair.source_calendar,
                self.pair.destination_account,
                self.pair.destination_calendar,
                token or "<none>",
            )
            outcome = self._fetch_and_apply(token, result)
            if not isinstance(outcome, TokenInvalid):
                break
            result.token_resets += 1
            logger.error("Invalid sync token for pair %s, cursor reset", self.pair.name)
            self.cursor_store.reset()
            self._record("sync", "token_reset", {"reason": outcome.reason, "attempt": result.token_resets})
            if result.token_resets > self.settings.max_token_resets:
                raise SyncRunFatal(
                    f"Sync token for pair {self.pair.name} rejected {result.token_resets} times: {outcome.reason}"
                )
            logger.info("Restarting synchronization of pair %s without token", self.pair.name)

        if outcome:
            self.cursor_store.save(outcome)
            result.next_sync_token = outcome
        else:
            logger.warning("Source returned no next sync token for pair %s, cursor left unchanged", self.pair.name)
        result.message = (
            f"Processed {result.processed} events: {result.inserted} inserted, {result.updated} updated, "
            f"{result.deleted} deleted, {result.skipped} skipped, {result.failed} failed."
        )
        logger.info(
            "Synchronization of pair %s done, %s Next sync token = %s",
            self.pair.name,
            result.message,
            result.next_sync_token,
        )
        return result

    def _fetch_and_apply(self, token: str, result: PairResult) -> TokenInvalid | str | None:
        cold_start = not token
        time_min = self._clock() if cold_start else None
        max_results = self.settings.probe_page_size if cold_start else None
        page_token: str | None = None
        while True:
            page = self.source.list_changes(
                sync_token=token or None,
                page_token=page_token,
                time_min=time_min,
                max_results=max_results,
            )
            if isinstance(page, TokenInvalid):
                return page
            for event in page.items:
                if self.pair.maximum_events and result.processed >= self.pair.maximum_events:
                    logger.debug("Maximum of %d events reached, not syncing %s", self.pair.maximum_events, event.id)
                    continue
                if result.processed:
                    self._sleep(self.pair.sleep_seconds)
                result.processed += 1
                self._process(event, result)
            page_token = page.next_page_token
            if not page_token:
                return page.next_sync_token

    def _process(self, event: EventRecord, result: PairResult) -> None:
        try:
            outcome = self.sync_event(event)
        except Exception as exc:
            result.failed += 1
            logger.exception("Problem during syncing %s - %s", event.id, event.summary)
            self._record(event.id, "event_error", {"error": f"{type(exc).__name__}: {exc}"})
            return
        result.record(outcome)
        self._record(event.id, outcome.operation.value, outcome.to_dict())

    def sync_event(self, source: EventRecord) -> EventOutcome:
        operation = SyncOperation.DELETE if source.is_cancelled else SyncOperation.UNKNOWN
        if operation == SyncOperation.DELETE:
            logger.debug("Deleting event id=%s", source.id)
        else:
            logger.debug("Syncing event %s", source.describe())

        target = self.find_event(source)
        if target is not None:
            if operation == SyncOperation.DELETE and target.is_cancelled:
                logger.debug("Event %s is already cancelled in destination calendar, skipping", target.id)
                return EventOutcome(source.id, SyncOperation.SKIPPED, target.id, "already_cancelled", planned=operation)
            if operation == SyncOperation.UNKNOWN:
                operation = SyncOperation.UPDATE
        else:
            if operation == SyncOperation.DELETE:
                logger.warning("Event %s not found in destination calendar and requested to be deleted, ignoring", source.id)
                return EventOutcome(source.id, SyncOperation.SKIPPED, "", "not_found", planned=operation)
            target = EventRecord(id=fix_id(source.id))
            operation = SyncOperation.INSERT
            logger.debug("Event %s not found, creating new event %s", source.id, target.id)

        payload = target if operation == SyncOperation.DELETE else translate_event(source, target, self.pair)
        logger.info("Performing operation %s on destination event id=%s (%s)", operation.name, target.id, payload.summary)

        pattern = self.pair.skip_description_pattern
        if operation != SyncOperation.DELETE and pattern and pattern in (source.description or ""):
            logger.debug("Source event %s contains the skip pattern, not synchronizing it", source.summary)
            return EventOutcome(source.id, SyncOperation.SKIPPED, target.id, "skip_pattern", planned=operation)

        if self.pair.dry_run:
            logger.info("Dry run, %s of destination event %s not performed", operation.name, target.id)
            return EventOutcome(source.id, SyncOperation.SKIPPED, target.id, "dry_run", planned=operation)

        if operation == SyncOperation.INSERT:
            saved = self.destination.insert(payload)
            destination_id = saved.id or target.id
        elif operation == SyncOperation.UPDATE:
            self.destination.update(target.id, payload)
            destination_id = target.id
        else:
            self.destination.delete(target.id)
            destination_id = target.id
        logger.debug("Operation %s finished", operation.name)
        return EventOutcome(source.id, operation, destination_id, "applied", applied=True, planned=operation)

    def find_event(self, source: EventRecord) -> EventRecord | None:
        if source.is_recurring_instance:
            return self._find_instance(source)
        lookup = self.destination.get(fix_id(source.id))
        if isinstance(lookup, NotFound):
            logger.debug("Event %s not found in destination calendar", fix_id(source.id))
            return None
        logger.debug("Found in destination calendar: %s", lookup.event.describe())
        return lookup.event

    def _find_instance(self, source: EventRecord) -> EventRecord | None:
        series_id = fix_id(source.recurring_event_id or "")
        instances = self.destination.list_instances(series_id, max_results=self.settings.instance_page_size)
        if isinstance(instances, NotFound):
            logger.debug("Recurring series %s not found in destination calendar", series_id)
            return None
        logger.debug("Number of recurring instances of %s: %d", series_id, len(instances))
        for candidate in instances:
            if candidate.id == source.id:
                logger.debug("Matched recurring instance %s from %s to %s", candidate.id, candidate.start, candidate.end)
                return candidate
        return None

    def _record(self, event_id: str, action: str, details: dict[str, Any]) -> None:
        if self._audit is not None:
            self._audit(event_id, action, details)


class SyncEngine:
    """Runs every configured pair, one after another, recording run history."""

    def __init__(
        self,
        config_manager: ConfigManager,
        state_store: StateStore,
        *,
        accessor_factory: AccessorFactory = connect_calendar,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config_manager = config_manager
        self.state_store = state_store
        self.accessor_factory = accessor_factory
        self._sleep = sleep
        self._run_lock = threading.Lock()

    def cursor_store(self, pair_name: str) -> CursorStore:
        return CursorStore(self.state_store, pair_name)

    def reset_cursor(self, pair_name: str) -> CursorStore:
        """Clear the cursor of one pair, waiting for any run in progress to finish first."""
        with self._run_lock:
            cursor_store = self.cursor_store(pair_name)
            cursor_store.reset()
        logger.info("Cursor of pair %s reset, next run starts cold", pair_name)
        return cursor_store

    def run_once(self, trigger: str = "manual", pair_names: list[str] | None = None) -> SyncResult:
        with self._run_lock:
            return self._run_locked(trigger, pair_names)

    def _run_locked(self, trigger: str, pair_names: list[str] | None) -> SyncResult:
        started_at = datetime.now(timezone.utc)
        try:
            config = self.config_manager.load_validated()
        except Exception as exc:
            error_message = f"{type(exc).__name__}: {exc}"
            logger.error("Unable to load configuration: %s", error_message)
            run_id = self.state_store.start_sync_run(trigger=trigger, pair="*")
            self.state_store.finish_sync_run(
                run_id=run_id,
                status="error",
                message=error_message,
                duration_ms=_elapsed_ms(started_at),
                changes_applied=0,
                failures=0,
            )
            return SyncResult(
                status="error",
                message=error_message,
                duration_ms=_elapsed_ms(started_at),
                changes_applied=0,
                failures=0,
                trigger=trigger,
            )

        pairs = [pair for pair in config.pairs if pair_names is None or pair.name in pair_names]
        if not pairs:
            message = "No synchronization pairs configured. Sync skipped."
            logger.info(message)
            return SyncResult(
                status="skipped",
                message=message,
                duration_ms=_elapsed_ms(started_at),
                changes_applied=0,
                failures=0,
                trigger=trigger,
            )

        results = [self.run_pair(config, pair, trigger=trigger) for pair in pairs]
        failed_pairs = [item for item in results if item.status != "success"]
        if not failed_pairs:
            status = "success"
        elif len(failed_pairs) == len(results):
            status = "error"
        else:
            status = "partial"
        message = f"Synchronized {len(results) - len(failed_pairs)} of {len(results)} pairs."
        return SyncResult(
            status=status,
            message=message,
            duration_ms=_elapsed_ms(started_at),
            changes_applied=sum(item.changes_applied for item in results),
            failures=sum(item.failed for item in results) + len(failed_pairs),
            trigger=trigger,
            pairs=results,
        )

    def run_pair(self, config: AppConfig, pair: PairConfig, *, trigger: str = "manual") -> PairResult:
        started_at = datetime.now(timezone.utc)
        run_id = self.state_store.start_sync_run(trigger=trigger, pair=pair.name)

        def audit(event_id: str, action: str, details: dict[str, Any]) -> None:
            self.state_store.record_audit_event(
                pair=pair.name,
                event_id=event_id,
                action=action,
                details=details,
                run_id=run_id,
            )

        try:
            source = self.accessor_factory(config, pair.source_account, pair.source_calendar)
            destination = self.accessor_factory(config, pair.destination_account, pair.destination_calendar)
            engine = ReconciliationEngine(
                pair,
                source,
                destination,
                self.cursor_store(pair.name),
                settings=config.sync,
                sleep=self._sleep,
                audit=audit,
            )
            result = engine.sync()
        except Exception as exc:
            error_message = f"{type(exc).__name__}: {exc}"
            logger.exception("Exception during synchronization of pair %s", pair.name)
            self.state_store.finish_sync_run(
                run_id=run_id,
                status="error",
                message=error_message,
                duration_ms=_elapsed_ms(started_at),
                changes_applied=0,
                failures=1,
            )
            audit(
                "sync",
                "run_error",
                {"trigger": trigger, "error": error_message, "traceback": traceback.format_exc(limit=5)},
            )
            return PairResult(pair=pair.name, status="error", message=error_message)

        self.state_store.finish_sync_run(
            run_id=run_id,
            status="success",
            message=result.message,
            duration_ms=_elapsed_ms(started_at),
            changes_applied=result.changes_applied,
            failures=result.failed,
        )
        return result
