import unittest

from mirrorcal.errors import ConfigurationError
from mirrorcal.models import AppConfig, Attendee, EventOutcome, EventRecord, PairResult, SyncOperation


class ModelTests(unittest.TestCase):
    def test_event_from_api(self) -> None:
        event = EventRecord.from_api(
            {
                "id": "abc_R20260302T080000",
                "status": "confirmed",
                "summary": "Standup",
                "start": {"dateTime": "2026-03-02T09:00:00+01:00", "timeZone": "Europe/Prague"},
                "end": {"date": "2026-03-03"},
                "recurringEventId": "abc",
                "attendees": [{"email": "bob@example.com", "displayName": "Bob", "responseStatus": "accepted"}],
                "reminders": {"useDefault": True},
                "sequence": 3,
                "colorId": "4",
            }
        )
        self.assertTrue(event.is_recurring_instance)
        self.assertEqual(event.start.time_zone, "Europe/Prague")
        self.assertEqual(event.end.date, "2026-03-03")
        self.assertEqual(event.attendees, [Attendee(email="bob@example.com", display_name="Bob", response_status="accepted")])
        self.assertEqual(event.sequence, 3)
        self.assertEqual(event.color_id, "4")

    def test_event_to_api_omits_unset_fields(self) -> None:
        payload = EventRecord(id="evt1", summary="Lunch").to_api()
        self.assertEqual(payload, {"id": "evt1", "status": "confirmed", "sequence": 0, "summary": "Lunch"})

    def test_event_defaults_when_fields_missing(self) -> None:
        event = EventRecord.from_api({"id": "evt1", "status": "cancelled"})
        self.assertTrue(event.is_cancelled)
        self.assertFalse(event.is_recurring_instance)
        self.assertIsNone(event.attendees)
        self.assertEqual(event.sequence, 0)

    def test_app_config_from_dict(self) -> None:
        config = AppConfig.from_dict(
            {
                "accounts": {"work": {"token_file": "tokens/work.json"}, "home": None},
                "pairs": [
                    {
                        "source_account": "work",
                        "source_calendar": "primary",
                        "destination_account": "home",
                        "destination_calendar": "primary",
                        "dry_run": "TRUE",
                        "summary_appendix": " (work) ",
                        "description_appendix": "\\nfrom work",
                        "maximum_events": -5,
                    }
                ],
                "sync": {"interval_seconds": 5, "sleep_seconds": 2},
            }
        )
        pair = config.pairs[0]
        self.assertEqual(pair.name, "sync.1")
        self.assertTrue(pair.dry_run)
        self.assertEqual(pair.summary_appendix, "(work)")
        self.assertEqual(pair.description_appendix, "\nfrom work")
        self.assertEqual(pair.maximum_events, 0)
        self.assertEqual(pair.sleep_seconds, 2.0)
        self.assertEqual(config.sync.interval_seconds, 30)
        self.assertEqual(config.accounts["home"].token_file, "credentials/home/token.json")
        config.validate()

    def test_validate_rejects_unknown_account(self) -> None:
        config = AppConfig.from_dict(
            {
                "accounts": {"work": {}},
                "pairs": [
                    {
                        "source_account": "work",
                        "source_calendar": "primary",
                        "destination_account": "home",
                        "destination_calendar": "primary",
                    }
                ],
            }
        )
        with self.assertRaises(ConfigurationError):
            config.validate()

    def test_pair_result_counts(self) -> None:
        result = PairResult(pair="sync.1")
        result.record(EventOutcome("a", SyncOperation.INSERT, "a", applied=True))
        result.record(EventOutcome("b", SyncOperation.DELETE, "b", applied=True))
        result.record(EventOutcome("c", SyncOperation.SKIPPED, reason="dry_run", planned=SyncOperation.UPDATE))
        self.assertEqual((result.inserted, result.deleted, result.skipped), (1, 1, 1))
        self.assertEqual(result.changes_applied, 2)


if __name__ == "__main__":
    unittest.main()
