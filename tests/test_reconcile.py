"""
Tests for the reconciliation engine.

Tests cover:
- New-message events updating ledger and directory together
- Status events matching sent records
- Unknown ids, duplicates and malformed sub-events
- Payload-level parse errors
"""

import logging
import threading

import pytest

from conftest import message_payload, status_payload
from wa_relay.directory import ContactDirectory
from wa_relay.errors import WebhookParseError
from wa_relay.ledger import MessageLedger
from wa_relay.models import MEDIA_PLACEHOLDER, DeliveryStatus, Direction
from wa_relay.reconcile import ReconciliationEngine


@pytest.fixture
def ledger():
    return MessageLedger(clock=lambda: 1700000500000)


@pytest.fixture
def directory():
    return ContactDirectory()


@pytest.fixture
def engine(ledger, directory):
    return ReconciliationEngine(ledger, directory, threading.Lock(), clock=lambda: 1700000500000)


class TestNewMessageEvents:
    """Inbound messages append to the ledger and update the directory."""

    def test_message_event_creates_record_and_contact(self, engine, ledger, directory):
        report = engine.apply(message_payload("15557654321", "wamid.1", body="hello"))

        assert report.messages == 1
        [record] = ledger.list_for("15557654321")
        assert record.direction == Direction.RECEIVED
        assert record.text == "hello"
        assert record.timestamp == 1700000000000
        assert record.provider_message_id == "wamid.1"
        assert record.is_new is True

        contact = directory.get("15557654321")
        assert contact.unread_count == 1
        assert contact.last_message_text == "hello"
        assert contact.last_message_time == 1700000000000

    def test_second_message_increments_unread(self, engine, directory):
        engine.apply(message_payload("15557654321", "wamid.1", body="hello"))
        engine.apply(message_payload("15557654321", "wamid.2", body="again", timestamp="1700000060"))

        assert directory.get("15557654321").unread_count == 2

    def test_media_message_uses_placeholder(self, engine, ledger):
        engine.apply(message_payload("15557654321", "wamid.1"))

        assert ledger.list_for("15557654321")[0].text == MEDIA_PLACEHOLDER

    def test_profile_name_names_new_contact(self, engine, directory):
        engine.apply(message_payload("15557654321", "wamid.1", body="hi", profile_name="Alice"))

        assert directory.get("15557654321").display_name == "Alice"

    def test_missing_timestamp_uses_local_clock(self, engine, ledger):
        payload = message_payload("15557654321", "wamid.1", body="hi")
        del payload["entry"][0]["changes"][0]["value"]["messages"][0]["timestamp"]

        engine.apply(payload)

        assert ledger.list_for("15557654321")[0].timestamp == 1700000500000

    def test_redelivered_message_is_recorded_once(self, engine, ledger, directory):
        payload = message_payload("15557654321", "wamid.1", body="hello")

        engine.apply(payload)
        report = engine.apply(payload)

        assert report.duplicates == 1
        assert report.messages == 0
        assert len(ledger.list_for("15557654321")) == 1
        assert directory.get("15557654321").unread_count == 1

    def test_reconcile_log_carries_ledger_size(self, engine, caplog):
        caplog.set_level(logging.INFO, logger="wa_relay.reconcile")

        engine.apply(message_payload("15557654321", "wamid.1", body="hello"))
        engine.apply(message_payload("15557654321", "wamid.2", body="again"))

        sizes = [r.ledger_size for r in caplog.records if hasattr(r, "ledger_size")]
        assert sizes == [1, 2]


class TestStatusEvents:
    """Status callbacks update delivery status only."""

    def test_status_updates_matching_sent_record(self, engine, ledger, directory):
        first = ledger.append_sent("15551234567", "one", "wamid.out1")
        second = ledger.append_sent("15551234567", "two", "wamid.out2")

        report = engine.apply(status_payload(("wamid.out2", "delivered")))

        assert report.statuses == 1
        assert second.delivery_status == DeliveryStatus.DELIVERED
        assert first.delivery_status == DeliveryStatus.SENT
        assert directory.list() == []

    def test_statuses_apply_in_batch_order(self, engine, ledger):
        record = ledger.append_sent("15551234567", "one", "wamid.out1")

        engine.apply(status_payload(("wamid.out1", "delivered"), ("wamid.out1", "read")))

        assert record.delivery_status == DeliveryStatus.READ

    def test_failed_status(self, engine, ledger):
        record = ledger.append_sent("15551234567", "one", "wamid.out1")

        engine.apply(status_payload(("wamid.out1", "failed")))

        assert record.delivery_status == DeliveryStatus.FAILED

    def test_unknown_id_is_not_an_error(self, engine, ledger):
        record = ledger.append_sent("15551234567", "one", "wamid.out1")

        report = engine.apply(status_payload(("wamid.unknown", "read")))

        assert report.unmatched == 1
        assert report.statuses == 0
        assert record.delivery_status == DeliveryStatus.SENT

    def test_status_after_received_message(self, engine, ledger):
        engine.apply(message_payload("15557654321", "wamid.1", body="hello"))

        engine.apply(status_payload(("wamid.1", "delivered")))

        assert ledger.find_by_provider_message_id("wamid.1").delivery_status == DeliveryStatus.DELIVERED

    def test_unrecognized_status_is_skipped(self, engine, ledger):
        record = ledger.append_sent("15551234567", "one", "wamid.out1")

        report = engine.apply(status_payload(("wamid.out1", "deleted")))

        assert report.skipped == 1
        assert record.delivery_status == DeliveryStatus.SENT


class TestMalformedPayloads:
    """Malformed sub-events are skipped without aborting the payload."""

    def test_bad_event_does_not_block_the_rest(self, engine, ledger):
        payload = message_payload("15557654321", "wamid.1", body="hello")
        messages = payload["entry"][0]["changes"][0]["value"]["messages"]
        messages.insert(0, {"id": "wamid.0", "text": {"body": "no sender"}})
        messages.insert(1, "not an object")
        messages.append({"from": "15557654321", "id": "wamid.2", "timestamp": "soon"})

        report = engine.apply(payload)

        assert report.skipped == 3
        assert report.messages == 1
        assert [r.provider_message_id for r in ledger.list_for("15557654321")] == ["wamid.1"]

    def test_batches_of_batches(self, engine, ledger):
        first = message_payload("15550000001", "wamid.a", body="a")
        second = message_payload("15550000002", "wamid.b", body="b")
        third = message_payload("15550000003", "wamid.c", body="c")
        payload = {
            "object": "whatsapp_business_account",
            "entry": [
                {"changes": first["entry"][0]["changes"] + second["entry"][0]["changes"]},
                "garbage",
                {"changes": third["entry"][0]["changes"]},
            ],
        }

        report = engine.apply(payload)

        assert report.messages == 3
        assert report.skipped == 1

    def test_other_fields_are_ignored(self, engine, ledger):
        payload = message_payload("15557654321", "wamid.1", body="hello")
        payload["entry"][0]["changes"][0]["field"] = "account_update"

        report = engine.apply(payload)

        assert report.messages == 0
        assert report.skipped == 0
        assert ledger.list_for("15557654321") == []

    def test_other_object_types_are_ignored(self, engine, ledger):
        payload = message_payload("15557654321", "wamid.1", body="hello")
        payload["object"] = "page"

        report = engine.apply(payload)

        assert report.ignored is True
        assert ledger.list_for("15557654321") == []

    def test_change_without_events(self, engine):
        payload = {
            "object": "whatsapp_business_account",
            "entry": [{"changes": [{"field": "messages", "value": {"messaging_product": "whatsapp"}}]}],
        }

        report = engine.apply(payload)

        assert report.as_log_data() == {
            "messages": 0, "statuses": 0, "unmatched": 0, "duplicates": 0, "skipped": 0,
        }

    def test_non_object_payload_raises(self, engine):
        with pytest.raises(WebhookParseError):
            engine.apply(["not", "an", "object"])

    def test_missing_entry_list_raises(self, engine):
        with pytest.raises(WebhookParseError):
            engine.apply({"object": "whatsapp_business_account"})
