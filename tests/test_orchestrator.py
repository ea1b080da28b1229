"""
CallLifecycleOrchestrator クラスのユニットテスト
"""

from unittest.mock import MagicMock

import pytest
import requests

from salescall.call_context import COURSE_HINTS
from salescall.call_store import InMemoryCallStore
from salescall.clients import UpstreamAPIError
from salescall.models import CallRecord, CallStatus
from salescall.orchestrator import (
    CallLifecycleOrchestrator,
    CallValidationError,
    duration_between,
)


def run_now(fn, *args):
    """書き戻しを同期的に実行"""
    fn(*args)


@pytest.fixture
def store():
    return InMemoryCallStore(ttl_seconds=3600)


@pytest.fixture
def crm_client():
    return MagicMock()


@pytest.fixture
def voice_client():
    client = MagicMock()
    client.create_call.return_value = {"id": "call-1"}
    return client


@pytest.fixture
def orchestrator(store, crm_client, voice_client):
    return CallLifecycleOrchestrator(store, crm_client, voice_client, run_in_background=run_now)


def end_of_call_event(call_id="call-1", record_id="rec-1", structured=None, **call_fields):
    call = {
        "id": call_id,
        "startedAt": "2026-02-09T10:00:00Z",
        "endedAt": "2026-02-09T10:03:05Z",
        "metadata": {"recordId": record_id} if record_id else {},
    }
    call.update(call_fields)
    if call_id is None:
        del call["id"]
    return {
        "message": {
            "type": "end-of-call-report",
            "call": call,
            "analysis": {
                "summary": "Customer agreed to enroll.",
                "structuredData": structured if structured is not None else {
                    "outcome": "ENROLLED",
                    "interestLevel": "high",
                },
            },
        }
    }


class TestDurationBetween:
    """duration_between() のテスト"""

    def test_seconds_between_timestamps(self):
        assert duration_between("2026-02-09T10:00:00Z", "2026-02-09T10:03:05Z") == 185

    def test_missing_timestamp(self):
        assert duration_between(None, "2026-02-09T10:03:05Z") is None
        assert duration_between("2026-02-09T10:00:00Z", "") is None

    def test_unparseable_timestamp(self):
        assert duration_between("yesterday", "2026-02-09T10:03:05Z") is None


class TestFetchLead:
    """fetch_lead() のテスト"""

    def test_normalizes_crm_record(self, orchestrator, crm_client):
        crm_client.get_record.return_value = {
            "data": {"Record": {"accountname": "Dana Cohen", "telephone1": "0521234567"}}
        }
        lead = orchestrator.fetch_lead("rec-1")

        crm_client.get_record.assert_called_once_with("rec-1")
        assert lead.record_id == "rec-1"
        assert lead.name == "Dana Cohen"
        assert lead.phone == "0521234567"

    def test_upstream_error_propagates(self, orchestrator, crm_client):
        crm_client.get_record.side_effect = UpstreamAPIError("Fireberry returned 404", status_code=404)
        with pytest.raises(UpstreamAPIError):
            orchestrator.fetch_lead("rec-1")


class TestStartCall:
    """start_call() のテスト"""

    def test_missing_phone(self, orchestrator, voice_client):
        with pytest.raises(CallValidationError) as exc_info:
            orchestrator.start_call({"name": "Dana"})
        assert exc_info.value.message == "phone is required"
        voice_client.create_call.assert_not_called()

    def test_invalid_phone(self, orchestrator, voice_client, store):
        with pytest.raises(CallValidationError) as exc_info:
            orchestrator.start_call({"phone": "not-a-number"})
        assert exc_info.value.message == "Invalid phone number: not-a-number"
        voice_client.create_call.assert_not_called()
        assert len(store) == 0

    def test_creates_call_and_record(self, orchestrator, voice_client, store):
        result = orchestrator.start_call({
            "recordId": "rec-1",
            "name": "Dana Cohen",
            "phone": "052-123-4567",
            "campaign": "Full Stack Intro",
            "city": "חיפה",
        })

        assert result == {"callId": "call-1", "status": "initiated"}

        kwargs = voice_client.create_call.call_args.kwargs
        assert kwargs["customer_number"] == "+972521234567"
        assert kwargs["customer_name"] == "Dana Cohen"
        assert "Dana" in kwargs["assistant_overrides"]["firstMessage"]
        assert kwargs["assistant_overrides"]["metadata"]["courseHint"] == COURSE_HINTS[2][1]
        assert kwargs["metadata"]["recordId"] == "rec-1"
        assert kwargs["metadata"]["phone"] == "+972521234567"

        record = store.get("call-1")
        assert record.status == CallStatus.INITIATED
        assert record.record_id == "rec-1"
        assert record.lead_name == "Dana Cohen"
        assert record.phone == "+972521234567"
        assert record.campaign == "Full Stack Intro"
        assert record.started_at

    def test_metadata_omits_missing_fields(self, orchestrator, voice_client):
        orchestrator.start_call({"phone": "0521234567"})
        metadata = voice_client.create_call.call_args.kwargs["metadata"]
        assert metadata == {"phone": "+972521234567"}

    def test_default_customer_name(self, orchestrator, voice_client):
        orchestrator.start_call({"phone": "0521234567"})
        assert voice_client.create_call.call_args.kwargs["customer_name"] == "ليد"

    def test_upstream_failure_does_not_create_record(self, orchestrator, voice_client, store):
        voice_client.create_call.side_effect = UpstreamAPIError("Vapi error: nope", status_code=400)
        with pytest.raises(UpstreamAPIError):
            orchestrator.start_call({"phone": "0521234567"})
        assert len(store) == 0

    def test_response_without_id(self, orchestrator, voice_client, store):
        voice_client.create_call.return_value = {}
        with pytest.raises(UpstreamAPIError) as exc_info:
            orchestrator.start_call({"phone": "0521234567"})
        assert exc_info.value.status_code == 502
        assert len(store) == 0


class TestGetStatus:
    """get_status() のテスト"""

    def test_ended_record_is_served_from_store(self, orchestrator, voice_client, store):
        """終了済みの通話は Vapi に問い合わせない"""
        store.merge("call-1", status=CallStatus.ENDED, outcome="ENROLLED", duration_seconds=185)
        view = orchestrator.get_status("call-1")

        voice_client.get_call.assert_not_called()
        assert view["status"] == "ended"
        assert view["outcome"] == "ENROLLED"
        assert view["durationSeconds"] == 185

    def test_queries_provider_for_active_call(self, orchestrator, voice_client, store):
        store.create(CallRecord(call_id="call-1", status=CallStatus.INITIATED))
        voice_client.get_call.return_value = {"status": "ringing"}

        view = orchestrator.get_status("call-1")

        assert view == {"callId": "call-1", "status": "ringing"}
        assert store.get("call-1").status == CallStatus.RINGING

    def test_provider_vocabulary_is_mapped(self, orchestrator, voice_client):
        voice_client.get_call.return_value = {"status": "queued"}
        assert orchestrator.get_status("call-1")["status"] == "initiated"

    def test_duration_from_provider_timestamps(self, orchestrator, voice_client):
        voice_client.get_call.return_value = {
            "status": "ended",
            "startedAt": "2026-02-09T10:00:00Z",
            "endedAt": "2026-02-09T10:01:00Z",
        }
        view = orchestrator.get_status("call-1")
        assert view["status"] == "ended"
        assert view["durationSeconds"] == 60

    def test_stored_end_wins_over_stale_provider_status(self, orchestrator, voice_client, store):
        """問い合わせ中に Webhook で終了した場合も ended を返す"""
        def finish_during_query(call_id):
            store.merge(call_id, status=CallStatus.ENDED)
            return {"status": "in-progress"}

        voice_client.get_call.side_effect = finish_during_query
        assert orchestrator.get_status("call-1")["status"] == "ended"

    def test_upstream_error_returns_unknown(self, orchestrator, voice_client):
        voice_client.get_call.side_effect = UpstreamAPIError("nope", status_code=404)
        assert orchestrator.get_status("call-1") == {"status": "unknown"}

    def test_transport_error_returns_unknown_with_message(self, orchestrator, voice_client, store):
        voice_client.get_call.side_effect = requests.ConnectionError("timed out")
        view = orchestrator.get_status("call-1")

        assert view["status"] == "unknown"
        assert "timed out" in view["error"]
        assert store.get("call-1") is None

    def test_missing_provider_status(self, orchestrator, voice_client, store):
        voice_client.get_call.return_value = {}
        assert orchestrator.get_status("call-1")["status"] == "unknown"
        assert store.get("call-1") is None

    @pytest.mark.parametrize("body", [
        [],
        "ringing",
        None,
        {"status": {"x": 1}},
        {"status": ["ringing"]},
        {"status": 3},
    ])
    def test_unexpected_provider_body_returns_unknown(self, orchestrator, voice_client, store, body):
        """オブジェクト以外の本文や文字列以外のステータスは unknown として扱う"""
        voice_client.get_call.return_value = body
        assert orchestrator.get_status("call-1") == {"status": "unknown"}
        assert store.get("call-1") is None


class TestStatusUpdate:
    """status-update イベントのテスト"""

    def test_updates_status(self, orchestrator, store):
        orchestrator.handle_webhook({
            "message": {"type": "status-update", "status": "in-progress", "call": {"id": "call-1"}}
        })
        assert store.get("call-1").status == CallStatus.IN_PROGRESS

    def test_missing_call_id_is_noop(self, orchestrator, store):
        orchestrator.handle_webhook({"message": {"type": "status-update", "status": "ringing"}})
        assert len(store) == 0

    def test_missing_status_is_noop(self, orchestrator, store):
        orchestrator.handle_webhook({"message": {"type": "status-update", "call": {"id": "call-1"}}})
        assert len(store) == 0

    def test_non_string_status_is_noop(self, orchestrator, store):
        orchestrator.handle_webhook({
            "message": {"type": "status-update", "status": {"x": 1}, "call": {"id": "call-1"}}
        })
        assert len(store) == 0

    def test_non_object_call_is_noop(self, orchestrator, store):
        orchestrator.handle_webhook({
            "message": {"type": "status-update", "status": "ringing", "call": "call-1"}
        })
        assert len(store) == 0

    def test_does_not_revert_ended(self, orchestrator, store):
        orchestrator.handle_webhook(end_of_call_event())
        orchestrator.handle_webhook({
            "message": {"type": "status-update", "status": "in-progress", "call": {"id": "call-1"}}
        })
        assert store.get("call-1").status == CallStatus.ENDED


class TestEndOfCall:
    """end-of-call-report イベントのテスト"""

    def test_records_outcome(self, orchestrator, store):
        orchestrator.handle_webhook(end_of_call_event(structured={
            "outcome": "ENROLLED",
            "interestLevel": "high",
            "mainObjection": "price",
            "customerBackground": "student",
            "whatsappSent": True,
            "hasBDIIssue": False,
        }))
        record = store.get("call-1")

        assert record.status == CallStatus.ENDED
        assert record.outcome == "ENROLLED"
        assert record.interest_level == "high"
        assert record.main_objection == "price"
        assert record.customer_background == "student"
        assert record.whatsapp_sent is True
        assert record.has_bdi_issue is False
        assert record.summary == "Customer agreed to enroll."
        assert record.duration_seconds == 185
        assert record.ended_at == "2026-02-09T10:03:05Z"

    def test_missing_analysis_uses_defaults(self, orchestrator, store, crm_client):
        orchestrator.handle_webhook({
            "message": {"type": "end-of-call-report", "call": {"id": "call-1"}}
        })
        record = store.get("call-1")

        assert record.outcome == "UNKNOWN"
        assert record.interest_level == "none"
        assert record.duration_seconds == 0
        assert record.whatsapp_sent is False
        assert record.has_bdi_issue is False
        crm_client.update_record.assert_not_called()

    @pytest.mark.parametrize("structured", ["ENROLLED", ["ENROLLED"], 1])
    def test_non_object_structured_data_uses_defaults(self, orchestrator, store, crm_client, structured):
        """structuredData が辞書でない場合も既定値で記録し、書き戻す"""
        orchestrator.handle_webhook(end_of_call_event(structured=structured))
        record = store.get("call-1")

        assert record.status == CallStatus.ENDED
        assert record.outcome == "UNKNOWN"
        assert record.interest_level == "none"
        assert record.whatsapp_sent is False
        assert record.duration_seconds == 185
        crm_client.update_record.assert_called_once()
        assert crm_client.update_record.call_args.args[0] == "rec-1"

    def test_non_object_analysis_and_metadata(self, orchestrator, store, crm_client):
        event = end_of_call_event(metadata="rec-1")
        event["message"]["analysis"] = "done"
        orchestrator.handle_webhook(event)
        record = store.get("call-1")

        assert record.status == CallStatus.ENDED
        assert record.outcome == "UNKNOWN"
        assert record.summary == ""
        crm_client.update_record.assert_not_called()

    def test_writes_back_to_crm(self, orchestrator, crm_client):
        orchestrator.handle_webhook(end_of_call_event())

        crm_client.update_record.assert_called_once()
        record_id, patch = crm_client.update_record.call_args.args
        assert record_id == "rec-1"
        assert patch["status"] == "נרשם"
        assert patch["pcfStatusDetails"] == "עבר תשלום ראשון בהצלחה"
        assert "3:05" in patch["description"]
        assert "Customer agreed to enroll." in patch["description"]

    def test_record_id_from_store_when_metadata_missing(self, orchestrator, store, crm_client):
        store.create(CallRecord(call_id="call-1", status=CallStatus.INITIATED, record_id="rec-7"))
        orchestrator.handle_webhook(end_of_call_event(record_id=None))

        assert crm_client.update_record.call_args.args[0] == "rec-7"

    def test_no_record_id_skips_write_back(self, orchestrator, crm_client, store):
        orchestrator.handle_webhook(end_of_call_event(record_id=None))
        crm_client.update_record.assert_not_called()
        assert store.get("call-1").status == CallStatus.ENDED

    def test_missing_call_id_is_ignored(self, orchestrator, store, crm_client):
        orchestrator.handle_webhook(end_of_call_event(call_id=None))
        assert len(store) == 0
        crm_client.update_record.assert_not_called()

    def test_write_back_runs_in_background(self, store, crm_client, voice_client):
        background = MagicMock()
        orchestrator = CallLifecycleOrchestrator(
            store, crm_client, voice_client, run_in_background=background
        )
        orchestrator.handle_webhook(end_of_call_event())

        background.assert_called_once()
        assert background.call_args.args[0] == orchestrator.write_back
        assert background.call_args.args[1] == "rec-1"
        crm_client.update_record.assert_not_called()


class TestWriteBack:
    """write_back() のテスト"""

    def _write_back(self, orchestrator, outcome="NOT_INTERESTED"):
        return orchestrator.write_back("rec-1", outcome, "low", None, False, False, "", 30)

    def test_success(self, orchestrator, crm_client):
        assert self._write_back(orchestrator) is True
        patch = crm_client.update_record.call_args.args[1]
        assert patch["status"] == "לא רלוונטי"

    def test_unknown_outcome_adds_note_only(self, orchestrator, crm_client):
        assert self._write_back(orchestrator, outcome="VOICEMAIL") is True
        patch = crm_client.update_record.call_args.args[1]
        assert "status" not in patch
        assert patch["pcfStatusDetails"] == "AI call: VOICEMAIL"

    def test_rejected_update_returns_false(self, orchestrator, crm_client):
        crm_client.update_record.side_effect = UpstreamAPIError(
            "Fireberry returned 400", status_code=400, body="bad field"
        )
        assert self._write_back(orchestrator) is False

    def test_transport_error_returns_false(self, orchestrator, crm_client):
        crm_client.update_record.side_effect = requests.ConnectionError("down")
        assert self._write_back(orchestrator) is False

    def test_failure_does_not_touch_call_record(self, orchestrator, crm_client, store):
        crm_client.update_record.side_effect = requests.ConnectionError("down")
        orchestrator.handle_webhook(end_of_call_event())
        assert store.get("call-1").status == CallStatus.ENDED
        assert store.get("call-1").outcome == "ENROLLED"


class TestHandleWebhook:
    """handle_webhook() の振り分けテスト"""

    @pytest.mark.parametrize("event", [
        None,
        [],
        {},
        {"message": "text"},
        {"message": {"type": "transcript"}},
        {"message": {}},
    ])
    def test_malformed_or_unknown_events_are_ignored(self, orchestrator, store, event):
        orchestrator.handle_webhook(event)
        assert len(store) == 0
