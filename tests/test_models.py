"""Unit tests for webhook models and the event envelope."""

import json
from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError

from worklin_webhooks.exceptions import ValidationError as WebhookValidationError
from worklin_webhooks.models import (
    ALL_EVENT_TYPES,
    WORKSPACE_EVENT_TYPES,
    BlockEnvelope,
    DeliveryAttemptLog,
    DeliveryStatus,
    PageEnvelope,
    PageEventData,
    TestEnvelope,
    TestEventData,
    WebhookSubscription,
    WebhookUpdate,
    build_envelope,
    envelope_body,
    generate_id,
    parse_envelope,
)


class TestGenerateId:
    """Tests for the generate_id function."""

    def test_generates_unique_ids(self):
        """Each call should produce a unique ID."""
        ids = [generate_id("dlv") for _ in range(100)]
        assert len(ids) == len(set(ids))

    def test_consistent_format(self):
        """ID should be prefix_16hexchars."""
        prefix, suffix = generate_id("whk").split("_")
        assert prefix == "whk"
        assert len(suffix) == 16


class TestWebhookSubscription:
    """Tests for WebhookSubscription validation."""

    def make(self, **overrides):
        fields = {
            "workspace_id": "ws_1",
            "name": "CI",
            "url": "https://ci.example.com/hook",
            "events": ["page.created"],
            "secret": "s3cret",
        }
        fields.update(overrides)
        return WebhookSubscription(**fields)

    def test_defaults(self):
        """New webhooks should be enabled with a whk_ id and timestamps."""
        webhook = self.make()
        assert webhook.id.startswith("whk_")
        assert webhook.enabled is True
        assert webhook.created_at.tzinfo is not None

    @pytest.mark.parametrize(
        "url",
        ["ftp://example.com/hook", "not a url", "/relative/path", ""],
    )
    def test_rejects_non_http_urls(self, url):
        """Only absolute http(s) URLs should be accepted."""
        with pytest.raises(ValidationError):
            self.make(url=url)

    def test_accepts_http_and_keeps_spelling(self):
        """URL should be stored as given, without normalization."""
        webhook = self.make(url="http://localhost:8080/hook?x=1")
        assert webhook.url == "http://localhost:8080/hook?x=1"

    def test_rejects_empty_events(self):
        """Events must not be empty."""
        with pytest.raises(ValidationError):
            self.make(events=[])

    def test_rejects_unknown_event(self):
        """Events must be known event types."""
        with pytest.raises(ValidationError):
            self.make(events=["page.archived"])

    def test_rejects_test_event(self):
        """webhook.test is only sent on request and cannot be subscribed to."""
        with pytest.raises(ValidationError):
            self.make(events=["page.created", "webhook.test"])

    def test_accepts_every_workspace_event(self):
        webhook = self.make(events=WORKSPACE_EVENT_TYPES)
        assert webhook.events == WORKSPACE_EVENT_TYPES

    def test_dedupes_events_in_order(self):
        """Repeated events should be dropped, keeping first-seen order."""
        webhook = self.make(events=["block.updated", "page.created", "block.updated"])
        assert webhook.events == ["block.updated", "page.created"]

    def test_rejects_empty_name(self):
        """Name must not be empty."""
        with pytest.raises(ValidationError):
            self.make(name="")

    def test_subscribes_to(self):
        """subscribes_to requires enabled and event membership."""
        webhook = self.make(events=["page.created", "block.deleted"])
        assert webhook.subscribes_to("page.created")
        assert not webhook.subscribes_to("page.updated")

        disabled = self.make(events=["page.created"], enabled=False)
        assert not disabled.subscribes_to("page.created")

    def test_update_rejects_unknown_fields(self):
        """Partial updates should not accept unknown fields."""
        with pytest.raises(ValidationError):
            WebhookUpdate.model_validate({"workspace_id": "ws_2"})


class TestDeliveryAttemptLog:
    """Tests for DeliveryAttemptLog invariants."""

    def make(self, **overrides):
        fields = {
            "delivery_id": "dlv_1",
            "event_id": "evt_1",
            "webhook_id": "whk_1",
            "workspace_id": "ws_1",
            "event_type": "page.created",
            "status": DeliveryStatus.SUCCESS,
            "attempt": 1,
            "payload": "{}",
        }
        fields.update(overrides)
        return DeliveryAttemptLog(**fields)

    def test_retrying_requires_next_retry_at(self):
        """Retrying records must say when the next attempt is due."""
        with pytest.raises(ValidationError):
            self.make(status=DeliveryStatus.RETRYING, error_message="HTTP 500")

    def test_terminal_rejects_next_retry_at(self):
        """Success and failed records must not schedule another attempt."""
        with pytest.raises(ValidationError):
            self.make(status=DeliveryStatus.FAILED, next_retry_at=datetime.now(UTC))

    def test_success_rejects_error_message(self):
        """Success records carry no error."""
        with pytest.raises(ValidationError):
            self.make(error_message="boom")

    def test_attempt_is_one_indexed(self):
        """Attempt numbers start at 1."""
        with pytest.raises(ValidationError):
            self.make(attempt=0)

    def test_is_due(self):
        """is_due compares next_retry_at with the given time."""
        now = datetime.now(UTC)
        log = self.make(
            status=DeliveryStatus.RETRYING,
            error_message="HTTP 500",
            next_retry_at=now + timedelta(seconds=2),
        )
        assert not log.is_due(now)
        assert log.is_due(now + timedelta(seconds=2))
        assert not self.make().is_due(now)

    def test_terminal_status(self):
        """Only retrying is non-terminal."""
        assert DeliveryStatus.SUCCESS.is_terminal
        assert DeliveryStatus.FAILED.is_terminal
        assert not DeliveryStatus.RETRYING.is_terminal


class TestBuildEnvelope:
    """Tests for the tagged-union delivery envelope."""

    def test_all_event_types(self):
        """All page, block and test events should be known."""
        assert set(ALL_EVENT_TYPES) == {
            "page.created",
            "page.updated",
            "page.deleted",
            "block.created",
            "block.updated",
            "block.deleted",
            "webhook.test",
        }
        assert set(ALL_EVENT_TYPES) - set(WORKSPACE_EVENT_TYPES) == {"webhook.test"}

    def test_page_event_variant(self):
        """Page events should build a PageEnvelope."""
        envelope = build_envelope("ws_1", "page.created", {"pageId": "pg_1", "title": "Roadmap"})
        assert isinstance(envelope, PageEnvelope)
        assert envelope.data.page_id == "pg_1"
        assert envelope.workspace_id == "ws_1"

    def test_block_event_variant(self):
        """Block events should build a BlockEnvelope."""
        envelope = build_envelope(
            "ws_1", "block.updated", {"pageId": "pg_1", "blockId": "blk_1", "content": "hi"}
        )
        assert isinstance(envelope, BlockEnvelope)
        assert envelope.data.block_id == "blk_1"

    def test_test_event_variant(self):
        """webhook.test should build a TestEnvelope from a data model."""
        envelope = build_envelope(
            "ws_1", "webhook.test", TestEventData(webhook_id="whk_1", webhook_name="CI")
        )
        assert isinstance(envelope, TestEnvelope)
        body = json.loads(envelope.body())
        assert body["data"]["webhookId"] == "whk_1"
        assert body["data"]["message"] == "This is a test webhook from WorkLin"

    def test_unknown_event_type(self):
        """Unknown event types should raise the package ValidationError."""
        with pytest.raises(WebhookValidationError) as exc_info:
            build_envelope("ws_1", "page.archived", {"pageId": "pg_1"})
        assert exc_info.value.field == "event"

    def test_malformed_data(self):
        """Block events without a blockId should be rejected."""
        with pytest.raises(WebhookValidationError):
            build_envelope("ws_1", "block.created", {"pageId": "pg_1"})

    def test_accepts_snake_case_and_model_data(self):
        """Data may use field names or be passed as a model."""
        from_dict = build_envelope("ws_1", "page.deleted", {"page_id": "pg_1"}, timestamp=5)
        from_model = build_envelope(
            "ws_1", "page.deleted", PageEventData(page_id="pg_1"), timestamp=5
        )
        assert from_dict.body() == from_model.body()

    def test_wire_format(self):
        """Body should use camelCase, sorted keys and compact separators."""
        envelope = build_envelope(
            "ws_1", "page.created", {"pageId": "pg_1", "title": "Roadmap"}, timestamp=1700000000000
        )
        assert envelope_body(envelope) == (
            b'{"data":{"pageId":"pg_1","title":"Roadmap"},"event":"page.created",'
            b'"timestamp":1700000000000,"workspaceId":"ws_1"}'
        )

    def test_extra_data_is_kept(self):
        """Unknown data keys should be passed through to subscribers."""
        envelope = build_envelope("ws_1", "page.updated", {"pageId": "pg_1", "cover": "blue"})
        assert json.loads(envelope.body())["data"]["cover"] == "blue"

    def test_reparse_reproduces_bytes(self):
        """Parsing a body and serializing again should give identical bytes."""
        envelope = build_envelope(
            "ws_1",
            "block.created",
            {"pageId": "pg_1", "blockId": "blk_1", "type": "paragraph", "meta": {"z": 1, "a": "é"}},
        )
        body = envelope.body()
        assert envelope_body(parse_envelope(body)) == body
        assert envelope_body(parse_envelope(body.decode("utf-8"))) == body

    def test_parse_rejects_garbage(self):
        """parse_envelope should raise the package ValidationError."""
        with pytest.raises(WebhookValidationError):
            parse_envelope(b'{"event":"nope"}')
