"""Tests for PII masking in audit entries and admin-facing payloads."""
from bizagent.models.audit import AuditEvent
from bizagent.models.domain import new_id
from bizagent.services.audit import record_audit, recent_events
from bizagent.services.privacy import contains_pii, mask_pii, mask_value, scrub_text


class TestMasking:

    def test_mask_value_keeps_edges(self):
        assert mask_value("9876543210") == "98***10"
        assert mask_value("1234") == "***"

    def test_scrub_phone_and_email(self):
        text = scrub_text("call 9876543210 or mail ravi@example.com")
        assert "9876543210" not in text
        assert "ravi@example.com" not in text
        assert "98***10" in text

    def test_sensitive_keys_masked_whole(self):
        masked = mask_pii({"phone": "+91 98765 43210", "name": "Ravi"})
        assert masked["phone"] == "+9***10"
        assert masked["name"] == "Ravi"

    def test_generated_identifiers_pass_through(self):
        # A uuid whose last group is all digits still looks like a phone number
        refund_id = "0b9c6a4e-1f2d-4c3b-9a8e-987654321012"
        data = {"request_id": new_id(), "refund_id": refund_id, "nested": [{"email": "a@b.co"}]}
        masked = mask_pii(data)
        assert masked["request_id"] == data["request_id"]
        assert masked["refund_id"] == refund_id
        assert masked["nested"][0]["email"] == "a@***co"

    def test_customer_quoted_ids_are_scrubbed(self):
        masked = mask_pii({"order_id": "9876543210", "reminder_id": "ref 9876543210"})
        assert masked["order_id"] == "98***10"
        assert masked["reminder_id"] == "ref 98***10"

    def test_contains_pii(self):
        assert contains_pii("PAN ABCDE1234F")
        assert not contains_pii("order 50 kg rice")


class TestAuditMasking:

    def test_audit_detail_is_masked(self, db_session):
        record_audit(db_session, "request_created", "cust-1", {"note": "reach me at 9876543210"})

        entry = db_session.query(AuditEvent).one()
        assert entry.detail_json == {"note": "reach me at 98***10"}

    def test_recent_events_newest_first(self, db_session):
        for i in range(3):
            record_audit(db_session, f"event_{i}", "cust-1")
        record_audit(db_session, "other", "cust-2")

        events = recent_events(db_session, limit=10, actor_id="cust-1")
        assert [e.event_type for e in events] == ["event_2", "event_1", "event_0"]
        assert len(recent_events(db_session, limit=2)) == 2
