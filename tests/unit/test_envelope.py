# =============================================================================
# tests/unit/test_envelope.py
# Unit Tests for the Envelope Codec
# =============================================================================

import json

import pytest

from tracker_core.errors import ConfigMissingError, DecodeFailureError
from tracker_core.models import (
    Competitor,
    ConversionPlan,
    Customer,
    PacketType,
    ProjectPlan,
    RetentionPlan,
    SyncPacket,
    User,
    UserHierarchy,
    UserRole,
)
from tracker_core.sync.envelope import EnvelopeCodec


class TestEnvelopeEncoding:
    """Encrypt and decrypt sync packets"""

    @pytest.mark.parametrize("record", [
        ProjectPlan(id="plan_1", customer_id="cust_1", organization_id="org_acme",
                    project_name="Axle line", status="Open", value_lakhs=12.5),
        ConversionPlan(id="plan_2", customer_id="cust_1", organization_id="org_acme",
                       existing_competitor="Rival", unit_price=450.0, monthly_qty=120),
        RetentionPlan(id="plan_3", customer_id="cust_1", organization_id="org_acme",
                      competitor_name="Rival"),
        RetentionPlan(id="plan_4", customer_id="cust_1", organization_id="org_acme",
                      unit_price=99.5, monthly_qty=40, solution_type="Regrind"),
        Customer(id="cust_1", organization_id="org_acme", created_by="user_se", name="Bolt Works",
                 own_share=40.0, competitors=[Competitor(name="X", share=30.0), Competitor(name="Y")]),
        User(id="user_se", email="se@acme.com", organization_id="org_acme", role=UserRole.SALES_ENG,
             hierarchy=UserHierarchy(rsm_email="rsm@acme.com", se_emails=["se@acme.com"],
                                     dealer_emails=["dealer@acme.com"], dse_emails=["dse1@acme.com", "dse2@acme.com"])),
    ], ids=["project", "conversion", "retention-empty-numbers", "retention", "customer", "user-reg"])
    def test_decode_restores_packet(self, codec, record):
        packet = SyncPacket.build(record, "se@acme.com")

        restored = codec.decode(codec.encode(packet))

        assert restored == packet
        assert type(restored.payload) is type(record)

    def test_envelope_hides_payload(self, codec, sample_customer):
        envelope = codec.encode(SyncPacket.build(sample_customer, "se@acme.com"))

        assert "Bolt Works" not in envelope
        assert "cust_1" not in envelope

    def test_canonical_form_is_sorted_and_compact(self, sample_customer):
        packet = SyncPacket.build(sample_customer, "se@acme.com")

        text = EnvelopeCodec.canonical(packet)

        assert ", " not in text and ": " not in text
        assert text == json.dumps(json.loads(text), sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    def test_missing_secret_raises(self):
        with pytest.raises(ConfigMissingError):
            EnvelopeCodec("")


class TestEnvelopeRejection:
    """decode never raises"""

    @pytest.mark.parametrize("garbage", [
        "",
        "hello world",
        "gAAAAABnot-a-real-token",
        None,
        12345,
        b"\xff\xfe",
    ])
    def test_foreign_text_decodes_to_none(self, codec, garbage):
        assert codec.decode(garbage) is None

    def test_other_secret_cannot_decode(self, codec, sample_customer):
        envelope = EnvelopeCodec("someone-else").encode(SyncPacket.build(sample_customer, "x@acme.com"))

        assert codec.decode(envelope) is None

    def test_tampered_envelope_is_rejected(self, codec, sample_customer):
        envelope = codec.encode(SyncPacket.build(sample_customer, "x@acme.com"))
        tampered = envelope[:-6] + ("A" if envelope[-6] != "A" else "B") + envelope[-5:]

        assert codec.decode(tampered) is None

    def test_strict_decode_reports_message_id(self, codec):
        with pytest.raises(DecodeFailureError) as exc_info:
            codec.decode_strict("hello world", message_id="msg7")

        assert exc_info.value.code == "DECODE_001"
        assert exc_info.value.details["message_id"] == "msg7"


class TestSubjectFraming:
    """Subject line carries only tag, type and timestamp"""

    def test_subject_round_trip(self, codec, sample_customer):
        packet = SyncPacket.build(sample_customer, "se@acme.com")

        subject = codec.subject_for(packet)

        assert subject.startswith("[ST_SYNC] CUSTOMER ")
        assert codec.parse_subject(subject) == (PacketType.CUSTOMER, packet.timestamp)
        assert "Bolt Works" not in subject

    @pytest.mark.parametrize("subject", [None, "", "Lunch?", "[ST_SYNC] INVOICE 2024", "[OTHER] PLAN 2024"])
    def test_untagged_subjects_are_rejected(self, codec, subject):
        assert codec.parse_subject(subject) is None

    def test_search_query_filters_on_tag(self, codec):
        assert codec.search_query() == 'subject:"[ST_SYNC]"'
