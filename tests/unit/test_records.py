# =============================================================================
# tests/unit/test_records.py
# Unit Tests for Record Types and SyncPacket
# =============================================================================

import pytest

from tracker_core.models import (
    Attachment,
    AttachmentKind,
    ConversionPlan,
    Customer,
    Organization,
    PacketType,
    ProjectPlan,
    RetentionPlan,
    SyncPacket,
    User,
    UserRole,
    load_record,
    new_id,
    plan_from_dict,
)


class TestDocumentLayout:
    """Records serialize to camelCase documents"""

    def test_organization_uses_camel_case_keys(self):
        """Multi-word fields are written in camelCase"""
        org = Organization(id="org_1", name="Acme", admin_email="a@acme.com", created_at="2024-01-01T00:00:00")

        doc = org.to_dict()

        assert doc == {
            "id": "org_1",
            "name": "Acme",
            "adminEmail": "a@acme.com",
            "isApproved": False,
            "createdAt": "2024-01-01T00:00:00",
        }

    def test_none_fields_are_omitted(self):
        """Optional fields that are unset do not appear in the document"""
        user = User(id="u1", email="u@acme.com", organization_id="org_1")

        doc = user.to_dict()

        assert "password" not in doc
        assert "parentId" not in doc
        assert "hierarchy" not in doc
        assert doc["role"] == "DSE"

    def test_unknown_keys_survive_a_load_save_cycle(self):
        """Keys the record type does not model are written back unchanged"""
        doc = {"id": "c1", "organizationId": "org_1", "createdBy": "u1", "legacyCode": "X-9"}

        customer = Customer.from_dict(doc)

        assert customer.extra == {"legacyCode": "X-9"}
        assert customer.to_dict()["legacyCode"] == "X-9"

    def test_nested_hierarchy_is_parsed(self):
        """The hierarchy block becomes a UserHierarchy"""
        user = User.from_dict({
            "id": "u1",
            "email": "se@acme.com",
            "organizationId": "org_1",
            "role": "SALES_ENG",
            "hierarchy": {"rsmEmail": "rsm@acme.com", "dseEmails": ["d@acme.com"]},
        })

        assert user.role == UserRole.SALES_ENG
        assert user.hierarchy.manager_email == "rsm@acme.com"
        assert user.hierarchy.dse_emails == ["d@acme.com"]

    def test_non_mapping_document_raises(self):
        with pytest.raises(TypeError):
            Organization.from_dict(["not", "a", "document"])

    def test_load_record_rejects_unknown_collection(self):
        with pytest.raises(ValueError):
            load_record("invoices", {"id": "x"})

    def test_new_id_uses_prefix(self):
        first, second = new_id("org"), new_id("org")

        assert first.startswith("org_")
        assert first != second


class TestPlanVariants:
    """The type tag selects the plan variant"""

    @pytest.mark.parametrize("tag,cls", [
        ("NEW PROJECT", ProjectPlan),
        ("CONVERSION", ConversionPlan),
        ("RETENTION", RetentionPlan),
    ])
    def test_plan_from_dict_selects_variant(self, tag, cls):
        plan = plan_from_dict({"id": "p1", "customerId": "c1", "organizationId": "o1", "type": tag})

        assert isinstance(plan, cls)

    def test_missing_type_defaults_to_project(self):
        plan = plan_from_dict({"id": "p1", "customerId": "c1", "organizationId": "o1"})

        assert isinstance(plan, ProjectPlan)

    def test_merge_with_new_type_switches_variant(self, sample_plan):
        """Changing the tag through a merge rebuilds the right variant"""
        merged = sample_plan.merged({"type": "CONVERSION", "unitPrice": 42.0})

        assert isinstance(merged, ConversionPlan)
        assert merged.unit_price == 42.0
        assert merged.project_name == "Axle line"

    def test_attachment_kind_is_stored_as_type(self):
        attachment = Attachment(name="site.jpg", data="data:image/jpeg;base64,AAAA", kind=AttachmentKind.PHOTO)

        assert attachment.to_dict() == {"name": "site.jpg", "data": "data:image/jpeg;base64,AAAA", "type": "photo"}
        assert not attachment.is_remote

    def test_url_attachment_is_remote(self):
        assert Attachment(name="a.pdf", data="https://blobs.local/a.pdf").is_remote


class TestSyncPacket:
    """SyncPacket construction and wire form"""

    def test_build_selects_type_from_record(self, sample_customer, sample_plan, se_user):
        assert SyncPacket.build(sample_customer, "se@acme.com").type == PacketType.CUSTOMER
        assert SyncPacket.build(sample_plan, "se@acme.com").type == PacketType.PLAN
        assert SyncPacket.build(se_user, "se@acme.com").type == PacketType.USER_REG

    def test_organizations_are_not_transported(self, acme_org):
        with pytest.raises(TypeError):
            SyncPacket.build(acme_org, "admin@acme.com")

    def test_fingerprint_identifies_packet(self, sample_customer):
        packet = SyncPacket.build(sample_customer, "se@acme.com")
        packet.timestamp = "2024-05-01T10:00:00+00:00"

        assert packet.fingerprint == "CUSTOMER:cust_1:se@acme.com:2024-05-01T10:00:00+00:00"

    def test_from_dict_restores_payload(self, sample_plan):
        packet = SyncPacket.build(sample_plan, "se@acme.com")

        restored = SyncPacket.from_dict(packet.to_dict())

        assert restored.payload == sample_plan
        assert restored.collection == "plans"
        assert restored.record_id == "plan_1"

    def test_from_dict_rejects_unknown_type(self):
        with pytest.raises(ValueError):
            SyncPacket.from_dict({"type": "INVOICE", "data": {}, "timestamp": "t", "sender": "s"})
