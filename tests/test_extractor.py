"""Tests for the Extractor."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from eligibility_scoring.extractor import ExtractionSettings, Extractor, source_fields
from eligibility_scoring.snapshot import Snapshot

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def extractor():
    return Extractor(clock=lambda: NOW)


@pytest.fixture
def applicant():
    return {
        "id": 42,
        "name": "Aisha",
        "annual_income": 60000,
        "password": "hunter2",
        "created_at": "2024-01-01",
        "profile": {"employment_status": "employed", "api_token": "secret"},
        "orders": [
            {"amount": 100, "placed_at": "2024-05-01"},
            {"amount": 300, "placed_at": "2024-05-21"},
        ],
    }


@dataclass
class Account:
    id: int
    balance: float
    opened_at: datetime
    tags: list = field(default_factory=list)


class Customer:
    def __init__(self, name, account=None):
        self.name = name
        self.account = account
        self._internal = "hidden"


class TestSourceFields:
    def test_mapping(self):
        assert source_fields({"a": 1}) == {"a": 1}

    def test_dataclass(self):
        account = Account(1, 10.0, NOW)
        assert source_fields(account) == {"id": 1, "balance": 10.0, "opened_at": NOW, "tags": []}

    def test_object_skips_private(self):
        assert source_fields(Customer("Ben")) == {"name": "Ben", "account": None}

    def test_unsupported(self):
        with pytest.raises(TypeError):
            source_fields(42)


class TestAttributes:
    def test_scalars_copied(self, extractor, applicant):
        snapshot = extractor.extract(applicant)
        assert isinstance(snapshot, Snapshot)
        assert snapshot["name"] == "Aisha"
        assert snapshot["annual_income"] == 60000

    def test_sensitive_fields_removed(self, extractor, applicant):
        snapshot = extractor.extract(applicant)
        assert "password" not in snapshot
        assert "api_token" not in snapshot["profile"]

    def test_sensitive_fields_kept_when_disabled(self, applicant):
        settings = ExtractionSettings(exclude_sensitive_fields=False)
        snapshot = Extractor(settings, clock=lambda: NOW).extract(applicant)
        assert snapshot["password"] == "hunter2"

    def test_datetimes_formatted(self, extractor):
        snapshot = extractor.extract(Account(1, 10.0, datetime(2024, 1, 2, 3, 4, 5)))
        assert snapshot["opened_at"] == "2024-01-02 03:04:05"

    def test_metadata(self, extractor, applicant):
        snapshot = extractor.extract(applicant, metadata={"purpose": "loan"})
        assert snapshot.metadata["source"] == "dict"
        assert snapshot.metadata["source_key"] == 42
        assert snapshot.metadata["purpose"] == "loan"

    def test_keys_sorted(self, extractor):
        snapshot = extractor.extract({"b": 1, "a": 2})
        assert list(snapshot) == ["a", "b"]


class TestDerived:
    def test_timestamp_derivations(self, extractor, applicant):
        snapshot = extractor.extract(applicant)
        assert snapshot["created_days_ago"] == 152
        assert snapshot["account_age_days"] == 152
        assert snapshot["created_months_ago"] == 5
        assert snapshot["created_years_ago"] == 0

    def test_absent_dates_leave_fields_out(self, extractor):
        snapshot = extractor.extract({"name": "Ben"})
        assert "created_days_ago" not in snapshot
        assert "email_verified" not in snapshot

    def test_timestamps_disabled(self, applicant):
        settings = ExtractionSettings(include_timestamps=False)
        snapshot = Extractor(settings, clock=lambda: NOW).extract({**applicant, "email_verified_at": None})
        assert "created_days_ago" not in snapshot
        assert snapshot["email_verified"] is False

    def test_computed_disabled(self, applicant):
        settings = ExtractionSettings(include_computed_fields=False)
        snapshot = Extractor(settings, clock=lambda: NOW).extract(applicant)
        assert "created_days_ago" not in snapshot

    def test_custom_derivation(self, extractor):
        extractor.add_derivation("has_name", lambda attrs, now: bool(attrs.get("name")))
        assert extractor.extract({"name": "Ben"})["has_name"] is True


class TestRelationships:
    def test_single_record_nested(self, extractor, applicant):
        snapshot = extractor.extract(applicant)
        assert snapshot["profile"] == {"employment_status": "employed"}
        assert snapshot["profile_exists"] is True
        assert snapshot.get("profile.employment_status") == "employed"

    def test_object_relation(self, extractor):
        customer = Customer("Ben", account=Account(7, 250.0, NOW))
        snapshot = extractor.extract(customer)
        assert snapshot["account_exists"] is True
        assert snapshot["account.balance"] == 250.0
        assert snapshot.metadata["source"] == "Customer"

    def test_to_many_aggregates(self, extractor, applicant):
        snapshot = extractor.extract(applicant)
        assert "orders" not in snapshot
        assert snapshot["orders_count"] == 2
        assert snapshot["orders_exists"] is True
        assert snapshot["orders_amount_sum"] == 400
        assert snapshot["orders_amount_avg"] == 200.0
        assert snapshot["orders_amount_min"] == 100
        assert snapshot["orders_amount_max"] == 300
        assert snapshot["orders_placed_at_latest"] == "2024-05-21 00:00:00"
        assert snapshot["orders_placed_at_earliest"] == "2024-05-01 00:00:00"
        assert snapshot["orders_placed_at_latest_days_ago"] == 11

    def test_declared_relations_default_when_absent(self):
        settings = ExtractionSettings(to_one=["spouse"], to_many=["loans"])
        snapshot = Extractor(settings, clock=lambda: NOW).extract({"name": "Chen"})
        assert snapshot["spouse_exists"] is False
        assert snapshot["loans_count"] == 0
        assert snapshot["loans_exists"] is False

    def test_declared_to_many_empty_list(self):
        settings = ExtractionSettings(to_many=["loans"])
        snapshot = Extractor(settings, clock=lambda: NOW).extract({"loans": []})
        assert "loans" not in snapshot
        assert snapshot["loans_count"] == 0

    def test_undeclared_empty_list_counted(self, extractor):
        snapshot = extractor.extract({"loans": []})
        assert snapshot["loans_count"] == 0
        assert snapshot["loans_exists"] is False

    def test_scalar_list_counted_and_kept(self, extractor):
        snapshot = extractor.extract({"tags": ["vip", "new"]})
        assert snapshot["tags"] == ["vip", "new"]
        assert snapshot["tags_count"] == 2
        assert snapshot["tags_exists"] is True

    def test_declared_to_many_skips_non_records(self):
        settings = ExtractionSettings(to_many=["tags", "loans"])
        snapshot = Extractor(settings, clock=lambda: NOW).extract({
            "tags": ["vip", "new"],
            "loans": [{"amount": 10}, None, {"amount": 5}],
        })
        assert snapshot["tags_count"] == 2
        assert snapshot["loans_count"] == 3
        assert snapshot["loans_amount_sum"] == 15

    def test_mixed_decimal_and_float_amounts(self, extractor):
        snapshot = extractor.extract({"loans": [{"amount": Decimal("10")}, {"amount": 2.5}]})
        assert snapshot["loans_amount_sum"] == 12.5
        assert snapshot["loans_amount_min"] == 2.5
        assert snapshot["loans_amount_max"] == 10.0
        assert snapshot["loans_amount_avg"] == 6.25

    def test_relationships_disabled(self, applicant):
        settings = ExtractionSettings(include_relationships=False)
        snapshot = Extractor(settings, clock=lambda: NOW).extract(applicant)
        assert "profile" not in snapshot
        assert "orders_count" not in snapshot

    def test_depth_limit(self):
        settings = ExtractionSettings(max_relationship_depth=1)
        data = {"a": {"b": {"c": 1}, "x": 2}}
        snapshot = Extractor(settings, clock=lambda: NOW).extract(data)
        assert snapshot["a"] == {"b": None, "x": 2}


class TestMappingsAndComputed:
    def test_field_mappings(self, extractor, applicant):
        extractor.set_field_mappings({"annual_income": "income", "missing": "ignored"})
        snapshot = extractor.extract(applicant)
        assert snapshot["income"] == 60000
        assert "annual_income" not in snapshot
        assert "ignored" not in snapshot

    def test_relationship_mappings(self, extractor, applicant):
        extractor.set_relationship_mappings({"profile": {"employment_status": "employment"}})
        extractor.add_relationship_mapping("spouse", {"name": "spouse_name"})
        snapshot = extractor.extract(applicant)
        assert snapshot["employment"] == "employed"
        assert snapshot["spouse_name"] is None

    def test_computed_fields_see_earlier_stages(self, extractor, applicant):
        extractor.set_field_mappings({"annual_income": "income"})
        extractor.add_computed_field("monthly_income", lambda source, data: data["income"] / 12)
        assert extractor.extract(applicant)["monthly_income"] == 5000

    def test_computed_field_errors_propagate(self, extractor):
        extractor.add_computed_field("broken", lambda source, data: 1 / 0)
        with pytest.raises(ZeroDivisionError):
            extractor.extract({"a": 1})

    def test_custom_stage(self, extractor):
        extractor.add_stage(lambda source, data: {**data, "stage": "ran"})
        assert extractor.extract({})["stage"] == "ran"

    def test_properties_are_copies(self, extractor):
        extractor.set_field_mappings({"a": "b"})
        extractor.field_mappings["c"] = "d"
        assert extractor.field_mappings == {"a": "b"}
