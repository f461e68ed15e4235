"""Tests for the immutable Snapshot."""

import copy
import json
import pickle

import pytest

from eligibility_scoring.exceptions import ImmutableSnapshotError
from eligibility_scoring.snapshot import Snapshot


@pytest.fixture
def snapshot():
    return Snapshot(
        {
            "income": 5000,
            "name": "Aisha",
            "verified": True,
            "profile": {"employment_status": "employed", "address": {"city": "Kuala Lumpur"}},
            "loans": [{"amount": 1000}, {"amount": 2500}],
            "nickname": None,
        },
        {"source": "dict"},
    )


class TestLookup:
    def test_plain_key(self, snapshot):
        assert snapshot.get("income") == 5000
        assert snapshot["name"] == "Aisha"

    def test_dotted_path(self, snapshot):
        assert snapshot.get("profile.employment_status") == "employed"
        assert snapshot.get("profile.address.city") == "Kuala Lumpur"

    def test_list_index_path(self, snapshot):
        assert snapshot.get("loans.1.amount") == 2500

    def test_missing_returns_default(self, snapshot):
        assert snapshot.get("missing") is None
        assert snapshot.get("profile.missing", "n/a") == "n/a"
        assert snapshot.get("loans.5.amount", 0) == 0

    def test_none_value_is_present(self, snapshot):
        assert snapshot.has("nickname")
        assert snapshot.get("nickname", "x") is None

    def test_has(self, snapshot):
        assert snapshot.has("profile.address")
        assert not snapshot.has("profile.phone")

    def test_getitem_missing_raises_key_error(self, snapshot):
        with pytest.raises(KeyError):
            snapshot["missing"]

    def test_attribute_access(self, snapshot):
        assert snapshot.income == 5000
        assert snapshot.unknown_field is None

    def test_mapping_protocol(self, snapshot):
        assert len(snapshot) == 6
        assert "income" in snapshot
        assert "profile.employment_status" in snapshot
        assert set(snapshot) == {"income", "name", "verified", "profile", "loans", "nickname"}

    def test_literal_dotted_key_wins(self):
        s = Snapshot({"a.b": 1, "a": {"b": 2}})
        assert s.get("a.b") == 1


class TestImmutability:
    def test_setitem_raises(self, snapshot):
        with pytest.raises(ImmutableSnapshotError):
            snapshot["income"] = 1

    def test_delitem_raises(self, snapshot):
        with pytest.raises(ImmutableSnapshotError):
            del snapshot["income"]

    def test_setattr_raises(self, snapshot):
        with pytest.raises(ImmutableSnapshotError):
            snapshot.income = 1

    def test_error_is_type_error(self, snapshot):
        with pytest.raises(TypeError):
            snapshot["income"] = 1

    def test_source_data_is_copied(self):
        source = {"profile": {"city": "Ipoh"}}
        s = Snapshot(source)
        source["profile"]["city"] = "Penang"
        assert s.get("profile.city") == "Ipoh"

    def test_all_returns_copy(self, snapshot):
        data = snapshot.all()
        data["profile"]["employment_status"] = "unemployed"
        assert snapshot.get("profile.employment_status") == "employed"

    def test_nested_values_are_copies(self, snapshot):
        snapshot.get("profile")["employment_status"] = "fired"
        snapshot["loans"].append({"amount": 1})
        snapshot.get("loans.0")["amount"] = 0
        assert snapshot.get("profile.employment_status") == "employed"
        assert snapshot.get("loans.0.amount") == 1000
        assert len(snapshot.get("loans")) == 2

    def test_callbacks_get_copies(self, snapshot):
        snapshot.filter(lambda value, key: isinstance(value, dict) and value.clear())
        assert snapshot.get("profile.address.city") == "Kuala Lumpur"


class TestTransformations:
    def test_only(self, snapshot):
        result = snapshot.only(["income", "name"])
        assert set(result) == {"income", "name"}
        assert len(snapshot) == 6

    def test_except(self, snapshot):
        result = snapshot.except_(["profile", "loans"])
        assert "profile" not in result
        assert "income" in result

    def test_filter(self, snapshot):
        result = snapshot.filter(lambda value, key: key.startswith("n"))
        assert set(result) == {"name", "nickname"}

    def test_transform(self):
        s = Snapshot({"a": 1, "b": 2})
        assert s.transform(lambda value, key: value * 10).all() == {"a": 10, "b": 20}
        assert s.all() == {"a": 1, "b": 2}

    def test_merge(self, snapshot):
        merged = snapshot.merge({"income": 9000, "bonus": 100})
        assert merged.get("income") == 9000
        assert merged.get("bonus") == 100
        assert snapshot.get("income") == 5000

    def test_only_then_merge_round_trip(self, snapshot):
        assert snapshot.only(["income"]).merge({"income": 42}).get("income") == 42

    def test_where_key_matches(self):
        s = Snapshot({"loan_amount": 1, "loan_term": 2, "income": 3})
        assert set(s.where_key_matches(r"^loan_")) == {"loan_amount", "loan_term"}

    def test_typed_field_views(self, snapshot):
        assert set(snapshot.numeric_fields()) == {"income"}
        assert set(snapshot.string_fields()) == {"name"}
        assert set(snapshot.boolean_fields()) == {"verified"}

    def test_metadata_carried_over(self, snapshot):
        derived = snapshot.only(["income"])
        assert derived.metadata["source"] == "dict"
        assert derived.metadata["field_count"] == 1


class TestExport:
    def test_metadata(self, snapshot):
        meta = snapshot.metadata
        assert meta["source"] == "dict"
        assert meta["field_count"] == 6
        assert "captured_at" in meta

    def test_to_json(self, snapshot):
        payload = json.loads(snapshot.to_json())
        assert payload["data"]["income"] == 5000
        assert payload["metadata"]["source"] == "dict"

    def test_fingerprint_ignores_metadata(self):
        a = Snapshot({"x": 1, "y": 2}, {"source": "a"})
        b = Snapshot({"y": 2, "x": 1}, {"source": "b"})
        assert a.fingerprint() == b.fingerprint()
        assert a.fingerprint() != Snapshot({"x": 2, "y": 2}).fingerprint()

    def test_equality(self):
        assert Snapshot({"x": 1}) == Snapshot({"x": 1})
        assert Snapshot({"x": 1}) == {"x": 1}
        assert Snapshot({"x": 1}) != Snapshot({"x": 2})

    def test_copy_and_pickle(self, snapshot):
        assert copy.deepcopy(snapshot) is snapshot
        restored = pickle.loads(pickle.dumps(snapshot))
        assert restored == snapshot
        assert restored.metadata["source"] == "dict"
