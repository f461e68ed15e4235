"""Tests for plugin loading and built-in derived fields."""

from datetime import date, datetime, timezone

import pytest

from eligibility_scoring.plugin import (
    BUILTIN_DERIVATIONS,
    coerce_datetime,
    created_months_ago,
    created_years_ago,
    days_between,
    email_verified,
    load_plugin,
    months_between,
)

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class TestCoerceDatetime:
    def test_aware_datetime_unchanged(self):
        assert coerce_datetime(NOW) is NOW

    def test_naive_taken_as_utc(self):
        assert coerce_datetime(datetime(2024, 1, 1)) == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_date(self):
        assert coerce_datetime(date(2024, 1, 1)) == datetime(2024, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("text", [
        "2024-01-01",
        "2024-01-01T00:00:00Z",
        "2024-01-01 00:00:00",
        "01/01/2024",
    ])
    def test_strings(self, text):
        assert coerce_datetime(text) == datetime(2024, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", [None, "", "not a date", 42, ["2024-01-01"]])
    def test_unparseable(self, value):
        assert coerce_datetime(value) is None


class TestIntervals:
    def test_days_between_is_absolute(self):
        earlier = datetime(2024, 5, 1, tzinfo=timezone.utc)
        assert days_between(earlier, NOW) == 31
        assert days_between(NOW, earlier) == 31

    def test_months_between(self):
        assert months_between(datetime(2024, 1, 1, tzinfo=timezone.utc), NOW) == 5
        assert months_between(datetime(2024, 1, 15, tzinfo=timezone.utc), NOW) == 4
        assert months_between(NOW, datetime(2024, 1, 1, tzinfo=timezone.utc)) == 5


class TestDerivations:
    def test_created_days_ago(self):
        derive = BUILTIN_DERIVATIONS["created_days_ago"]
        assert derive({"created_at": "2024-05-22"}, NOW) == 10

    def test_missing_date_gives_none(self):
        assert BUILTIN_DERIVATIONS["created_days_ago"]({}, NOW) is None
        assert created_months_ago({"created_at": "garbage"}, NOW) is None
        assert created_years_ago({}, NOW) is None

    def test_created_years_ago(self):
        assert created_years_ago({"created_at": "2021-06-01"}, NOW) == 3
        assert created_years_ago({"created_at": "2021-06-02"}, NOW) == 2

    def test_email_verified(self):
        assert email_verified({"email_verified_at": "2024-01-01"}, NOW) is True
        assert email_verified({"email_verified_at": None}, NOW) is False
        assert email_verified({}, NOW) is None

    def test_activity_uses_updated_at(self):
        attrs = {"updated_at": datetime(2024, 5, 30, 12, 0, tzinfo=timezone.utc)}
        assert BUILTIN_DERIVATIONS["last_activity_days"](attrs, NOW) == 2
        assert BUILTIN_DERIVATIONS["updated_days_ago"](attrs, NOW) == 2


class TestLoadPlugin:
    def test_colon_syntax(self):
        func = load_plugin("eligibility_scoring.plugin:coerce_datetime")
        assert func is coerce_datetime

    def test_dot_syntax(self):
        func = load_plugin("eligibility_scoring.plugin.months_between")
        assert func is months_between

    def test_nonexistent_module(self):
        with pytest.raises(ModuleNotFoundError):
            load_plugin("nonexistent.module:func")

    def test_nonexistent_attribute(self):
        with pytest.raises(AttributeError):
            load_plugin("eligibility_scoring.plugin:nope")

    def test_no_module_part(self):
        with pytest.raises(ValueError):
            load_plugin("justaname")

    def test_not_callable(self):
        with pytest.raises(TypeError):
            load_plugin("eligibility_scoring.plugin:DATE_FORMATS")
