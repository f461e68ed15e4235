"""Tests for settings and criteria loading."""

from pathlib import Path

import pytest

from eligibility_scoring.config import (
    EngineSettings,
    build_settings,
    criteria_from_dict,
    load_criteria,
    load_default_settings,
    load_settings,
)
from eligibility_scoring.criteria import GroupLogic
from eligibility_scoring.exceptions import ConfigurationError
from eligibility_scoring.scorer import ScoringMethod

FIXTURES = Path(__file__).parent / "fixtures"


class TestLoadSettings:
    def test_default_settings(self):
        settings = load_default_settings()
        assert settings.pass_threshold == 65
        assert settings.scoring_method is ScoringMethod.WEIGHTED
        assert settings.rule_weights["critical"] == 100
        assert "Approved" in settings.decisions["pass"]
        assert settings.extraction.sensitive_fields == ["password", "remember_token", "api_token"]
        assert settings.cache.ttl_seconds == 3600
        assert settings.workflow.excellent_threshold == 90
        assert settings.derivations == {}

    def test_default_presets_valid(self):
        settings = load_default_settings()
        assert set(settings.presets) == {"loan_approval", "scholarship_eligibility", "job_application"}
        for name, preset in settings.presets.items():
            criteria = criteria_from_dict(preset, default_slug=name)
            assert criteria.rules

    def test_custom_settings(self):
        settings = load_settings(FIXTURES / "test_settings.yaml")
        assert settings.pass_threshold == 50
        assert settings.scoring_method is ScoringMethod.AVERAGE
        assert settings.rule_weights["critical"] == 10
        assert settings.rule_weights["high"] == 75
        assert settings.decisions == {"pass": ["Approved"], "fail": ["Rejected"]}
        assert settings.extraction.sensitive_fields == ["password", "ssn"]
        assert settings.extraction.include_timestamps is True
        assert settings.cache.max_entries == 10
        assert settings.audit.events == ["evaluation_completed", "rule_created"]
        assert settings.derivations == {"tenure_years": "eligibility_scoring.plugin:created_years_ago"}
        assert list(settings.presets) == ["adult"]

    def test_empty_mapping_gives_defaults(self):
        settings = build_settings({})
        assert settings == EngineSettings()


class TestSettingsValidation:
    @pytest.mark.parametrize("data", [
        {"scoring": {"pass_threshold": 120}},
        {"scoring": {"pass_threshold": -1}},
        {"scoring": {"method": "median"}},
        {"rule_weights": {"urgent": 10}},
        {"rule_weights": {"low": -5}},
        {"decisions": {"pass": []}},
        {"cache": {"max_entries": 0}},
        {"cache": {"ttl_seconds": 0}},
        {"cache": {"size": 10}},
        {"extraction": {"include_everything": True}},
        {"derivations": {"score": 5}},
        {"derivations": ["a"]},
    ])
    def test_invalid(self, data):
        with pytest.raises(ConfigurationError):
            build_settings(data)

    def test_not_a_mapping(self):
        with pytest.raises(ConfigurationError):
            build_settings(["scoring"])

    def test_invalid_preset_named(self):
        data = {"presets": {"broken": {"name": "Broken", "rules": [{"field": "a", "operator": "~"}]}}}
        with pytest.raises(ConfigurationError, match="broken"):
            build_settings(data)

    def test_decision_string_accepted(self):
        settings = build_settings({"decisions": {"pass": "Yes"}})
        assert settings.decisions["pass"] == ["Yes"]
        assert "Rejected" in settings.decisions["fail"]


class TestLoadCriteria:
    def test_list_file(self):
        loan, card = load_criteria(FIXTURES / "loan_criteria.yaml")
        assert loan.slug == "loan_approval"
        assert [r.rule_id for r in loan.rules] == ["income", "credit"]
        assert card.decision_thresholds == {90.0: "Platinum", 70.0: "Gold"}
        assert card.groups[1].logic is GroupLogic.MIN
        assert card.groups[1].rule_ids() == ["a", "b", "c"]

    def test_single_mapping(self, tmp_path):
        path = tmp_path / "single.yaml"
        path.write_text("name: Adult\nrules:\n  - {field: age, operator: '>=', value: 18}\n")
        [criteria] = load_criteria(path)
        assert criteria.slug == "adult"

    def test_top_level_list(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- name: One\n- name: Two\n")
        assert [c.slug for c in load_criteria(path)] == ["one", "two"]

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        with pytest.raises(ConfigurationError):
            load_criteria(path)

    def test_duplicate_slugs(self, tmp_path):
        path = tmp_path / "dupes.yaml"
        path.write_text("- name: Same\n- name: same\n")
        with pytest.raises(ConfigurationError, match="Duplicate"):
            load_criteria(path)

    def test_error_names_criteria(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(
            "name: Bad Card\n"
            "groups:\n"
            "  - name: g\n"
            "    logic: min\n"
            "    min_required: 5\n"
            "    rules:\n"
            "      - {field: a, operator: exists}\n"
        )
        with pytest.raises(ConfigurationError, match="Bad Card|bad_card"):
            load_criteria(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_criteria(tmp_path / "nope.yaml")


class TestCriteriaFromDict:
    def test_default_slug(self):
        criteria = criteria_from_dict({"name": "Adult Check"}, default_slug="adult")
        assert criteria.slug == "adult"

    def test_explicit_slug_kept(self):
        criteria = criteria_from_dict({"name": "x", "slug": "mine"}, default_slug="adult")
        assert criteria.slug == "mine"

    def test_not_a_mapping(self):
        with pytest.raises(ConfigurationError):
            criteria_from_dict("loan")
