import threading
import time

import pytest
import yaml

from bazaruto.errors import InvalidInputError, RulesValidationError
from bazaruto.utils.business_rules import SECTION_NAMES, PricingRules
from bazaruto.utils import rules_manager as rules_module
from bazaruto.utils.rules_manager import DEFAULT_RULES_PATH, RulesManager, load_business_rules


def test_missing_file_falls_back_to_defaults(tmp_path):
    manager = RulesManager(tmp_path / "absent.yml", persist=False)

    config = manager.get_config()
    assert config.version == "1.0.0"
    assert config.pricing.tax_rate == 0.08
    assert config.fraud_detection.enabled is True


def test_repository_rules_file_is_valid():
    rules = load_business_rules(DEFAULT_RULES_PATH)

    assert rules.fraud_detection.factor_weights["claim_timing"] == 0.20
    assert rules.claim_processing.approval_rules.auto_approve_max_amount > 0
    assert set(rules.model_dump()) >= set(SECTION_NAMES)


def test_missing_rules_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_business_rules(tmp_path / "absent.yml")


def test_get_section(rules_manager):
    assert isinstance(rules_manager.get_section("pricing"), PricingRules)
    with pytest.raises(InvalidInputError):
        rules_manager.get_section("marketing")


def test_update_section_replaces_section(rules_manager):
    before = rules_manager.get_metadata()["last_updated"]

    rules_manager.update_section("pricing", {"tax_rate": 0.1, "market_rate": 0.0})

    pricing = rules_manager.get_section("pricing")
    assert pricing.tax_rate == 0.1
    assert pricing.market_rate == 0.0
    assert pricing.base_rates["auto"] == 15
    assert rules_manager.get_metadata()["last_updated"] >= before


def test_invalid_update_leaves_snapshot_untouched(rules_manager):
    snapshot = rules_manager.get_config()

    with pytest.raises(RulesValidationError) as excinfo:
        rules_manager.update_section(
            "risk_assessment", {"level_thresholds": {"medium": 70, "high": 60, "very_high": 80}}
        )
    assert any("level_thresholds" in p for p in excinfo.value.problems)

    with pytest.raises(RulesValidationError):
        rules_manager.update_section("pricing", {"tax_rate": -1})

    assert rules_manager.get_config() is snapshot


def test_every_problem_is_reported(rules_manager):
    document = rules_manager.get_config().model_dump()
    document["pricing"]["base_rates"] = {"auto": -1}
    document["compliance"]["warning_threshold"] = 99
    document["compliance"]["pass_threshold"] = 10

    with pytest.raises(RulesValidationError) as excinfo:
        rules_manager.validate_config(document)

    problems = excinfo.value.problems
    assert "pricing.base_rates must define a default rate" in problems
    assert "pricing.base_rates.auto must be non-negative (got -1.0)" in problems
    assert "compliance: warning_threshold exceeds pass_threshold" in problems


def test_unknown_section_update_is_rejected(rules_manager):
    with pytest.raises(InvalidInputError):
        rules_manager.update_section("marketing", {})


def test_persisted_update_survives_reload(tmp_path):
    path = tmp_path / "rules" / "business_rules.yml"
    manager = RulesManager(path, persist=True)

    manager.update_section("fraud_detection", {"enabled": False})

    assert path.exists()
    with open(path, encoding="utf-8") as f:
        assert yaml.safe_load(f)["fraud_detection"]["enabled"] is False
    reloaded = RulesManager(path, persist=False)
    assert reloaded.get_section("fraud_detection").enabled is False
    assert reloaded.load_config().fraud_detection.enabled is False


def test_invalid_rules_file_is_rejected(tmp_path):
    path = tmp_path / "business_rules.yml"
    path.write_text("pricing:\n  tax_rate: -3\n", encoding="utf-8")

    with pytest.raises(RulesValidationError):
        load_business_rules(path)


def test_concurrent_section_updates_are_all_kept(rules_manager, monkeypatch):
    check = rules_module.check_rules

    def slow_check(rules):
        time.sleep(0.05)
        return check(rules)

    monkeypatch.setattr(rules_module, "check_rules", slow_check)
    updates = [
        ("fraud_detection", {"enabled": False}),
        ("pricing", {"tax_rate": 0.1}),
    ]
    threads = [threading.Thread(target=rules_manager.update_section, args=u) for u in updates]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    config = rules_manager.get_config()
    assert config.fraud_detection.enabled is False
    assert config.pricing.tax_rate == 0.1


def test_reload_without_file_keeps_current_rules(tmp_path):
    manager = RulesManager(tmp_path / "absent.yml", persist=False)
    manager.update_section("pricing", {"tax_rate": 0.12})

    reloaded = manager.load_config()

    assert reloaded.pricing.tax_rate == 0.12
    assert manager.get_section("pricing").tax_rate == 0.12


def test_reload_with_invalid_file_keeps_current_rules(tmp_path):
    path = tmp_path / "business_rules.yml"
    manager = RulesManager(path, persist=True)
    manager.update_section("pricing", {"tax_rate": 0.12})
    snapshot = manager.get_config()
    path.write_text("pricing:\n  tax_rate: -3\n", encoding="utf-8")

    with pytest.raises(RulesValidationError):
        manager.load_config()
    assert manager.get_config() is snapshot
