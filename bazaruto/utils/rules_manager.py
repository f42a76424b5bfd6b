"""
Hot-reloadable business-rules manager.

Readers call ``get_config()`` and keep the returned snapshot for the length of
one operation. Writers validate a complete candidate and swap it in under a
lock, so a rejected candidate never becomes visible.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import ValidationError

from bazaruto.errors import InvalidInputError, RulesValidationError
from bazaruto.utils.business_rules import SECTION_NAMES, BusinessRules, default_business_rules
from bazaruto.utils.timeutil import utcnow

logger = logging.getLogger(__name__)

DEFAULT_RULES_PATH = Path(__file__).parent.parent.parent / "config" / "business_rules.yml"


def _format_validation_error(e: ValidationError) -> List[str]:
    return [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]


def _ordered(problems: List[str], label: str, values: Dict[str, float]) -> None:
    names = list(values)
    for lower, upper in zip(names, names[1:]):
        if values[lower] > values[upper]:
            problems.append(f"{label}: {lower} ({values[lower]}) must not exceed {upper} ({values[upper]})")


def _non_negative(problems: List[str], label: str, weights: Dict[str, float]) -> None:
    for name, weight in weights.items():
        if weight < 0:
            problems.append(f"{label}.{name} must be non-negative (got {weight})")


def check_rules(rules: BusinessRules) -> List[str]:
    """Cross-field invariants pydantic cannot express. Returns every problem found."""
    problems: List[str] = []

    fraud = rules.fraud_detection
    _non_negative(problems, "fraud_detection.factor_weights", fraud.factor_weights)
    if fraud.factor_weights and sum(fraud.factor_weights.values()) <= 0:
        problems.append("fraud_detection.factor_weights must not all be zero")
    _ordered(problems, "fraud_detection.risk_thresholds", fraud.risk_thresholds.model_dump())
    _ordered(problems, "fraud_detection.confidence_thresholds", fraud.confidence_thresholds.model_dump())
    if fraud.behavioral_rules.min_description_length > fraud.behavioral_rules.max_description_length:
        problems.append("fraud_detection.behavioral_rules: min_description_length exceeds max_description_length")
    if fraud.document_rules.min_file_size > fraud.document_rules.max_file_size:
        problems.append("fraud_detection.document_rules: min_file_size exceeds max_file_size")
    if fraud.amount_rules.high_value_threshold > fraud.amount_rules.very_high_value_threshold:
        problems.append("fraud_detection.amount_rules: high_value_threshold exceeds very_high_value_threshold")

    risk = rules.risk_assessment
    _non_negative(problems, "risk_assessment.factor_weights", risk.factor_weights)
    _ordered(problems, "risk_assessment.level_thresholds", risk.level_thresholds.model_dump())
    _ordered(problems, "risk_assessment.approval_thresholds", risk.approval_thresholds.model_dump())

    pricing = rules.pricing
    if "default" not in pricing.base_rates:
        problems.append("pricing.base_rates must define a default rate")
    _non_negative(problems, "pricing.base_rates", pricing.base_rates)
    _non_negative(problems, "pricing.discount_rates", pricing.discount_rates)

    _ordered(problems, "underwriting.decision_thresholds", rules.underwriting.decision_thresholds.model_dump())

    commission = rules.commission
    for category, rate in commission.default_rates.items():
        if not commission.min_rate <= rate <= commission.max_rate:
            problems.append(
                f"commission.default_rates.{category} must be within [{commission.min_rate}, {commission.max_rate}]"
            )

    if rules.compliance.warning_threshold > rules.compliance.pass_threshold:
        problems.append("compliance: warning_threshold exceeds pass_threshold")

    approval = rules.claim_processing.approval_rules
    _ordered(
        problems,
        "claim_processing.approval_rules",
        {
            "auto_approve_max_amount": approval.auto_approve_max_amount,
            "senior_review_threshold": approval.senior_review_threshold,
            "executive_approval_threshold": approval.executive_approval_threshold,
        },
    )
    _ordered(
        problems,
        "claim_processing.approval_rules",
        {"fraud_review_score": approval.fraud_review_score, "fraud_decline_score": approval.fraud_decline_score},
    )
    return problems


def load_business_rules(config_path: Optional[Path] = None) -> BusinessRules:
    """
    Load and validate business rules from a YAML file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        RulesValidationError: If the document doesn't match the schema or its invariants
    """
    if config_path is None:
        config_path = DEFAULT_RULES_PATH

    if not config_path.exists():
        raise FileNotFoundError(f"Business rules file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    try:
        rules = BusinessRules(**data)
    except ValidationError as e:
        logger.error("Business rules validation error in %s: %s", config_path, e)
        raise RulesValidationError(_format_validation_error(e)) from e

    problems = check_rules(rules)
    if problems:
        logger.error("Business rules in %s failed validation: %s", config_path, problems)
        raise RulesValidationError(problems)

    logger.info("Successfully loaded business rules v%s from %s", rules.version, config_path)
    return rules


class RulesManager:
    def __init__(self, config_path: Optional[Path] = None, persist: bool = True) -> None:
        self._path = config_path
        self._persist = persist
        self._lock = threading.Lock()
        # Serializes writers across read, merge, validate, swap and save
        self._write_lock = threading.RLock()
        self._config = self._read_or_default()

    def _read_or_default(self) -> BusinessRules:
        path = self._path or DEFAULT_RULES_PATH
        try:
            return load_business_rules(path)
        except FileNotFoundError:
            logger.warning("Business rules file %s not found; using built-in defaults", path)
            return default_business_rules()

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #
    def get_config(self) -> BusinessRules:
        return self._config

    def get_section(self, name: str):
        if name not in SECTION_NAMES:
            raise InvalidInputError(f"unknown rules section: {name}")
        return getattr(self._config, name)

    def get_metadata(self) -> Dict[str, Any]:
        config = self._config
        return {"version": config.version, "last_updated": config.last_updated}

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #
    def validate_config(self, candidate: Union[BusinessRules, Dict[str, Any]]) -> BusinessRules:
        """Return the parsed candidate or raise RulesValidationError listing every problem."""
        if isinstance(candidate, BusinessRules):
            rules = candidate.model_copy(deep=True)
        else:
            try:
                rules = BusinessRules(**candidate)
            except ValidationError as e:
                raise RulesValidationError(_format_validation_error(e)) from e
        problems = check_rules(rules)
        if problems:
            raise RulesValidationError(problems)
        return rules

    def update_config(self, candidate: Union[BusinessRules, Dict[str, Any]]) -> BusinessRules:
        with self._write_lock:
            rules = self.validate_config(candidate)
            rules.last_updated = utcnow()
            with self._lock:
                self._config = rules
            logger.info("Business rules updated to v%s", rules.version)
            if self._persist:
                self.save_config()
            return rules

    def update_section(self, name: str, data: Dict[str, Any]) -> BusinessRules:
        if name not in SECTION_NAMES:
            raise InvalidInputError(f"unknown rules section: {name}")
        with self._write_lock:
            document = self._config.model_dump()
            document[name] = data
            return self.update_config(document)

    def load_config(self) -> BusinessRules:
        """
        Re-read the rules file.

        A missing file keeps the current snapshot (admin updates included); an
        invalid file keeps it too and raises RulesValidationError.
        """
        path = self._path or DEFAULT_RULES_PATH
        with self._write_lock:
            try:
                rules = load_business_rules(path)
            except FileNotFoundError:
                logger.warning("Business rules file %s not found; keeping current rules", path)
                return self._config
            with self._lock:
                self._config = rules
            return rules

    def save_config(self) -> None:
        path = self._path or DEFAULT_RULES_PATH
        with self._write_lock:
            config = self._config
            document = config.model_dump(mode="json")
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    yaml.safe_dump(document, f, sort_keys=False)
                os.replace(tmp, path)
            except OSError:
                if os.path.exists(tmp):
                    os.remove(tmp)
                raise
        logger.info("Saved business rules v%s to %s", config.version, path)
