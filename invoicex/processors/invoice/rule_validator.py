"""
Declarative validation rules for extracted data

Rules come from vendor templates. A failed rule produces a readable error
message; it never stops the document from being saved.
"""

import re
import logging
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Union

from invoicex.models.invoice import ValidationOutcome, ValidationRule

logger = logging.getLogger(__name__)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_min(value: Any, limit: Any) -> Optional[str]:
    if _is_number(value) and value < float(limit):
        return "{field} must be at least {value}"
    return None


def _check_max(value: Any, limit: Any) -> Optional[str]:
    if _is_number(value) and value > float(limit):
        return "{field} must be at most {value}"
    return None


def _check_pattern(value: Any, pattern: Any) -> Optional[str]:
    if isinstance(value, str) and not re.search(str(pattern), value):
        return "{field} must match pattern {value}"
    return None


def _check_required(value: Any, _: Any) -> Optional[str]:
    if not value:
        return "{field} is required"
    return None


def _check_length(value: Any, length: Any) -> Optional[str]:
    if isinstance(value, str) and len(value) != int(length):
        return "{field} must be exactly {value} characters"
    return None


RULE_CHECKS: Dict[str, Callable[[Any, Any], Optional[str]]] = {
    'min': _check_min,
    'max': _check_max,
    'pattern': _check_pattern,
    'required': _check_required,
    'length': _check_length,
}


def apply_validation_rules(
    data: Mapping[str, Any],
    rules: Optional[Iterable[Union[ValidationRule, Dict[str, Any]]]]
) -> ValidationOutcome:
    """
    Evaluate validation rules against extracted data

    Unknown rule kinds and rules whose comparison value is unusable (for
    example an invalid regex) are logged and skipped.

    Args:
        data: Mapped extraction payload
        rules: Rules as models or plain dicts

    Returns:
        ValidationOutcome with every failed rule's message
    """
    errors = []
    for raw_rule in rules or []:
        rule = raw_rule if isinstance(raw_rule, ValidationRule) else ValidationRule.model_validate(raw_rule)
        check = RULE_CHECKS.get(rule.rule)
        if check is None:
            logger.warning(f"Unknown validation rule '{rule.rule}' for field '{rule.field}'")
            continue

        try:
            failure = check(data.get(rule.field), rule.value)
        except (TypeError, ValueError, re.error) as e:
            logger.warning(
                f"Skipping {rule.rule} rule for '{rule.field}': invalid value {rule.value!r} ({e})"
            )
            continue

        if failure:
            errors.append(rule.message or failure.format(field=rule.field, value=rule.value))

    return ValidationOutcome(valid=not errors, errors=errors)
