"""Trust-boundary validation for inbound review requests."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from .config import ValidationConfig
from .contracts import AttributeStatus, ReviewType
from .errors import ValidationError

logger = logging.getLogger(__name__)

# canonical field name -> accepted aliases
ALIASES: Dict[str, tuple[str, ...]] = {
    "request_id": ("requestId", "requestNumber", "request_id"),
    "loan_id": ("loanId", "loanNumber", "loan_id"),
    "task_id": ("taskId", "taskNumber", "task_id"),
    "review_type": ("reviewType", "requestType", "review_type"),
    "decision": ("decision", "loanDecision"),
    "attributes": ("attributes",),
}

DISPLAY_NAMES = {
    "request_id": "requestId",
    "loan_id": "loanId",
    "task_id": "taskId",
    "review_type": "reviewType",
    "decision": "decision",
    "attributes": "attributes",
}


def pick(payload: Dict[str, Any], field: str) -> Any:
    """Return the first present alias of ``field`` in ``payload``."""
    for alias in ALIASES[field]:
        if alias in payload and payload[alias] is not None:
            return payload[alias]
    return None


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class InputValidator:
    """Validates payloads for the start, assign-type and next-step operations."""

    def __init__(self, config: Optional[ValidationConfig] = None) -> None:
        config = config or ValidationConfig()
        self._patterns = {
            "request_id": re.compile(config.request_id_pattern),
            "loan_id": re.compile(config.loan_id_pattern),
            "task_id": re.compile(config.task_id_pattern),
        }
        self._max_payload_size = config.max_payload_size

    def validate_start(self, payload: Dict[str, Any]) -> None:
        self.validate_payload_size(payload)
        self._require(payload, ["request_id", "loan_id", "review_type"])
        self._check_formats(payload, ["request_id", "loan_id"])
        self.validate_review_type(pick(payload, "review_type"))
        attributes = pick(payload, "attributes")
        if attributes:
            self.validate_attributes(attributes)

    def validate_assign_type(self, payload: Dict[str, Any]) -> None:
        self.validate_payload_size(payload)
        self._require(payload, ["task_id", "request_id", "loan_id", "review_type"])
        self._check_formats(payload, ["task_id", "request_id", "loan_id"])
        self.validate_review_type(pick(payload, "review_type"))

    def validate_next_step(self, payload: Dict[str, Any]) -> None:
        self.validate_payload_size(payload)
        self._require(payload, ["task_id", "request_id", "loan_id", "decision", "attributes"])
        self._check_formats(payload, ["task_id", "request_id", "loan_id"])
        self.validate_attributes(pick(payload, "attributes"))

    def validate_payload_size(self, payload: Dict[str, Any]) -> None:
        size = len(json.dumps(payload, default=str).encode("utf-8"))
        if size > self._max_payload_size:
            raise ValidationError(
                f"Payload size {size} exceeds maximum {self._max_payload_size}",
                code="PAYLOAD_TOO_LARGE",
            )

    def validate_review_type(self, value: Any) -> ReviewType:
        return ReviewType.parse(value)

    def validate_attributes(self, attributes: Any) -> None:
        if not isinstance(attributes, list) or not attributes:
            raise ValidationError(
                "attributes must be a non-empty list",
                code="VALIDATION_MISSING_FIELD",
                field="attributes",
            )
        for index, item in enumerate(attributes):
            if not isinstance(item, dict):
                raise ValidationError(
                    f"attributes[{index}] must be an object",
                    code="VALIDATION_INVALID_FORMAT",
                    field="attributes",
                )
            name = item.get("name") or item.get("attributeName")
            status = item.get("status") or item.get("attributeStatus")
            if _is_blank(name) or _is_blank(status):
                raise ValidationError(
                    f"attributes[{index}] requires a name and a status",
                    code="VALIDATION_MISSING_FIELD",
                    field="attributes",
                )
            if AttributeStatus.lookup(status) is None:
                raise ValidationError(
                    f"attributes[{index}] has invalid status '{status}'",
                    code="VALIDATION_INVALID_ATTRIBUTE_STATUS",
                    field="attributes",
                )

    # ------------------------------------------------------------------
    def _require(self, payload: Dict[str, Any], fields: Iterable[str]) -> None:
        missing: List[str] = []
        for field in fields:
            value = pick(payload, field)
            if field == "attributes":
                if not value:
                    missing.append(DISPLAY_NAMES[field])
            elif _is_blank(value):
                missing.append(DISPLAY_NAMES[field])
        if missing:
            raise ValidationError(
                "Missing mandatory fields: " + ", ".join(missing),
                code="VALIDATION_MISSING_FIELD",
                field=missing[0],
            )

    def _check_formats(self, payload: Dict[str, Any], fields: Iterable[str]) -> None:
        for field in fields:
            value = pick(payload, field)
            if not isinstance(value, str) or not self._patterns[field].fullmatch(value):
                logger.warning(f"Invalid {DISPLAY_NAMES[field]} format: {value}")
                raise ValidationError(
                    f"Invalid {DISPLAY_NAMES[field]} format: {value}",
                    code="VALIDATION_INVALID_FORMAT",
                    field=DISPLAY_NAMES[field],
                )
