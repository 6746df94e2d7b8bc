import pytest

from loanreview.config import ValidationConfig
from loanreview.errors import ValidationError
from loanreview.validation import InputValidator


def _start_payload(**overrides):
    payload = {"requestId": "REQ-123456", "loanId": "LN-1234567", "reviewType": "LDC"}
    payload.update(overrides)
    return payload


def _next_payload(**overrides):
    payload = {
        "taskId": "TSK-0A1B2C3D",
        "requestId": "REQ-123456",
        "loanId": "LN-1234567",
        "decision": "Approve",
        "attributes": [{"name": "income", "status": "Approved"}],
    }
    payload.update(overrides)
    return payload


def _error(call, payload) -> ValidationError:
    with pytest.raises(ValidationError) as exc_info:
        call(payload)
    return exc_info.value


def test_valid_payloads_pass():
    validator = InputValidator()
    validator.validate_start(_start_payload())
    validator.validate_start(
        {"request_id": "REQ-123456", "loan_id": "LN-1234567", "review_type": "Sec Policy"}
    )
    validator.validate_next_step(_next_payload())
    validator.validate_assign_type(
        {"taskId": "TSK-0A1B2C3D", "requestId": "REQ-123456", "loanId": "LN-1234567",
         "reviewType": "Conduit"}
    )


def test_missing_fields_are_named():
    validator = InputValidator()
    error = _error(validator.validate_start, _start_payload(loanId="  "))
    assert error.code == "VALIDATION_MISSING_FIELD"
    assert error.field == "loanId"

    error = _error(validator.validate_next_step, _next_payload(attributes=[]))
    assert error.field == "attributes"


def test_identifier_formats():
    validator = InputValidator()
    error = _error(validator.validate_start, _start_payload(requestId="123456"))
    assert error.code == "VALIDATION_INVALID_FORMAT"
    assert error.field == "requestId"

    error = _error(validator.validate_next_step, _next_payload(taskId="TSK-xyz"))
    assert error.field == "taskId"


def test_identifiers_with_trailing_newline_are_rejected():
    validator = InputValidator()
    error = _error(validator.validate_start, _start_payload(requestId="REQ-123456\n"))
    assert error.code == "VALIDATION_INVALID_FORMAT"
    assert error.field == "requestId"

    error = _error(validator.validate_next_step, _next_payload(taskId="TSK-0A1B2C3D\n"))
    assert error.field == "taskId"


def test_review_type_and_attribute_status():
    validator = InputValidator()
    error = _error(validator.validate_start, _start_payload(reviewType="Unknown"))
    assert error.code == "VALIDATION_INVALID_REQUEST_TYPE"
    assert error.field == "reviewType"

    error = _error(
        validator.validate_next_step,
        _next_payload(attributes=[{"name": "income", "status": "Maybe"}]),
    )
    assert error.code == "VALIDATION_INVALID_ATTRIBUTE_STATUS"


def test_payload_size_limit():
    validator = InputValidator(ValidationConfig(max_payload_size=200))
    error = _error(validator.validate_start, _start_payload(notes="x" * 500))
    assert error.code == "PAYLOAD_TOO_LARGE"
