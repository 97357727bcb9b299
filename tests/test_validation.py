from __future__ import annotations

import pytest

from ekklesia.exceptions import ValidationError
from ekklesia.validation import (
    Email,
    MinLength,
    NonEmpty,
    Required,
    Rule,
    Schema,
    Violation,
    login_schema,
    setup_schema,
)


def _valid_setup() -> dict[str, str]:
    return {
        "email": "admin@example.org",
        "password": "secret1",
        "firstName": "Ana",
        "lastName": "Souza",
        "churchName": "Igreja Batista Central",
    }


def test_valid_setup_payload_has_no_violations() -> None:
    assert setup_schema().validate(_valid_setup()) == []


def test_short_password_is_reported_on_password_field() -> None:
    payload = _valid_setup() | {"password": "12345"}
    violations = setup_schema().validate(payload)
    assert violations == [Violation("password", "too_short", "password must be at least 6 characters")]


def test_malformed_email_is_reported_on_email_field() -> None:
    payload = _valid_setup() | {"email": "not-an-email"}
    violations = setup_schema().validate(payload)
    assert [(v.field, v.code) for v in violations] == [("email", "invalid_email")]


def test_every_offending_field_is_reported() -> None:
    payload = {"email": "x", "password": "1", "firstName": "  ", "churchName": ""}
    violations = setup_schema().validate(payload)
    assert {v.field: v.code for v in violations} == {
        "email": "invalid_email",
        "password": "too_short",
        "firstName": "empty",
        "lastName": "required",
        "churchName": "empty",
    }


def test_non_string_values_are_rejected() -> None:
    payload = _valid_setup() | {"firstName": 7}
    violations = setup_schema().validate(payload)
    assert [(v.field, v.code) for v in violations] == [("firstName", "invalid_type")]


def test_non_object_payload_is_rejected() -> None:
    violations = setup_schema().validate(None)
    assert violations == [Violation("$", "invalid_type", "payload must be a JSON object")]


def test_min_length_is_configurable() -> None:
    payload = _valid_setup() | {"password": "secret1"}
    violations = setup_schema(min_length=10).validate(payload)
    assert [v.field for v in violations] == ["password"]


def test_check_raises_with_fields() -> None:
    payload = _valid_setup() | {"email": "nope", "password": "123"}
    with pytest.raises(ValidationError) as excinfo:
        setup_schema().check(payload)
    assert excinfo.value.fields == frozenset({"email", "password"})
    assert str(excinfo.value) == "invalid fields: email, password"


@pytest.mark.parametrize(
    "value, valid",
    [
        ("member@church.org", True),
        ("  padded@church.org ", True),
        ("two@@church.org", False),
        ("missing-domain@", False),
        ("no-tld@church", False),
        ("with space@church.org", False),
    ],
)
def test_email_rule(value: str, valid: bool) -> None:
    assert (Email().check("email", value) is None) is valid


def test_rules_stop_at_first_violation() -> None:
    schema = Schema({"name": (Required(), NonEmpty(), MinLength(3))})
    assert [v.code for v in schema.validate({"name": "   "})] == ["empty"]
    assert [v.code for v in schema.validate({})] == ["required"]
    assert [v.code for v in schema.validate({"name": "ab"})] == ["too_short"]


def test_login_schema_requires_password() -> None:
    violations = login_schema().validate({"email": "a@b.co", "password": ""})
    assert [(v.field, v.code) for v in violations] == [("password", "empty")]


def test_rules_satisfy_the_rule_protocol() -> None:
    for rule in (Required(), NonEmpty(), Email(), MinLength(3)):
        assert isinstance(rule, Rule)
    assert not isinstance(object(), Rule)
    with pytest.raises(TypeError):
        Rule()
