"""Declarative payload validation.

A :class:`Schema` maps wire field names to a tuple of rules.  Validation
collects every violation instead of stopping at the first one so callers can
report all offending fields together.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Final, Mapping, Protocol, cast, runtime_checkable

import msgspec
import rure

from .exceptions import ValidationError

if TYPE_CHECKING:

    class RureRegex(Protocol):
        def is_match(self, value: str) -> bool:  # pragma: no cover - typing helper
            ...


else:  # pragma: no cover - runtime alias derived from compiled pattern
    RureRegex = type(rure.compile("demo"))


_EMAIL_PATTERN: Final[RureRegex] = cast("RureRegex", rure.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$"))

_MISSING: Final = object()


class Violation(msgspec.Struct, frozen=True):
    field: str
    code: str
    message: str


@runtime_checkable
class Rule(Protocol):
    """A field rule.  ``check`` returns a violation or ``None``."""

    def check(self, field: str, value: Any) -> Violation | None: ...


class Required(msgspec.Struct, frozen=True):
    def check(self, field: str, value: Any) -> Violation | None:
        if value is _MISSING or value is None:
            return Violation(field, "required", f"{field} is required")
        if not isinstance(value, str):
            return Violation(field, "invalid_type", f"{field} must be a string")
        return None


class NonEmpty(msgspec.Struct, frozen=True):
    def check(self, field: str, value: Any) -> Violation | None:
        if not value.strip():
            return Violation(field, "empty", f"{field} must not be empty")
        return None


class Email(msgspec.Struct, frozen=True):
    def check(self, field: str, value: Any) -> Violation | None:
        if not _EMAIL_PATTERN.is_match(value.strip()):
            return Violation(field, "invalid_email", f"{field} must be a valid email address")
        return None


class MinLength(msgspec.Struct, frozen=True):
    length: int

    def check(self, field: str, value: Any) -> Violation | None:
        if len(value) < self.length:
            return Violation(field, "too_short", f"{field} must be at least {self.length} characters")
        return None


class Schema:
    """Ordered mapping of field name to rules.

    Rules for one field run in order and stop at the first violation, so a
    missing field reports ``required`` only.
    """

    def __init__(self, fields: Mapping[str, tuple[Rule, ...]]) -> None:
        self.fields = dict(fields)

    def validate(self, payload: Any) -> list[Violation]:
        if not isinstance(payload, Mapping):
            return [Violation("$", "invalid_type", "payload must be a JSON object")]
        violations: list[Violation] = []
        for name, rules in self.fields.items():
            value = payload.get(name, _MISSING)
            for rule in rules:
                violation = rule.check(name, value)
                if violation is not None:
                    violations.append(violation)
                    break
        return violations

    def check(self, payload: Any) -> None:
        violations = self.validate(payload)
        if violations:
            raise ValidationError(violations)


def setup_schema(min_length: int = 6) -> Schema:
    """Return the schema for the first-run initialization payload."""

    return Schema(
        {
            "email": (Required(), NonEmpty(), Email()),
            "password": (Required(), MinLength(min_length)),
            "firstName": (Required(), NonEmpty()),
            "lastName": (Required(), NonEmpty()),
            "churchName": (Required(), NonEmpty()),
        }
    )


def login_schema() -> Schema:
    return Schema(
        {
            "email": (Required(), NonEmpty(), Email()),
            "password": (Required(), NonEmpty()),
        }
    )


__all__ = [
    "Email",
    "MinLength",
    "NonEmpty",
    "Required",
    "Rule",
    "Schema",
    "Violation",
    "login_schema",
    "setup_schema",
]
