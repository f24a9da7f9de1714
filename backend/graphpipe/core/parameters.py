"""Typed query parameters and runtime value validation."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Pattern, Sequence

from graphpipe.errors import ParameterIssue, ValidationError


class ParameterType(str, Enum):
    """Declared type of a query parameter."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    TIMESTAMP = "timestamp"
    ENUM = "enum"
    STRING_ARRAY = "string[]"
    NUMBER_ARRAY = "number[]"

    @property
    def is_array(self) -> bool:
        return self in (ParameterType.STRING_ARRAY, ParameterType.NUMBER_ARRAY)

    @property
    def element_type(self) -> ParameterType:
        if self == ParameterType.STRING_ARRAY:
            return ParameterType.STRING
        if self == ParameterType.NUMBER_ARRAY:
            return ParameterType.NUMBER
        return self


@dataclass
class ParameterDef:
    """
    Parameter definition for a SQL node.

    Attributes:
        name: Parameter name (used as :name in SQL)
        type: Declared type
        required: Whether a runtime value (or default) must be present
        default: Value used when none is supplied at runtime
        enum_values: Allowed values for enum parameters
        min: Lower bound for numbers, minimum item count for arrays
        max: Upper bound for numbers, maximum item count for arrays
        pattern: Regular expression a string value must match
        description: Human-readable description
    """

    name: str
    type: ParameterType = ParameterType.STRING
    required: bool = False
    default: Optional[Any] = None
    enum_values: Optional[List[str]] = None
    min: Optional[float] = None
    max: Optional[float] = None
    pattern: Optional[str] = None
    description: Optional[str] = None

    _regex: Optional[Pattern[str]] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.name or not isinstance(self.name, str):
            raise ValidationError.single(str(self.name), "InvalidDefinition", "Parameter name is required")

        try:
            self.type = ParameterType(self.type)
        except ValueError:
            raise ValidationError.single(
                self.name, "InvalidDefinition", f"Unknown parameter type: {self.type}"
            ) from None

        if self.type == ParameterType.ENUM and not self.enum_values:
            raise ValidationError.single(
                self.name, "InvalidDefinition", "Enum parameters must declare enumValues"
            )

        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValidationError.single(
                self.name, "InvalidDefinition", f"min ({self.min}) is greater than max ({self.max})"
            )

        if self.pattern is not None:
            try:
                self._regex = re.compile(self.pattern)
            except re.error as e:
                raise ValidationError.single(
                    self.name, "InvalidDefinition", f"Invalid pattern: {e}"
                ) from None

    def matches_pattern(self, value: str) -> bool:
        return self._regex is None or self._regex.search(value) is not None

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        result: Dict[str, Any] = {"name": self.name, "type": self.type.value, "required": self.required}
        if self.default is not None:
            result["default"] = self.default
        if self.enum_values:
            result["enumValues"] = list(self.enum_values)
        if self.min is not None:
            result["min"] = self.min
        if self.max is not None:
            result["max"] = self.max
        if self.pattern:
            result["pattern"] = self.pattern
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ParameterDef:
        """Create from dictionary (accepts camelCase and snake_case keys)."""
        return cls(
            name=data.get("name", ""),
            type=data.get("type", "string"),
            required=bool(data.get("required", False)),
            default=data.get("default"),
            enum_values=data.get("enumValues", data.get("enum_values")),
            min=data.get("min"),
            max=data.get("max"),
            pattern=data.get("pattern"),
            description=data.get("description"),
        )


def parse_parameter_defs(raw: Optional[Sequence[Any]]) -> List[ParameterDef]:
    """Build definitions from dicts, collecting every invalid definition."""
    defs: List[ParameterDef] = []
    issues: List[ParameterIssue] = []
    seen: set[str] = set()

    for item in raw or []:
        try:
            d = item if isinstance(item, ParameterDef) else ParameterDef.from_dict(item)
        except ValidationError as e:
            issues.extend(e.issues)
            continue
        if d.name in seen:
            issues.append(ParameterIssue(d.name, "InvalidDefinition", f"Duplicate parameter '{d.name}'"))
            continue
        seen.add(d.name)
        defs.append(d)

    if issues:
        raise ValidationError(issues)
    return defs


# ─────────────────────────────────────────────────
# Validation
# ─────────────────────────────────────────────────


def validate_parameters(
    definitions: Sequence[ParameterDef],
    values: Optional[Mapping[str, Any]],
) -> Dict[str, Any]:
    """
    Validate runtime values against parameter definitions.

    Defaults are applied first so they are checked against the same
    constraints. Keys without a definition are ignored. Optional parameters
    with neither a value nor a default are bound as None.

    Args:
        definitions: Declared parameters
        values: Untyped runtime values (e.g. a JSON body)

    Returns:
        Map of parameter name to coerced value

    Raises:
        ValidationError: Listing every offending parameter
    """
    values = values or {}
    issues: List[ParameterIssue] = []
    result: Dict[str, Any] = {}

    for d in definitions:
        raw = values.get(d.name)
        if raw is None:
            raw = d.default

        if raw is None:
            if d.required:
                issues.append(
                    ParameterIssue(d.name, "MissingParameter", f"Required parameter '{d.name}' is missing")
                )
            else:
                result[d.name] = None
            continue

        value, found = _check_value(d, raw)
        if found:
            issues.extend(found)
        else:
            result[d.name] = value

    if issues:
        raise ValidationError(issues)
    return result


def _check_value(d: ParameterDef, raw: Any) -> tuple[Any, List[ParameterIssue]]:
    if d.type.is_array:
        if not isinstance(raw, (list, tuple)):
            return None, [_mismatch(d.name, f"an array of {d.type.element_type.value}s")]

        issues: List[ParameterIssue] = []
        items: List[Any] = []
        for i, item in enumerate(raw):
            coerced, issue = _check_scalar(d, d.type.element_type, f"{d.name}[{i}]", item)
            if issue:
                issues.append(issue)
            else:
                items.append(coerced)

        if d.min is not None and len(raw) < d.min:
            issues.append(
                ParameterIssue(d.name, "OutOfRange", f"Parameter '{d.name}' must have at least {d.min:g} items")
            )
        if d.max is not None and len(raw) > d.max:
            issues.append(
                ParameterIssue(d.name, "OutOfRange", f"Parameter '{d.name}' must have at most {d.max:g} items")
            )
        return items, issues

    value, issue = _check_scalar(d, d.type, d.name, raw)
    return value, [issue] if issue else []


def _check_scalar(
    d: ParameterDef,
    ptype: ParameterType,
    label: str,
    raw: Any,
) -> tuple[Any, Optional[ParameterIssue]]:
    if ptype == ParameterType.STRING:
        if not isinstance(raw, str):
            return None, _mismatch(label, "a string")
        if not d.matches_pattern(raw):
            return None, ParameterIssue(
                label, "PatternMismatch", f"Parameter '{label}' does not match required pattern"
            )
        return raw, None

    if ptype == ParameterType.NUMBER:
        number = coerce_number(raw)
        if number is None:
            return None, _mismatch(label, "a number")
        # Array bounds apply to length, not elements
        if not d.type.is_array:
            if d.min is not None and number < d.min:
                return None, ParameterIssue(label, "OutOfRange", f"Parameter '{label}' must be >= {d.min:g}")
            if d.max is not None and number > d.max:
                return None, ParameterIssue(label, "OutOfRange", f"Parameter '{label}' must be <= {d.max:g}")
        return number, None

    if ptype == ParameterType.BOOLEAN:
        if isinstance(raw, bool):
            return raw, None
        if isinstance(raw, str) and raw.strip().lower() in ("true", "false"):
            return raw.strip().lower() == "true", None
        return None, _mismatch(label, "a boolean")

    if ptype == ParameterType.DATE:
        parsed = _coerce_date(raw)
        if parsed is None:
            return None, _mismatch(label, "a valid ISO date")
        return parsed, None

    if ptype == ParameterType.TIMESTAMP:
        parsed = coerce_timestamp(raw)
        if parsed is None:
            return None, _mismatch(label, "a valid ISO timestamp")
        return parsed, None

    if ptype == ParameterType.ENUM:
        if not isinstance(raw, str):
            return None, _mismatch(label, "a string")
        if raw not in (d.enum_values or []):
            return None, ParameterIssue(
                label,
                "InvalidEnumValue",
                f"Parameter '{label}' must be one of: {', '.join(d.enum_values or [])}",
            )
        return raw, None

    return None, ParameterIssue(label, "InvalidDefinition", f"Unknown parameter type: {ptype}")


def _mismatch(label: str, expected: str) -> ParameterIssue:
    return ParameterIssue(label, "TypeMismatch", f"Parameter '{label}' must be {expected}")


# ─────────────────────────────────────────────────
# Coercion helpers
# ─────────────────────────────────────────────────


def coerce_number(raw: Any) -> Optional[float | int]:
    """Return a finite int/float for numbers and numeric strings, else None."""
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        return raw if math.isfinite(raw) else None
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def coerce_timestamp(raw: Any) -> Optional[datetime]:
    """Parse an ISO timestamp; naive values are taken as UTC."""
    if isinstance(raw, datetime):
        parsed = raw
    elif isinstance(raw, date):
        parsed = datetime(raw.year, raw.month, raw.day)
    elif isinstance(raw, str):
        text = raw.strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _coerce_date(raw: Any) -> Optional[date]:
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, str):
        try:
            return date.fromisoformat(raw.strip())
        except ValueError:
            parsed = coerce_timestamp(raw)
            return parsed.date() if parsed else None
    return None
