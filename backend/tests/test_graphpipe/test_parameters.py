"""Tests for parameter definitions and runtime validation."""

from datetime import date, datetime, timezone

import pytest

from graphpipe.core.parameters import (
    ParameterDef,
    ParameterType,
    coerce_number,
    parse_parameter_defs,
    validate_parameters,
)
from graphpipe.errors import ValidationError


class TestParameterDefinitions:
    """Test building definitions from dicts."""

    def test_from_dict_camel_case(self):
        """Test enumValues is read from camelCase keys."""
        d = ParameterDef.from_dict({"name": "region", "type": "enum", "enumValues": ["eu", "us"]})
        assert d.type == ParameterType.ENUM
        assert d.enum_values == ["eu", "us"]

    def test_enum_without_values_rejected(self):
        """Test an enum must declare its values."""
        with pytest.raises(ValidationError) as exc_info:
            ParameterDef(name="region", type="enum")
        assert exc_info.value.issues[0].code == "InvalidDefinition"

    def test_unknown_type_rejected(self):
        """Test unknown parameter types are invalid definitions."""
        with pytest.raises(ValidationError):
            ParameterDef(name="x", type="uuid")

    def test_min_greater_than_max_rejected(self):
        """Test inverted bounds are rejected."""
        with pytest.raises(ValidationError):
            ParameterDef(name="n", type="number", min=10, max=1)

    def test_parse_collects_every_invalid_definition(self):
        """Test all bad definitions are reported together."""
        with pytest.raises(ValidationError) as exc_info:
            parse_parameter_defs(
                [
                    {"name": "a", "type": "nope"},
                    {"name": "b", "type": "enum"},
                    {"name": "c"},
                    {"name": "c"},
                ]
            )
        names = [i.parameter for i in exc_info.value.issues]
        assert names == ["a", "b", "c"]

    def test_round_trip_dict(self):
        """Test to_dict keeps optional constraints."""
        d = ParameterDef(name="limit", type="number", required=True, min=1, max=100, default=10)
        assert ParameterDef.from_dict(d.to_dict()) == d


class TestValidateParameters:
    """Test runtime values against definitions."""

    def test_required_missing(self):
        """Test a required parameter without value or default."""
        with pytest.raises(ValidationError) as exc_info:
            validate_parameters([ParameterDef(name="region", required=True)], {})
        issue = exc_info.value.issues[0]
        assert issue.parameter == "region"
        assert issue.code == "MissingParameter"

    def test_default_applied(self):
        """Test defaults fill missing values."""
        values = validate_parameters([ParameterDef(name="limit", type="number", default=25)], {})
        assert values == {"limit": 25}

    def test_optional_without_default_binds_none(self):
        """Test optional parameters bind NULL."""
        values = validate_parameters([ParameterDef(name="region")], {})
        assert values == {"region": None}

    def test_default_checked_against_constraints(self):
        """Test a default outside the bounds fails like a runtime value."""
        with pytest.raises(ValidationError) as exc_info:
            validate_parameters([ParameterDef(name="limit", type="number", max=10, default=50)], {})
        assert exc_info.value.issues[0].code == "OutOfRange"

    def test_all_issues_aggregated(self):
        """Test every offending parameter is reported in one error."""
        defs = [
            ParameterDef(name="region", type="enum", enum_values=["eu", "us"]),
            ParameterDef(name="limit", type="number", min=1, max=100),
            ParameterDef(name="since", type="date", required=True),
        ]
        with pytest.raises(ValidationError) as exc_info:
            validate_parameters(defs, {"region": "apac", "limit": 500})

        codes = {i.parameter: i.code for i in exc_info.value.issues}
        assert codes == {
            "region": "InvalidEnumValue",
            "limit": "OutOfRange",
            "since": "MissingParameter",
        }

    def test_numeric_string_coerced(self):
        """Test numeric strings are accepted for numbers."""
        values = validate_parameters([ParameterDef(name="n", type="number")], {"n": "42"})
        assert values["n"] == 42

    def test_boolean_rejected_as_number(self):
        """Test booleans are not numbers."""
        with pytest.raises(ValidationError) as exc_info:
            validate_parameters([ParameterDef(name="n", type="number")], {"n": True})
        assert exc_info.value.issues[0].code == "TypeMismatch"

    def test_boolean_strings(self):
        """Test 'true'/'false' strings bind as booleans."""
        values = validate_parameters([ParameterDef(name="flag", type="boolean")], {"flag": "TRUE"})
        assert values["flag"] is True

    def test_pattern_mismatch(self):
        """Test string patterns."""
        d = ParameterDef(name="sku", pattern=r"^[A-Z]{3}-\d+$")
        assert validate_parameters([d], {"sku": "ABC-12"}) == {"sku": "ABC-12"}
        with pytest.raises(ValidationError) as exc_info:
            validate_parameters([d], {"sku": "abc"})
        assert exc_info.value.issues[0].code == "PatternMismatch"

    def test_date_and_timestamp(self):
        """Test ISO dates and timestamps are parsed; timestamps become UTC."""
        defs = [ParameterDef(name="day", type="date"), ParameterDef(name="at", type="timestamp")]
        values = validate_parameters(defs, {"day": "2024-03-01", "at": "2024-03-01T10:00:00Z"})
        assert values["day"] == date(2024, 3, 1)
        assert values["at"] == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)

    def test_invalid_date(self):
        """Test unparseable dates are type mismatches."""
        with pytest.raises(ValidationError) as exc_info:
            validate_parameters([ParameterDef(name="day", type="date")], {"day": "yesterday"})
        assert exc_info.value.issues[0].code == "TypeMismatch"

    def test_array_elements_and_length(self):
        """Test array element types and item-count bounds."""
        d = ParameterDef(name="ids", type="number[]", min=1, max=3)
        assert validate_parameters([d], {"ids": [1, "2"]}) == {"ids": [1, 2]}

        with pytest.raises(ValidationError) as exc_info:
            validate_parameters([d], {"ids": [1, "x", 3, 4]})
        issues = {i.parameter: i.code for i in exc_info.value.issues}
        assert issues == {"ids[1]": "TypeMismatch", "ids": "OutOfRange"}

    def test_array_requires_list(self):
        """Test a scalar is not accepted for an array parameter."""
        with pytest.raises(ValidationError):
            validate_parameters([ParameterDef(name="tags", type="string[]")], {"tags": "a"})

    def test_unknown_keys_ignored(self):
        """Test values without a definition are dropped."""
        values = validate_parameters([ParameterDef(name="a")], {"a": "x", "b": "y"})
        assert values == {"a": "x"}

    def test_error_payload(self):
        """Test the structured payload lists issues."""
        with pytest.raises(ValidationError) as exc_info:
            validate_parameters([ParameterDef(name="a", required=True)], {})
        payload = exc_info.value.to_dict()
        assert payload["error"] == "ValidationError"
        assert payload["details"]["issues"][0]["parameter"] == "a"


class TestCoercion:
    """Test coercion helpers."""

    @pytest.mark.parametrize(
        "raw,expected",
        [(3, 3), (2.5, 2.5), ("7", 7), (" 1.5 ", 1.5), ("nan", None), ("", None), (False, None), ([], None)],
    )
    def test_coerce_number(self, raw, expected):
        """Test numbers and numeric strings."""
        assert coerce_number(raw) == expected
