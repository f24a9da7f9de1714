"""Query node model: raw SQL nodes and derived expression nodes."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Union

from graphpipe.core.parameters import ParameterDef, parse_parameter_defs
from graphpipe.expressions.parser import parse_expression, references
from graphpipe.errors import InvalidNodeError, InvalidRefIdError

REF_ID_PATTERN = re.compile(r"^[A-Z]$")

SUPPORTED_DIALECTS = ("sql",)
DERIVED_OPERATIONS = ("math", "reduce", "resample")
FILL_POLICIES = ("null", "omit")


def validate_ref_id(ref_id: Any) -> str:
    """Return the refId if it is a single uppercase letter, else raise."""
    if not isinstance(ref_id, str) or not REF_ID_PATTERN.match(ref_id):
        raise InvalidRefIdError(ref_id)
    return ref_id


@dataclass
class SqlNode:
    """
    A node executed as a SQL statement against a data source.

    Attributes:
        ref_id: Single-letter identifier, unique within a request
        text: SQL with :name placeholders
        data_source_ref: Data source to run against (request default if None)
        dialect: Target engine tag
        parameters: Declared parameters for this statement
        name: Display name used when flattening results
        hidden: Computed but excluded from flattened output
    """

    ref_id: str
    text: str
    data_source_ref: Optional[str] = None
    dialect: str = "sql"
    parameters: List[ParameterDef] = field(default_factory=list)
    name: Optional[str] = None
    hidden: bool = False

    kind = "sql"

    def __post_init__(self) -> None:
        validate_ref_id(self.ref_id)
        if self.dialect not in SUPPORTED_DIALECTS:
            raise InvalidNodeError(self.ref_id, f"Unsupported dialect '{self.dialect}'")
        if not self.text or not self.text.strip():
            raise InvalidNodeError(self.ref_id, "SQL text is empty")

    @property
    def dependencies(self) -> List[str]:
        return []

    def to_dict(self) -> dict:
        result = {
            "refId": self.ref_id,
            "dialect": self.dialect,
            "text": self.text,
            "parameters": [p.to_dict() for p in self.parameters],
            "hidden": self.hidden,
        }
        if self.data_source_ref:
            result["dataSourceRef"] = self.data_source_ref
        if self.name:
            result["name"] = self.name
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SqlNode:
        return cls(
            ref_id=data.get("refId", data.get("ref_id")),
            text=data.get("text", ""),
            data_source_ref=data.get("dataSourceRef", data.get("data_source_ref")),
            dialect=data.get("dialect", "sql"),
            parameters=parse_parameter_defs(data.get("parameters")),
            name=data.get("name"),
            hidden=bool(data.get("hidden", False)),
        )


@dataclass
class DerivedNode:
    """
    A node computed from other nodes' results.

    Attributes:
        ref_id: Single-letter identifier, unique within a request
        operation: math | reduce | resample
        expression: Formula referencing other refIds, e.g. "A / B"
        name: Display name used when flattening results
        hidden: Computed but excluded from flattened output
        fill: Empty-bucket policy for resample ("null" emits null rows, "omit" skips them)
    """

    ref_id: str
    operation: str
    expression: str
    name: Optional[str] = None
    hidden: bool = False
    fill: str = "null"

    kind = "derived"

    _references: Optional[List[str]] = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        validate_ref_id(self.ref_id)
        if self.operation not in DERIVED_OPERATIONS:
            raise InvalidNodeError(
                self.ref_id,
                f"Unknown operation '{self.operation}', expected one of {', '.join(DERIVED_OPERATIONS)}",
            )
        if self.fill not in FILL_POLICIES:
            raise InvalidNodeError(self.ref_id, f"Unknown fill policy '{self.fill}'")

    @property
    def dependencies(self) -> List[str]:
        """refIds named in the expression, parsed once."""
        if self._references is None:
            self._references = references(parse_expression(self.expression, ref_id=self.ref_id))
        return self._references

    def to_dict(self) -> dict:
        result = {
            "refId": self.ref_id,
            "operation": self.operation,
            "expression": self.expression,
            "hidden": self.hidden,
            "fill": self.fill,
        }
        if self.name:
            result["name"] = self.name
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DerivedNode:
        return cls(
            ref_id=data.get("refId", data.get("ref_id")),
            operation=data.get("operation", ""),
            expression=data.get("expression", ""),
            name=data.get("name"),
            hidden=bool(data.get("hidden", False)),
            fill=data.get("fill", "null"),
        )


QueryNode = Union[SqlNode, DerivedNode]


def parse_node(data: Any) -> QueryNode:
    """Build a node from its dict form; nodes with an operation are derived."""
    if isinstance(data, (SqlNode, DerivedNode)):
        return data
    if not isinstance(data, Mapping):
        raise InvalidNodeError(None, "Query node must be an object")
    if "operation" in data:
        return DerivedNode.from_dict(data)
    return SqlNode.from_dict(data)


def parse_nodes(items: Any) -> List[QueryNode]:
    return [parse_node(item) for item in items or []]
