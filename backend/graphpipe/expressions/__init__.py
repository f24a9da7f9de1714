"""Expression language for derived nodes."""

from graphpipe.expressions.parser import parse_expression, references
from graphpipe.expressions.evaluator import check_expression, evaluate

__all__ = [
    "parse_expression",
    "references",
    "check_expression",
    "evaluate",
]
