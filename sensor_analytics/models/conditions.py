"""
Compiled rule conditions.

A rule condition is a single binary comparison ``path operator literal``,
for example ``gas_concentration > 500`` or ``sensor.reading <= 12.5``.
Conditions are compiled once into a small AST (Condition) when the rule is
built, so malformed expressions are caught at add time and evaluation is a
path lookup plus one comparison.

Evaluation never raises: a missing or non-numeric field yields False.

Example:
    >>> condition = compile_condition("sensor.reading > 500")
    >>> condition.path
    ('sensor', 'reading')
    >>> condition.evaluate(event)
    True
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from sensor_analytics.exceptions import EvaluationFailure
from sensor_analytics.models.events import SensorEvent

_CONDITION_PATTERN = re.compile(
    r"^\s*(?P<path>[A-Za-z_][\w]*(?:\.[A-Za-z_][\w]*)*)\s*"
    r"(?P<operator>===|!==|>=|<=|==|!=|>|<)\s*"
    r"(?P<literal>[-+]?(?:\d+(?:\.\d*)?|\.\d+))\s*$"
)

_OPERATOR_ALIASES = {"===": "==", "!==": "!="}


class ComparisonOperator(str, Enum):
    """
    Comparison operators supported by the condition language.

    Attributes:
        GT: value > literal
        GE: value >= literal
        LT: value < literal
        LE: value <= literal
        EQ: value == literal
        NE: value != literal
    """

    GT = ">"
    GE = ">="
    LT = "<"
    LE = "<="
    EQ = "=="
    NE = "!="

    def evaluate(self, value: float, literal: float) -> bool:
        """
        Apply the operator.

        Args:
            value: The event value.
            literal: The rule literal.

        Returns:
            bool: True if the comparison holds.
        """
        if self == ComparisonOperator.GT:
            return value > literal
        elif self == ComparisonOperator.GE:
            return value >= literal
        elif self == ComparisonOperator.LT:
            return value < literal
        elif self == ComparisonOperator.LE:
            return value <= literal
        elif self == ComparisonOperator.EQ:
            return value == literal
        elif self == ComparisonOperator.NE:
            return value != literal
        return False


@dataclass(frozen=True)
class Condition:
    """
    Compiled form of a condition expression.

    Attributes:
        path: Field path segments, e.g. ("sensor", "reading").
        operator: Comparison operator.
        literal: Numeric right-hand side.
        source: The original expression text.
    """

    path: Tuple[str, ...]
    operator: ComparisonOperator
    literal: float
    source: str

    @property
    def field(self) -> str:
        """Dotted form of the referenced path."""
        return ".".join(self.path)

    def extract(self, event: SensorEvent) -> Optional[float]:
        """Return the numeric value the condition reads, if present."""
        return event.lookup_number(self.path)

    def evaluate(self, event: SensorEvent) -> bool:
        """Evaluate against an event; missing or non-numeric fields are False."""
        value = self.extract(event)
        if value is None:
            return False
        return self.operator.evaluate(value, self.literal)


def compile_condition(expression: str) -> Condition:
    """
    Compile a condition expression.

    Args:
        expression: Text such as "temperature < 10".

    Returns:
        Condition: The compiled condition.

    Raises:
        EvaluationFailure: If the expression is not a single comparison.
    """
    if not isinstance(expression, str):
        raise EvaluationFailure(repr(expression), "condition must be a string")

    match = _CONDITION_PATTERN.match(expression)
    if match is None:
        raise EvaluationFailure(expression)

    operator = _OPERATOR_ALIASES.get(match.group("operator"), match.group("operator"))
    return Condition(
        path=tuple(match.group("path").split(".")),
        operator=ComparisonOperator(operator),
        literal=float(match.group("literal")),
        source=expression,
    )


def try_compile_condition(expression: str) -> Optional[Condition]:
    """Compile an expression, returning None instead of raising."""
    try:
        return compile_condition(expression)
    except EvaluationFailure:
        return None
