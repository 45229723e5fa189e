"""
Restricted interpreter for conditional-format formulas.

Only a handful of sub-expression shapes are understood; anything else is left
alone. The interpreter never evaluates a formula, it only turns recognised
shapes into column conditions:

    LEN(TRIM($X2))=0   $X2=""        -> is_empty
    $X2<>""                          -> is_not_empty
    $X2="V"   TEXT($X2,"@")="V"      -> equals
    $X2<>"V"  TEXT($X2,"@")<>"V"     -> not_equals

A single ``AND(...)`` or ``OR(...)`` wrapper is unpacked and decides the
connective of the resulting conditions.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from template_maestro.models import ConditionOperator

logger = logging.getLogger(__name__)

_REF = r"\$?([A-Z]{1,3})\$?\d+"
_QUOTED = r'"((?:[^"]|"")*)"'

LEN_TRIM_EMPTY_RE = re.compile(rf"^LEN\(\s*TRIM\(\s*{_REF}\s*\)\s*\)\s*=\s*0$", re.IGNORECASE)
COMPARE_RE = re.compile(rf"^{_REF}\s*(<>|=)\s*{_QUOTED}$")
TEXT_COMPARE_RE = re.compile(rf'^TEXT\(\s*{_REF}\s*,\s*"@"\s*\)\s*(<>|=)\s*{_QUOTED}$', re.IGNORECASE)
CONNECTIVE_RE = re.compile(r"^(AND|OR)\((.*)\)$", re.IGNORECASE | re.DOTALL)


@dataclass
class FormulaCondition:
    column: str
    operator: ConditionOperator
    value: str | None = None

    def to_dict(self) -> dict:
        payload = {"column": self.column, "operator": self.operator.value}
        if self.value is not None:
            payload["value"] = self.value
        return payload


@dataclass
class FormulaInterpretation:
    operator: str = "AND"
    conditions: list[FormulaCondition] = field(default_factory=list)
    unrecognized: list[str] = field(default_factory=list)

    @property
    def columns(self) -> set[str]:
        return {condition.column for condition in self.conditions}

    def to_dict(self) -> dict:
        return {
            "operator": self.operator,
            "conditions": [c.to_dict() for c in self.conditions],
            "unrecognized": list(self.unrecognized),
        }


def split_arguments(text: str) -> list[str]:
    """Split a function argument list on top-level commas, honouring quotes and parentheses."""
    args: list[str] = []
    depth = 0
    in_quotes = False
    current: list[str] = []
    for char in text:
        if char == '"':
            in_quotes = not in_quotes
        elif not in_quotes:
            if char == "(":
                depth += 1
            elif char == ")":
                depth -= 1
            elif char == "," and depth == 0:
                args.append("".join(current).strip())
                current = []
                continue
        current.append(char)
    tail = "".join(current).strip()
    if tail or args:
        args.append(tail)
    return args


def _balanced(text: str) -> bool:
    depth = 0
    in_quotes = False
    for char in text:
        if char == '"':
            in_quotes = not in_quotes
        elif not in_quotes:
            if char == "(":
                depth += 1
            elif char == ")":
                depth -= 1
                if depth < 0:
                    return False
    return depth == 0 and not in_quotes


def _comparison(column: str, op: str, raw_value: str) -> FormulaCondition:
    value = raw_value.replace('""', '"')
    if value == "":
        operator = ConditionOperator.IS_EMPTY if op == "=" else ConditionOperator.IS_NOT_EMPTY
        return FormulaCondition(column, operator)
    operator = ConditionOperator.EQUALS if op == "=" else ConditionOperator.NOT_EQUALS
    return FormulaCondition(column, operator, value)


def interpret_expression(expression: str) -> FormulaCondition | None:
    text = expression.strip()
    match = LEN_TRIM_EMPTY_RE.match(text)
    if match:
        return FormulaCondition(match.group(1).upper(), ConditionOperator.IS_EMPTY)
    match = TEXT_COMPARE_RE.match(text) or COMPARE_RE.match(text)
    if match:
        return _comparison(match.group(1).upper(), match.group(2), match.group(3))
    return None


def interpret_formula(formula: str | None) -> FormulaInterpretation | None:
    """Interpret one conditional-format formula; ``None`` when nothing is recognised."""
    if not formula:
        return None
    text = str(formula).strip()
    if text.startswith("="):
        text = text[1:].strip()

    operator = "AND"
    parts = [text]
    match = CONNECTIVE_RE.match(text)
    if match and _balanced(match.group(2)):
        operator = match.group(1).upper()
        parts = split_arguments(match.group(2))

    interpretation = FormulaInterpretation(operator=operator)
    for part in parts:
        condition = interpret_expression(part)
        if condition is None:
            interpretation.unrecognized.append(part)
        else:
            interpretation.conditions.append(condition)

    if not interpretation.conditions:
        logger.warning("Unrecognised conditional-format formula ignored: %s", formula)
        return None
    if interpretation.unrecognized:
        logger.info(
            "Conditional-format formula only partly understood, ignoring %s: %s",
            interpretation.unrecognized,
            formula,
        )
    return interpretation


def interpret_formulas(formulas: list[str]) -> FormulaInterpretation | None:
    """First interpretable formula of a rule wins."""
    for formula in formulas or []:
        interpretation = interpret_formula(formula)
        if interpretation is not None:
            return interpretation
    return None
