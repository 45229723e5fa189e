from __future__ import annotations

import unittest

from template_maestro.formulas import interpret_expression, interpret_formula, interpret_formulas, split_arguments
from template_maestro.models import ConditionOperator


class InterpretExpressionTests(unittest.TestCase):
    def test_recognised_shapes(self):
        cases = {
            "LEN(TRIM($B2))=0": ("B", ConditionOperator.IS_EMPTY, None),
            '$C2=""': ("C", ConditionOperator.IS_EMPTY, None),
            '$C2<>""': ("C", ConditionOperator.IS_NOT_EMPTY, None),
            '$E2="US"': ("E", ConditionOperator.EQUALS, "US"),
            '$E2<>"US"': ("E", ConditionOperator.NOT_EQUALS, "US"),
            'TEXT($D2,"@")="I"': ("D", ConditionOperator.EQUALS, "I"),
            'AA10="say ""hi"""': ("AA", ConditionOperator.EQUALS, 'say "hi"'),
        }
        for expression, (column, operator, value) in cases.items():
            with self.subTest(expression=expression):
                condition = interpret_expression(expression)
                self.assertIsNotNone(condition)
                self.assertEqual(condition.column, column)
                self.assertIs(condition.operator, operator)
                self.assertEqual(condition.value, value)

    def test_unrecognised_shapes(self):
        for expression in ("$E2>5", "ISBLANK($E2)", "SUM(A1:A3)=0"):
            with self.subTest(expression=expression):
                self.assertIsNone(interpret_expression(expression))


class InterpretFormulaTests(unittest.TestCase):
    def test_single_condition_with_leading_equals(self):
        result = interpret_formula('=$E3="US"')
        self.assertEqual(result.operator, "AND")
        self.assertEqual([c.column for c in result.conditions], ["E"])

    def test_or_wrapper_sets_connective(self):
        result = interpret_formula('OR($E3="US",$E3="CA")')
        self.assertEqual(result.operator, "OR")
        self.assertEqual([c.value for c in result.conditions], ["US", "CA"])
        self.assertEqual(result.columns, {"E"})

    def test_partial_understanding_keeps_recognised_conditions(self):
        with self.assertLogs("template_maestro.formulas", level="INFO") as logs:
            result = interpret_formula('AND($E3="US",$G3>10)')
        self.assertEqual(len(result.conditions), 1)
        self.assertEqual(result.unrecognized, ["$G3>10"])
        self.assertIn("partly understood", logs.output[0])

    def test_unrecognised_formula_is_logged_and_dropped(self):
        with self.assertLogs("template_maestro.formulas", level="WARNING"):
            self.assertIsNone(interpret_formula("ISBLANK($E3)"))
        self.assertIsNone(interpret_formula(""))

    def test_first_interpretable_formula_wins(self):
        with self.assertLogs("template_maestro.formulas", level="WARNING"):
            result = interpret_formulas(["ISBLANK($E3)", '$F3<>""'])
        self.assertEqual(result.conditions[0].column, "F")

    def test_split_arguments_respects_quotes_and_parentheses(self):
        self.assertEqual(
            split_arguments('$A2="x,y",LEN(TRIM($B2))=0'),
            ['$A2="x,y"', "LEN(TRIM($B2))=0"],
        )


if __name__ == "__main__":
    unittest.main()
