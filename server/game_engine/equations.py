"""
Arithmetic challenges.
"""
import random
import re
from dataclasses import dataclass

from shared.constants import OPERAND_MAX, OPERAND_MIN
from shared.enums import AnswerVerdict, Operator

LEADING_NUMBER = re.compile(r"\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")


@dataclass(frozen=True)
class Equation:
    """A generated challenge and its integer answer."""
    left: int
    operator: Operator
    right: int
    answer: int

    @property
    def display_text(self) -> str:
        return f"{self.left} {self.operator.value} {self.right}"

    def check(self, value) -> AnswerVerdict:
        """
        Classify a submitted answer.

        Text is read by its leading number, so "5 dollars" counts as 5.
        Anything without a leading number is UNPARSEABLE, which is a
        different outcome from a wrong number.
        """
        if isinstance(value, bool) or value is None:
            return AnswerVerdict.UNPARSEABLE
        if isinstance(value, (int, float)):
            parsed = float(value)
        else:
            match = LEADING_NUMBER.match(str(value))
            if match is None:
                return AnswerVerdict.UNPARSEABLE
            parsed = float(match.group(0))
        if parsed != parsed:  # NaN
            return AnswerVerdict.UNPARSEABLE
        return AnswerVerdict.CORRECT if parsed == self.answer else AnswerVerdict.INCORRECT


class EquationGenerator:
    """Produces random equations with integer answers."""

    OPERATORS = (Operator.ADD, Operator.SUBTRACT, Operator.MULTIPLY, Operator.DIVIDE)

    def __init__(self, seed: int | None = None):
        self._random = random.Random(seed)

    def _operand(self) -> int:
        return self._random.randint(OPERAND_MIN, OPERAND_MAX)

    def generate(self, operator: Operator | None = None) -> Equation:
        """
        Generate an equation.

        Args:
            operator: Force a specific operator; random when omitted
        """
        operator = operator or self._random.choice(self.OPERATORS)
        left, right = self._operand(), self._operand()

        if operator == Operator.ADD:
            answer = left + right
        elif operator == Operator.SUBTRACT:
            answer = left - right
        elif operator == Operator.MULTIPLY:
            answer = left * right
        else:
            # Redraw until the division is exact
            while left % right != 0:
                left, right = self._operand(), self._operand()
            answer = left // right

        return Equation(left=left, operator=operator, right=right, answer=answer)
