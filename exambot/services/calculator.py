from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

PLUS = "+"
MINUS = "-"
TIMES = "×"
DIVIDE = "÷"

OPERATOR_ALIASES = {
    "+": PLUS,
    "-": MINUS,
    "−": MINUS,
    "×": TIMES,
    "*": TIMES,
    "÷": DIVIDE,
    "/": DIVIDE,
}

EQUALS_KEY = "="
DECIMAL_KEY = "."
CLEAR_KEY = "C"
BACKSPACE_KEY = "⌫"


class CalculatorState(str, enum.Enum):
    ENTERING_OPERAND = "entering_operand"
    OPERATOR_PENDING = "operator_pending"


def apply(op: str, a: float, b: float) -> float:
    """Apply a binary operator. Division by zero yields 0 instead of raising."""
    op = OPERATOR_ALIASES.get(op, op)
    if op == PLUS:
        return a + b
    if op == MINUS:
        return a - b
    if op == TIMES:
        return a * b
    if op == DIVIDE:
        return a / b if b != 0 else 0.0
    return b


def format_number(value: float) -> str:
    if value != value or value in (float("inf"), float("-inf")):
        return str(value)
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def parse_display(display: str) -> float:
    try:
        return float(display)
    except ValueError:
        return 0.0


@dataclass
class Calculator:
    """Scratch calculator with left-to-right evaluation (no precedence).

    ``2 + 3 × 4 =`` shows ``20``: every operator press folds the pending
    operation into ``previous_value`` before latching the new operator.
    """

    display: str = "0"
    previous_value: Optional[float] = None
    pending_operator: Optional[str] = None
    awaiting_operand: bool = False

    @property
    def state(self) -> CalculatorState:
        if self.pending_operator is not None and self.awaiting_operand:
            return CalculatorState.OPERATOR_PENDING
        return CalculatorState.ENTERING_OPERAND

    @property
    def value(self) -> float:
        return parse_display(self.display)

    def input_digit(self, digit: str) -> None:
        if len(digit) != 1 or not digit.isdigit():
            raise ValueError(f"Not a digit: {digit!r}")
        if self.awaiting_operand:
            self.display = digit
            self.awaiting_operand = False
        elif self.display == "0":
            self.display = digit
        else:
            self.display += digit

    def input_operator(self, op: str) -> None:
        if op not in OPERATOR_ALIASES:
            raise ValueError(f"Unknown operator: {op!r}")
        op = OPERATOR_ALIASES[op]
        if self.pending_operator is not None and not self.awaiting_operand:
            self._fold()
        elif self.previous_value is None or self.pending_operator is None:
            self.previous_value = self.value
        self.pending_operator = op
        self.awaiting_operand = True

    def input_equals(self) -> None:
        if self.pending_operator is None or self.previous_value is None:
            return
        self._fold()
        self.previous_value = None
        self.pending_operator = None
        self.awaiting_operand = True

    def input_decimal(self) -> None:
        if self.awaiting_operand:
            self.display = "0."
            self.awaiting_operand = False
            return
        if DECIMAL_KEY not in self.display:
            self.display += DECIMAL_KEY

    def backspace(self) -> None:
        self.display = self.display[:-1]
        if self.display in ("", "-"):
            self.display = "0"

    def clear(self) -> None:
        self.display = "0"
        self.previous_value = None
        self.pending_operator = None
        self.awaiting_operand = False

    def press(self, key: str) -> str:
        """Dispatch a keypad label and return the new display."""
        if key.isdigit() and len(key) == 1:
            self.input_digit(key)
        elif key in OPERATOR_ALIASES:
            self.input_operator(key)
        elif key == EQUALS_KEY:
            self.input_equals()
        elif key == DECIMAL_KEY:
            self.input_decimal()
        elif key == CLEAR_KEY:
            self.clear()
        elif key == BACKSPACE_KEY:
            self.backspace()
        else:
            raise ValueError(f"Unknown calculator key: {key!r}")
        return self.display

    def _fold(self) -> None:
        result = apply(self.pending_operator, self.previous_value or 0.0, self.value)
        self.previous_value = result
        self.display = format_number(result)
