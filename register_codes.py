"""Register code and serial range arithmetic for production lots.

A lot is labelled with four single-character codes. The first three form a
fixed base; the fourth advances by one character for every 1000 units, so a
lot of 2500 units starting at ``"ABC1"`` spans ``ABC1``, ``ABC2`` and
``ABC3``. Serial numbers run contiguously from the lab result serial.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

UNITS_PER_CODE = 1000

_CHARACTER_CLASSES = (("0", "9"), ("A", "Z"), ("a", "z"))


class RegisterCodeError(ValueError):
    """Raised when a register code cannot be derived from the lot codes."""


@dataclass(frozen=True)
class RegisterRange:
    start_code: str
    end_code: str
    start_serial: int
    end_serial: int
    quantity: int
    increment: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_code": self.start_code,
            "end_code": self.end_code,
            "start_serial": self.start_serial,
            "end_serial": self.end_serial,
            "quantity": self.quantity,
            "increment": self.increment,
        }


def coerce_count(value: Any) -> int:
    """Return ``value`` as a non-negative integer, or 0 when it is not one."""

    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, float):
        if not value.is_integer():
            return 0
        value = int(value)
    if isinstance(value, int):
        return value if value > 0 else 0
    text = str(value).strip()
    if not (text.isascii() and text.isdigit()):
        return 0
    return int(text)


def _character_class(char: str) -> tuple[str, str]:
    for low, high in _CHARACTER_CLASSES:
        if low <= char <= high:
            return low, high
    raise RegisterCodeError(f"Code character {char!r} must be a letter or a digit.")


def shift_code_character(code_4: str, increment: int) -> str:
    if not isinstance(code_4, str) or len(code_4) != 1:
        raise RegisterCodeError("code_4 must be a single character.")
    _, high = _character_class(code_4)
    shifted = ord(code_4) + increment
    if shifted > ord(high):
        raise RegisterCodeError(
            f"Lot needs {increment} code steps from {code_4!r}, which runs past {high!r}."
        )
    return chr(shifted)


def code_base(code_1: str, code_2: str, code_3: str) -> str:
    base = f"{code_1 or ''}{code_2 or ''}{code_3 or ''}"
    if len(base) != 3:
        raise RegisterCodeError("code_1, code_2 and code_3 must each be one character.")
    return base


def register_code_for(code_1: str, code_2: str, code_3: str, code_4: str, offset: int) -> str:
    """Code printed on the unit at the 0-based ``offset`` within the lot."""

    if offset < 0:
        raise RegisterCodeError("Register offset cannot be negative.")
    return code_base(code_1, code_2, code_3) + shift_code_character(code_4, offset // UNITS_PER_CODE)


def compute_register_range(
    code_1: str,
    code_2: str,
    code_3: str,
    code_4: str,
    quantity: Any,
    serial_start: Any,
) -> RegisterRange:
    quantity_value = coerce_count(quantity)
    start_serial = coerce_count(serial_start)
    increment = (quantity_value - 1) // UNITS_PER_CODE if quantity_value > 0 else 0

    base = code_base(code_1, code_2, code_3)
    start_code = base + shift_code_character(code_4, 0)
    end_code = base + shift_code_character(code_4, increment)

    end_serial = 0
    if quantity_value and start_serial:
        end_serial = start_serial + quantity_value - 1

    return RegisterRange(
        start_code=start_code,
        end_code=end_code,
        start_serial=start_serial,
        end_serial=end_serial,
        quantity=quantity_value,
        increment=increment,
    )


__all__ = [
    "RegisterCodeError",
    "RegisterRange",
    "UNITS_PER_CODE",
    "code_base",
    "coerce_count",
    "compute_register_range",
    "register_code_for",
    "shift_code_character",
]
