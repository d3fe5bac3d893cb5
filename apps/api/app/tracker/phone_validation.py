from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol

from app.core.config import get_settings


OWN_NUMBER_MESSAGE = (
    "You cannot use your own mobile number as a customer number. "
    "Please enter the customer's actual contact number."
)

_NON_DIGITS = re.compile(r"\D")


@dataclass(frozen=True)
class PhoneCheck:
    is_valid: bool
    message: str = ""


class PhoneNumberPolicy(Protocol):
    def check(self, number: str | None, username: str | None) -> PhoneCheck: ...


class ReservedNumberPolicy:
    """Rejects a customer number that is the acting user's own registered number."""

    def __init__(self, reserved: Mapping[str, str] | None = None) -> None:
        self._reserved = dict(reserved) if reserved is not None else None

    @property
    def reserved(self) -> dict[str, str]:
        if self._reserved is not None:
            return self._reserved
        return dict(get_settings().reserved_phone_numbers)

    def check(self, number: str | None, username: str | None) -> PhoneCheck:
        if not number or not username:
            return PhoneCheck(is_valid=True)
        own_number = self.reserved.get(username)
        if not own_number:
            return PhoneCheck(is_valid=True)
        if _NON_DIGITS.sub("", number) == _NON_DIGITS.sub("", own_number):
            return PhoneCheck(is_valid=False, message=OWN_NUMBER_MESSAGE)
        return PhoneCheck(is_valid=True)
