from __future__ import annotations

import re
from dataclasses import dataclass

from .errors import AddressError

WHATSAPP_JID_SUFFIX = "@c.us"
DEFAULT_COUNTRY_CODE = "62"
MIN_DIGITS = 10
MAX_DIGITS = 15


@dataclass(frozen=True, slots=True)
class OutboundAddress:
    """Canonical recipient identifier understood by the transport."""

    jid: str

    @property
    def digits(self) -> str:
        return self.jid.split("@", 1)[0]

    def __str__(self) -> str:
        return self.jid


def _strip_digits(raw: str) -> str:
    return re.sub(r"\D", "", raw)


def is_valid_phone_number(value: str | int | None) -> bool:
    if value is None:
        return False
    digits = _strip_digits(str(value))
    return MIN_DIGITS <= len(digits) <= MAX_DIGITS


def normalize_phone_number(
    value: str | int, *, country_code: str = DEFAULT_COUNTRY_CODE
) -> OutboundAddress:
    """Normalize a raw phone number into a WhatsApp chat address.

    Parameters
    ----------
    value:
        Recipient in any human format (``0812-3456-7890``, ``+62 812...``),
        plain digits, or an existing JID (``<digits>@c.us``).
    country_code:
        Calling-code prefix substituted for a leading trunk ``0`` and
        prepended to long numbers that lack it.

    Returns
    -------
    OutboundAddress
        The canonical ``<digits>@c.us`` address. Input that already carries
        the suffix is returned unchanged.

    Raises
    ------
    AddressError
        If the number holds fewer than 10 or more than 15 digits.
    """

    if value is None:
        raise AddressError("empty")

    raw = str(value) if isinstance(value, int) else value
    if not raw.strip():
        raise AddressError("empty")

    if not is_valid_phone_number(raw):
        raise AddressError("invalid_length")

    if WHATSAPP_JID_SUFFIX in raw:
        return OutboundAddress(raw)

    digits = _strip_digits(raw)
    if digits.startswith("0"):
        digits = f"{country_code}{digits[1:]}"

    if not digits.startswith(country_code) and len(digits) > MIN_DIGITS:
        digits = f"{country_code}{digits}"

    return OutboundAddress(f"{digits}{WHATSAPP_JID_SUFFIX}")


__all__ = [
    "OutboundAddress",
    "WHATSAPP_JID_SUFFIX",
    "is_valid_phone_number",
    "normalize_phone_number",
]
