"""
Phone number normalization for mobile money payers.

Accepts the three shapes users type for a local number and returns the
canonical international form ``+<country code><subscriber digits>``.
"""
import re
from dataclasses import dataclass
from typing import Optional, Sequence

DEFAULT_COUNTRY_CODE = "255"
DEFAULT_SUBSCRIBER_DIGITS = 9
DEFAULT_MOBILE_PREFIXES = ("6", "7")

_SEPARATORS = re.compile(r"[\s\-]")


@dataclass(frozen=True)
class PhoneResult:
    """Outcome of normalizing a raw phone number."""

    valid: bool
    normalized: Optional[str] = None
    shape: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def ok(cls, normalized: str, shape: str) -> "PhoneResult":
        return cls(valid=True, normalized=normalized, shape=shape)

    @classmethod
    def invalid(cls, reason: str) -> "PhoneResult":
        return cls(valid=False, reason=reason)

    @property
    def msisdn(self) -> Optional[str]:
        """Normalized number without the leading plus, as gateways expect it."""
        return self.normalized[1:] if self.normalized else None


def normalize_phone(
    raw: object,
    country_code: str = DEFAULT_COUNTRY_CODE,
    subscriber_digits: int = DEFAULT_SUBSCRIBER_DIGITS,
) -> PhoneResult:
    """
    Normalize a local phone number.

    Accepted shapes (for country code 255):
        +255XXXXXXXXX  (13 characters)
        255XXXXXXXXX   (12 characters)
        0XXXXXXXXX     (10 characters)

    Args:
        raw: User-supplied phone number
        country_code: National dialing prefix without the plus
        subscriber_digits: Digits in a subscriber number

    Returns:
        PhoneResult: normalized number, or the reason it was rejected
    """
    if raw is None or not str(raw).strip():
        return PhoneResult.invalid("Phone number is required.")

    phone = _SEPARATORS.sub("", str(raw))
    shapes = (
        (f"+{country_code}", lambda p: p),
        (country_code, lambda p: f"+{p}"),
        ("0", lambda p: f"+{country_code}{p[1:]}"),
    )

    for prefix, to_canonical in shapes:
        if not phone.startswith(prefix):
            continue
        required = len(prefix) + subscriber_digits
        if len(phone) == required and phone[len(prefix):].isdigit():
            return PhoneResult.ok(to_canonical(phone), shape=prefix)
        return PhoneResult.invalid(
            f"Phone numbers starting with {prefix} must be {required} characters long."
        )

    return PhoneResult.invalid(
        f"Use a number starting with +{country_code}, {country_code} or 0."
    )


def normalize_subscriber(
    phone9: object,
    country_code: str = DEFAULT_COUNTRY_CODE,
    subscriber_digits: int = DEFAULT_SUBSCRIBER_DIGITS,
    mobile_prefixes: Sequence[str] = DEFAULT_MOBILE_PREFIXES,
) -> PhoneResult:
    """
    Validate the subscriber digits typed into the top-up form.

    The form asks for the number without the trunk zero, so ``712345678``
    becomes ``+255712345678``.
    """
    digits = str(phone9 or "").strip()
    pattern = rf"^[1-9]\d{{{subscriber_digits - 1}}}$"
    if not re.match(pattern, digits):
        return PhoneResult.invalid(
            f"Invalid phone number. Enter {subscriber_digits} digits without a leading 0."
        )
    if mobile_prefixes and not digits.startswith(tuple(mobile_prefixes)):
        return PhoneResult.invalid(
            "Invalid phone number. Make sure it is a mobile money number."
        )
    return normalize_phone(
        f"{country_code}{digits}",
        country_code=country_code,
        subscriber_digits=subscriber_digits,
    )
