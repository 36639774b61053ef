import re

import phonenumbers

DEFAULT_REGION = "GN"


def normalize_phone(phone: str | None) -> str | None:
    """E.164 digits without the plus sign, e.g. 224621000000."""
    if not phone:
        return None

    cleaned = re.sub(r"[^\d+]", "", phone.strip())
    if cleaned.startswith("00"):
        cleaned = "+" + cleaned[2:]

    try:
        parsed = phonenumbers.parse(cleaned, DEFAULT_REGION)
    except phonenumbers.NumberParseException:
        return None
    if not phonenumbers.is_possible_number(parsed):
        return None
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164).lstrip("+")


def mask_phone(phone: str | None) -> str | None:
    if not phone:
        return None
    digits = re.sub(r"\D", "", phone)
    if len(digits) <= 8:
        return "*" * len(digits)
    return f"{digits[:6]}****{digits[-2:]}"
