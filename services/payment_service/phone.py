import re

_NON_DIGITS = re.compile(r"[^0-9]")
_MSISDN = re.compile(r"^254\d{9}$")


def normalize_phone(raw) -> str | None:
    """Normalise a Kenyan mobile number to the 2547XXXXXXXX form Daraja expects.

    Accepts 07XXXXXXXX / 01XXXXXXXX, 7XXXXXXXX / 1XXXXXXXX and 254XXXXXXXXX,
    with any spaces, dashes or a leading '+'. Anything else gives None.
    """
    if raw is None or isinstance(raw, bool):
        return None
    digits = _NON_DIGITS.sub("", str(raw).strip())

    if len(digits) == 10 and digits.startswith("0"):
        digits = "254" + digits[1:]
    elif len(digits) == 9 and digits[0] in "71":
        digits = "254" + digits

    return digits if _MSISDN.match(digits) else None
