"""
Filename hint detection - password, account number and bank name.
Statement files are routinely named after the account and carry the PDF
password in the name; these hints drive bank matching and unlocking.
"""

import re
from typing import Optional

from statement_recon.schemas.batches import DetectedInfo


PASSWORD_INDICATORS = [
    "password", "passcode", "pswd", "pword", "pass", "pwd",
    "p w", "p-w", "p_w", "pw",
]

# Kenyan bank names, most specific first so "kcb bank" wins over "kcb"
BANK_NAME_PATTERNS = [
    "standard chartered", "stanchart", "scb",
    "diamond trust", "dtb",
    "i&m bank", "im bank", "i&m",
    "bank of africa", "boa",
    "cooperative bank", "co-operative bank", "coop bank", "cooperative", "coop",
    "equity bank", "equity",
    "kcb bank", "kcb",
    "stanbic bank", "stanbic",
    "absa bank", "absa",
    "barclays bank", "barclays",
    "ncba bank", "ncba",
    "cba bank", "cba",
    "family bank", "family",
    "gulf african bank", "gulf",
    "united bank for africa", "uba",
    "prime bank", "prime",
    "credit bank",
    "eco bank", "ecobank",
    "sidian bank", "sidian",
    "national bank", "nbk",
]

_ACCOUNT_NUMBER = re.compile(r"\d{5,}|\d{2,}[-\s]\d{2,}[-\s]\d{2,}")
_PASSWORD_AFTER_INDICATOR = re.compile(r"^[\s\-_:=]*([0-9A-Za-z]*[0-9][0-9A-Za-z]*)")


def _stem(filename: str) -> str:
    return re.sub(r"\.[A-Za-z0-9]{2,4}$", "", filename)


def detect_password_from_filename(filename: str) -> Optional[str]:
    """Password written after an indicator word, e.g. 'KCB Jan pw 1234.pdf' -> '1234'."""
    if not filename:
        return None
    stem = _stem(filename)
    lower = stem.lower()

    for indicator in PASSWORD_INDICATORS:
        for m in re.finditer(re.escape(indicator), lower):
            if m.start() > 0 and lower[m.start() - 1].isalpha():
                continue
            after = stem[m.end():]
            found = _PASSWORD_AFTER_INDICATOR.match(after)
            if found:
                return found.group(1)
    return None


def detect_account_number_from_filename(filename: str) -> Optional[str]:
    """First digit run that looks like an account number (5+ digits, or grouped digits)."""
    if not filename:
        return None
    m = _ACCOUNT_NUMBER.search(_stem(filename))
    return m.group(0) if m else None


def detect_bank_name_from_filename(filename: str) -> Optional[str]:
    if not filename:
        return None
    lower = _stem(filename).lower().replace("_", " ")
    for bank in BANK_NAME_PATTERNS:
        if re.search(rf"(?<![a-z]){re.escape(bank)}(?![a-z])", lower):
            return bank
    return None


def detect_filename_hints(filename: str) -> DetectedInfo:
    password = detect_password_from_filename(filename)
    account_number = detect_account_number_from_filename(filename)
    # A password that is also the only digit run is not an account number
    if account_number and password and account_number == password:
        stem = _stem(filename)
        others = [m.group(0) for m in _ACCOUNT_NUMBER.finditer(stem) if m.group(0) != password]
        account_number = others[0] if others else None
    return DetectedInfo(
        password=password,
        account_number=account_number,
        bank_name=detect_bank_name_from_filename(filename),
    )
