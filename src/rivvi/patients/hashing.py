"""
Patient identity hashing and phone normalization.

Two patient rows describe the same person when their primary hash matches. The
secondary hash (last name, birth date, last four phone digits) is stored for
looser matching.
"""

import hashlib
import re
from datetime import date

_NON_DIGITS = re.compile(r"\D")


def clean_phone(phone: str | None) -> str:
    """Strip everything but digits."""
    return _NON_DIGITS.sub("", phone or "")


def normalize_phone(phone: str | None) -> str:
    """Digits only, without the North American country code."""
    digits = clean_phone(phone)
    if len(digits) == 11 and digits.startswith("1"):
        return digits[1:]
    return digits


def phone_variants(phone: str | None) -> list[str]:
    """Stored representations a phone number may have been saved under."""
    normalized = normalize_phone(phone)
    if not normalized:
        return []
    variants = [normalized, f"1{normalized}", f"+1{normalized}"]
    cleaned = clean_phone(phone)
    if cleaned not in variants:
        variants.append(cleaned)
    return variants


def _dob_digits(dob: date | str) -> str:
    value = dob.isoformat() if isinstance(dob, date) else str(dob)
    return _NON_DIGITS.sub("", value)


def generate_patient_hash(first_name: str, last_name: str, dob: date | str, phone: str) -> str:
    phone_digits = clean_phone(phone)[:10]
    first = first_name.lower().strip()[:3]
    last = last_name.lower().strip()
    hash_input = f"{phone_digits}-{_dob_digits(dob)}-{first}-{last}"
    return hashlib.sha256(hash_input.encode()).hexdigest()


def generate_secondary_hash(last_name: str, dob: date | str, phone: str) -> str:
    phone_digits = clean_phone(phone)[-4:]
    hash_input = f"{last_name.lower().strip()}-{_dob_digits(dob)}-{phone_digits}"
    return hashlib.sha256(hash_input.encode()).hexdigest()


def is_minor(dob: date, today: date | None = None) -> bool:
    """Whether the patient is under 18 in whole years."""
    today = today or date.today()
    age = today.year - dob.year - ((today.month, today.day) < (dob.month, dob.day))
    return age < 18
