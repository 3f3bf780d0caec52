"""
Tests for patient identity hashing and phone normalization.
"""

from datetime import date

from rivvi.patients.hashing import (
    clean_phone,
    generate_patient_hash,
    generate_secondary_hash,
    is_minor,
    normalize_phone,
    phone_variants,
)


class TestPhoneNormalization:
    def test_clean_phone_strips_formatting(self) -> None:
        assert clean_phone("(555) 123-4567") == "5551234567"
        assert clean_phone(None) == ""

    def test_normalize_drops_country_code(self) -> None:
        assert normalize_phone("+1 (555) 123-4567") == "5551234567"
        assert normalize_phone("15551234567") == "5551234567"

    def test_normalize_keeps_other_lengths(self) -> None:
        assert normalize_phone("442071234567") == "442071234567"

    def test_phone_variants(self) -> None:
        assert phone_variants("555-123-4567") == ["5551234567", "15551234567", "+15551234567"]
        assert phone_variants("") == []


class TestPatientHash:
    def test_hash_ignores_case_whitespace_and_phone_formatting(self) -> None:
        first = generate_patient_hash("Jane", "Doe", date(1980, 3, 15), "(555) 123-4567")
        second = generate_patient_hash(" jane", "DOE ", "1980-03-15", "555.123.4567")

        assert first == second
        assert len(first) == 64

    def test_hash_uses_first_three_letters_of_first_name(self) -> None:
        assert generate_patient_hash("Jane", "Doe", date(1980, 3, 15), "5551234567") == (
            generate_patient_hash("Janet", "Doe", date(1980, 3, 15), "5551234567")
        )

    def test_hash_differs_for_other_birth_date(self) -> None:
        assert generate_patient_hash("Jane", "Doe", date(1980, 3, 15), "5551234567") != (
            generate_patient_hash("Jane", "Doe", date(1980, 3, 16), "5551234567")
        )

    def test_secondary_hash_uses_last_four_digits(self) -> None:
        assert generate_secondary_hash("Doe", date(1980, 3, 15), "5551234567") == (
            generate_secondary_hash("doe", date(1980, 3, 15), "+1 999 888 4567")
        )


class TestIsMinor:
    def test_under_eighteen(self) -> None:
        assert is_minor(date(2008, 10, 19), today=date(2026, 10, 18)) is True

    def test_eighteenth_birthday(self) -> None:
        assert is_minor(date(2008, 10, 18), today=date(2026, 10, 18)) is False
