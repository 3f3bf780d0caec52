"""
Tests for patient-list parsing, column matching and file processing.
"""

import base64
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rivvi.campaigns.schemas import PatientValidation, VariablesConfig
from rivvi.organizations.models import Organization
from rivvi.patients.models import OrganizationPatient, Patient
from rivvi.patients.service import PatientService
from rivvi.runs.file_processor import (
    NO_DATA_MESSAGE,
    FileProcessingError,
    FileProcessor,
    auto_variables_config,
    find_matching_column,
    parse_file_content,
    validate_patient_data,
)

from conftest import PATIENT_CSV, VARIABLES_CONFIG


# =============================================================================
# Parsing
# =============================================================================


class TestParseFileContent:
    def test_csv(self) -> None:
        headers, rows = parse_file_content(PATIENT_CSV, "patients.csv")

        assert headers == ["First Name", "Last Name", "DOB", "Phone", "Appointment Date", "Appointment Time"]
        assert len(rows) == 2
        assert rows[0]["First Name"] == "Jane"
        assert rows[1]["Phone"] == "555-987-6543"

    def test_tsv(self) -> None:
        content = "First Name\tLast Name\tPhone\nJane\tDoe\t5551234567\n"

        headers, rows = parse_file_content(content, "patients.tsv")

        assert headers == ["First Name", "Last Name", "Phone"]
        assert rows == [{"First Name": "Jane", "Last Name": "Doe", "Phone": "5551234567"}]

    def test_base64_data_url(self) -> None:
        encoded = base64.b64encode(PATIENT_CSV.encode()).decode()

        headers, rows = parse_file_content(f"data:text/csv;base64,{encoded}", "patients.csv")

        assert "DOB" in headers
        assert len(rows) == 2

    def test_blank_lines_and_cells_are_trimmed(self) -> None:
        content = "Name , Phone\n\n  Jane ,  5551234567 \n,\n"

        headers, rows = parse_file_content(content, "patients.csv")

        assert headers == ["Name", "Phone"]
        assert rows == [{"Name": "Jane", "Phone": "5551234567"}]

    def test_header_only_file_has_no_data(self) -> None:
        with pytest.raises(FileProcessingError, match=NO_DATA_MESSAGE):
            parse_file_content("First Name,Last Name\n", "patients.csv")

    def test_empty_file(self) -> None:
        with pytest.raises(FileProcessingError, match=NO_DATA_MESSAGE):
            parse_file_content("   ", "patients.csv")

    def test_spreadsheets_rejected(self) -> None:
        with pytest.raises(FileProcessingError, match="CSV or TSV"):
            parse_file_content("PK\x03\x04", "patients.xlsx")

    def test_invalid_base64(self) -> None:
        with pytest.raises(FileProcessingError, match="Invalid base64"):
            parse_file_content("data:text/csv;base64,", "patients.csv")


class TestFindMatchingColumn:
    def test_exact_match_after_normalization(self) -> None:
        assert find_matching_column(["first_name", "Last Name"], ["First Name"]) == "first_name"

    def test_all_words_contained(self) -> None:
        assert find_matching_column(["Patient First Name", "DOB"], ["first name"]) == "Patient First Name"

    def test_substring_match_for_longer_names(self) -> None:
        assert find_matching_column(["Primary Phone Number"], ["phonenumber"]) == "Primary Phone Number"

    def test_short_names_need_exact_match(self) -> None:
        assert find_matching_column(["Address"], ["dob"]) is None

    def test_no_headers(self) -> None:
        assert find_matching_column([], ["dob"]) is None


class TestAutoVariablesConfig:
    def test_identity_columns_map_to_patient_fields(self) -> None:
        config = auto_variables_config(["First Name", "Last Name", "DOB", "Phone", "Appt Type"])

        assert [f.key for f in config.patient.fields] == ["first_name", "last_name", "dob", "primary_phone"]
        assert [f.key for f in config.campaign.fields] == ["appt_type"]
        assert config.campaign.fields[0].possible_columns == ["Appt Type"]


class TestValidatePatientData:
    def test_all_checks_pass(self) -> None:
        validation = PatientValidation(require_valid_phone=True, require_valid_dob=True, require_name=True)
        data = {"first_name": "Jane", "dob": "1980-03-15", "primary_phone": "5551234567"}

        assert validate_patient_data(data, validation) is None

    def test_errors_are_joined(self) -> None:
        validation = PatientValidation(require_valid_phone=True, require_valid_dob=True, require_name=True)

        error = validate_patient_data({"primary_phone": "123", "dob": "someday"}, validation)

        assert error == (
            "Phone number 123 does not appear to be valid (needs at least 7 digits); "
            'Date of birth "someday" is not a valid date; '
            "At least one name field (first or last name) is required"
        )

    def test_disabled_checks_skip(self) -> None:
        assert validate_patient_data({}, PatientValidation()) is None


# =============================================================================
# Processing
# =============================================================================


class TestFileProcessor:
    @pytest.mark.asyncio
    async def test_process_creates_patients_and_variables(
        self, db_session: AsyncSession, organization: Organization
    ) -> None:
        processor = FileProcessor(PatientService(db_session))

        result = await processor.process(PATIENT_CSV, "patients.csv", VARIABLES_CONFIG, organization.id)

        assert result.stats["total_rows"] == 2
        assert result.stats["valid_rows"] == 2
        assert result.stats["new_patients"] == 2
        first = result.valid_rows[0]
        assert first.patient_id is not None
        assert first.variables == {
            "first_name": "Jane",
            "last_name": "Doe",
            "dob": "1980-03-15",
            "primary_phone": "5551234567",
            "appointment_date": "Wednesday, April 2, 2025",
            "appointment_time": "14:30",
        }
        assert result.column_mappings["primary_phone"] == "Phone"
        assert result.unmatched_columns == []

        links = (
            await db_session.execute(
                select(func.count()).select_from(OrganizationPatient).where(
                    OrganizationPatient.org_id == organization.id
                )
            )
        ).scalar()
        assert links == 2

    @pytest.mark.asyncio
    async def test_existing_patient_is_reused(
        self, db_session: AsyncSession, organization: Organization, patient: Patient
    ) -> None:
        processor = FileProcessor(PatientService(db_session))

        result = await processor.process(PATIENT_CSV, "patients.csv", VARIABLES_CONFIG, organization.id)

        assert result.stats["existing_patients"] == 1
        assert result.stats["new_patients"] == 1
        assert result.valid_rows[0].patient_id == patient.id

    @pytest.mark.asyncio
    async def test_duplicates_within_file_resolve_once(
        self, db_session: AsyncSession, organization: Organization
    ) -> None:
        content = PATIENT_CSV + "jane,DOE,3/15/1980,555.123.4567,04/09/2025,10:00\n"
        processor = FileProcessor(PatientService(db_session))

        result = await processor.process(content, "patients.csv", VARIABLES_CONFIG, organization.id)

        assert result.stats["valid_rows"] == 3
        assert result.stats["unique_patients"] == 2
        assert result.stats["duplicate_patients"] == 1
        assert result.valid_rows[2].patient_id == result.valid_rows[0].patient_id
        patients = (await db_session.execute(select(func.count(Patient.id)))).scalar()
        assert patients == 2

    @pytest.mark.asyncio
    async def test_invalid_rows_report_line_numbers(
        self, db_session: AsyncSession, organization: Organization
    ) -> None:
        content = PATIENT_CSV + "Bob,Jones,01/01/1990,,04/09/2025,10:00\n"
        processor = FileProcessor(PatientService(db_session))

        result = await processor.process(content, "patients.csv", VARIABLES_CONFIG, organization.id)

        assert result.stats["invalid_rows"] == 1
        invalid = result.invalid_rows[0]
        assert invalid.index == 4
        assert invalid.error == "Valid phone number is required"
        assert invalid.raw_data["First Name"] == "Bob"

    @pytest.mark.asyncio
    async def test_out_of_range_date_is_an_invalid_row(
        self, db_session: AsyncSession, organization: Organization
    ) -> None:
        content = PATIENT_CSV + "Bob,Roe,99999999,5559876543,04/09/2025,10:00\n"
        processor = FileProcessor(PatientService(db_session))

        result = await processor.process(content, "patients.csv", VARIABLES_CONFIG, organization.id)

        assert len(result.valid_rows) == 2
        assert result.stats["invalid_rows"] == 1
        invalid = result.invalid_rows[0]
        assert invalid.index == 4
        assert invalid.error == 'Date of birth "99999999" is not a valid date'

    @pytest.mark.asyncio
    async def test_missing_required_column(
        self, db_session: AsyncSession, organization: Organization
    ) -> None:
        content = "First Name,Last Name,Phone\nJane,Doe,5551234567\n"
        processor = FileProcessor(PatientService(db_session))

        result = await processor.process(content, "patients.csv", VARIABLES_CONFIG, organization.id)

        assert result.valid_rows == []
        assert result.invalid_rows[0].error == "Missing required patient fields: Date of Birth"

    @pytest.mark.asyncio
    async def test_empty_config_auto_maps_columns(self, db_session: AsyncSession) -> None:
        org_id = uuid4()
        processor = FileProcessor(PatientService(db_session))

        result = await processor.process(PATIENT_CSV, "patients.csv", VariablesConfig(), org_id)

        assert result.stats["valid_rows"] == 2
        assert result.valid_rows[0].variables["appointment_date"] == "04/02/2025"
        assert result.valid_rows[0].variables["dob"] == "1980-03-15"
