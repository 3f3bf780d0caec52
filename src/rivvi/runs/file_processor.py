"""
Patient-list upload processing.

Turns an uploaded CSV/TSV file into run rows: columns are matched against the
campaign template's variable configuration, cells are transformed, patients
are validated and resolved (found or created) once per file, and rows that
cannot be used are reported with their line number.
"""

import base64
import binascii
import csv
import io
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any
from uuid import UUID

import anyio

from rivvi.campaigns.schemas import (
    PatientValidation,
    TransformType,
    VariableField,
    VariablesConfig,
)
from rivvi.patients.hashing import clean_phone, generate_patient_hash
from rivvi.patients.service import PatientService
from rivvi.runs.transforms import parse_birth_date, transform_value
from rivvi.shared.logging import get_logger

logger = get_logger(__name__)

CANDIDATE_DELIMITERS = ",\t|;"
NO_DATA_MESSAGE = "No data found in the uploaded file"

_NON_ALNUM = re.compile(r"[^a-z0-9]")

FIRST_NAME_KEYS = ("first_name", "firstName")
LAST_NAME_KEYS = ("last_name", "lastName")
DOB_KEYS = ("dob", "date_of_birth", "dateOfBirth")
PHONE_KEYS = ("primary_phone", "phone", "phone_number", "primaryPhone", "phoneNumber")
EMR_ID_KEYS = ("emr_id", "patient_number", "emrId", "patientNumber")

# Header fragments claimed by the patient identity fields during auto-mapping
_IDENTITY_HEADER_TERMS = (
    "first name",
    "firstname",
    "first",
    "last name",
    "lastname",
    "last",
    "dob",
    "date of birth",
    "birth date",
    "phone",
    "phone number",
    "primaryphone",
    "primary phone",
    "mobile",
    "cell",
)


class FileProcessingError(Exception):
    """Raised when an uploaded file cannot be read at all."""


@dataclass
class ValidRow:
    patient_id: UUID | None
    patient_hash: str | None
    variables: dict[str, Any]


@dataclass
class InvalidRow:
    index: int
    error: str
    raw_data: dict[str, str]


@dataclass
class ProcessingResult:
    valid_rows: list[ValidRow] = field(default_factory=list)
    invalid_rows: list[InvalidRow] = field(default_factory=list)
    stats: dict[str, int] = field(
        default_factory=lambda: {
            "total_rows": 0,
            "valid_rows": 0,
            "invalid_rows": 0,
            "unique_patients": 0,
            "duplicate_patients": 0,
            "new_patients": 0,
            "existing_patients": 0,
        }
    )
    column_mappings: dict[str, str] = field(default_factory=dict)
    matched_columns: list[str] = field(default_factory=list)
    unmatched_columns: list[str] = field(default_factory=list)


class RowError(ValueError):
    """A single row cannot become a run row."""


def normalize_column(name: str) -> str:
    return _NON_ALNUM.sub("", name.lower())


def decode_file_content(file_content: str) -> str:
    """Return the text of an upload, decoding ``data:`` base64 URLs."""
    if not file_content.startswith("data:"):
        return file_content
    _, _, payload = file_content.partition(",")
    if not payload:
        raise FileProcessingError("Invalid base64 content")
    try:
        return base64.b64decode(payload, validate=False).decode("utf-8-sig")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise FileProcessingError(f"Invalid base64 content: {e}") from e


def parse_file_content(file_content: str, file_name: str) -> tuple[list[str], list[dict[str, str]]]:
    """Parse delimited text into trimmed headers and rows.

    Raises:
        FileProcessingError: If the file is not delimited text or holds no rows.
    """
    if file_name.lower().endswith((".xlsx", ".xls")):
        raise FileProcessingError("Spreadsheet files are not supported; upload a CSV or TSV export")

    text = decode_file_content(file_content).lstrip("\ufeff")
    if not text.strip():
        raise FileProcessingError(NO_DATA_MESSAGE)

    try:
        dialect = csv.Sniffer().sniff(text[:4096], delimiters=CANDIDATE_DELIMITERS)
        delimiter = dialect.delimiter
    except csv.Error:
        delimiter = "\t" if file_name.lower().endswith(".tsv") else ","

    reader = csv.reader(io.StringIO(text), delimiter=delimiter)
    try:
        records = [r for r in reader if any(cell.strip() for cell in r)]
    except csv.Error as e:
        raise FileProcessingError(f"Failed to parse file: {e}") from e

    if len(records) < 2:
        raise FileProcessingError(NO_DATA_MESSAGE)

    headers = [h.strip() for h in records[0]]
    rows = [
        {header: (cells[i].strip() if i < len(cells) else "") for i, header in enumerate(headers) if header}
        for cells in records[1:]
    ]
    return [h for h in headers if h], rows


def find_matching_column(headers: list[str], possible_columns: list[str]) -> str | None:
    """Find the header that best matches any of a field's candidate names.

    Three passes, first hit wins: exact match after normalization; every word
    (longer than two letters) of a candidate found in the header; a
    normalized candidate longer than three letters contained in the header.
    """
    if not headers or not possible_columns:
        return None
    normalized = [(h, normalize_column(h)) for h in headers]

    for column in possible_columns:
        target = normalize_column(column)
        for original, norm in normalized:
            if norm == target or original.lower() == column.lower():
                return original

    for column in possible_columns:
        words = column.lower().split()
        for original, norm in normalized:
            if words and all(len(w) > 2 and w in norm for w in words):
                return original

    for column in possible_columns:
        target = normalize_column(column)
        if len(target) <= 3:
            continue
        for original, norm in normalized:
            if target in norm:
                return original

    return None


def auto_variables_config(headers: list[str]) -> VariablesConfig:
    """Build a mapping for a template without variable configuration.

    Patient identity columns map to the patient fields; every other header
    becomes a campaign field keyed by its snake-cased name.
    """
    patient_fields = [
        VariableField(
            key="first_name",
            label="First Name",
            possible_columns=["first name", "firstname", "first"],
            required=True,
            transform=TransformType.TEXT,
        ),
        VariableField(
            key="last_name",
            label="Last Name",
            possible_columns=["last name", "lastname", "last"],
            required=True,
            transform=TransformType.TEXT,
        ),
        VariableField(
            key="dob",
            label="Date of Birth",
            possible_columns=["dob", "date of birth", "birth date"],
            required=True,
            transform=TransformType.SHORT_DATE,
        ),
        VariableField(
            key="primary_phone",
            label="Phone Number",
            possible_columns=["phone", "phone number", "primaryphone", "primary phone", "mobile", "cell"],
            required=True,
            transform=TransformType.PHONE,
        ),
    ]
    campaign_fields = [
        VariableField(
            key=_NON_ALNUM.sub("_", header.lower()),
            label=header,
            possible_columns=[header],
            transform=TransformType.TEXT,
        )
        for header in headers
        if not any(term in header.lower() for term in _IDENTITY_HEADER_TERMS)
    ]
    config = VariablesConfig()
    config.patient.fields = patient_fields
    config.campaign.fields = campaign_fields
    return config


def extract_fields(
    row: dict[str, str],
    headers: list[str],
    fields: list[VariableField],
) -> tuple[dict[str, Any], dict[str, str], list[str]]:
    """Pull and transform the configured fields out of one row.

    Returns:
        Tuple of (values by field key, matched column by field key,
        labels of required fields with no matching column).
    """
    values: dict[str, Any] = {}
    mappings: dict[str, str] = {}
    missing: list[str] = []
    for f in fields:
        column = find_matching_column(headers, f.possible_columns)
        if column is None:
            if f.required:
                missing.append(f.label or f.key)
            continue
        mappings[f.key] = column
        values[f.key] = transform_value(row.get(column), f.transform)
    return values, mappings, missing


def _first(data: dict[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if data.get(key):
            return data[key]
    return None


def _is_valid_dob(value: Any) -> bool:
    try:
        return parse_birth_date(str(value)) is not None
    except ValueError:
        return False


def validate_patient_data(data: dict[str, Any], validation: PatientValidation) -> str | None:
    """Apply the template's patient validation flags; return the joined errors."""
    errors: list[str] = []

    if validation.require_valid_phone:
        phone = _first(data, PHONE_KEYS)
        if not phone:
            errors.append("Valid phone number is required")
        elif len(clean_phone(str(phone))) < 7:
            errors.append(f"Phone number {phone} does not appear to be valid (needs at least 7 digits)")

    if validation.require_valid_dob:
        dob = _first(data, DOB_KEYS)
        if not dob:
            errors.append("Date of birth is required")
        elif not _is_valid_dob(dob):
            errors.append(f'Date of birth "{dob}" is not a valid date')

    if validation.require_name:
        if not _first(data, FIRST_NAME_KEYS) and not _first(data, LAST_NAME_KEYS):
            errors.append("At least one name field (first or last name) is required")

    return "; ".join(errors) or None


class FileProcessor:
    """Processes an uploaded patient list for one organization."""

    def __init__(self, patient_service: PatientService) -> None:
        self._patients = patient_service

    async def process(
        self,
        file_content: str,
        file_name: str,
        variables_config: VariablesConfig | dict[str, Any] | None,
        org_id: UUID,
    ) -> ProcessingResult:
        headers, rows = await anyio.to_thread.run_sync(parse_file_content, file_content, file_name)

        config = (
            variables_config
            if isinstance(variables_config, VariablesConfig)
            else VariablesConfig.model_validate(variables_config or {})
        )
        if not config.patient.fields and not config.campaign.fields:
            logger.info("Template has no variable mapping, auto-mapping columns", extra={"headers": headers})
            config = auto_variables_config(headers)

        result = ProcessingResult()
        result.stats["total_rows"] = len(rows)
        matched: set[str] = set()
        seen_hashes: dict[str, UUID | None] = {}

        for i, row in enumerate(rows):
            try:
                valid = await self._process_row(row, headers, config, org_id, seen_hashes, result, matched)
            except RowError as e:
                result.invalid_rows.append(InvalidRow(index=i + 2, error=str(e), raw_data=row))
                result.stats["invalid_rows"] += 1
                continue
            result.valid_rows.append(valid)
            result.stats["valid_rows"] += 1

        result.matched_columns = [h for h in headers if h in matched]
        result.unmatched_columns = [h for h in headers if h not in matched]

        logger.info(
            "Patient list processed",
            extra={
                "org_id": str(org_id),
                "file_name": file_name,
                **result.stats,
                "unmatched_columns": result.unmatched_columns,
            },
        )
        return result

    async def _process_row(
        self,
        row: dict[str, str],
        headers: list[str],
        config: VariablesConfig,
        org_id: UUID,
        seen_hashes: dict[str, UUID | None],
        result: ProcessingResult,
        matched: set[str],
    ) -> ValidRow:
        patient_data, patient_columns, missing = extract_fields(row, headers, config.patient.fields)
        matched.update(patient_columns.values())
        result.column_mappings.update(patient_columns)
        if missing:
            raise RowError(f"Missing required patient fields: {', '.join(missing)}")

        error = validate_patient_data(patient_data, config.patient.validation)
        if error:
            raise RowError(error)

        campaign_data, campaign_columns, missing = extract_fields(row, headers, config.campaign.fields)
        matched.update(campaign_columns.values())
        result.column_mappings.update(campaign_columns)
        if missing:
            raise RowError(f"Missing required campaign fields: {', '.join(missing)}")

        variables = {**patient_data, **campaign_data}
        first_name = _first(patient_data, FIRST_NAME_KEYS)
        last_name = _first(patient_data, LAST_NAME_KEYS)
        dob_value = _first(patient_data, DOB_KEYS)
        phone = _first(patient_data, PHONE_KEYS)
        if not (first_name and last_name and dob_value and phone):
            return ValidRow(patient_id=None, patient_hash=None, variables=variables)

        dob = self._parse_dob(dob_value)
        patient_hash = generate_patient_hash(str(first_name), str(last_name), dob, str(phone))
        if patient_hash in seen_hashes:
            result.stats["duplicate_patients"] += 1
            return ValidRow(patient_id=seen_hashes[patient_hash], patient_hash=patient_hash, variables=variables)

        result.stats["unique_patients"] += 1
        emr_id = _first(patient_data, EMR_ID_KEYS)
        patient, is_new = await self._patients.find_or_create(
            first_name=str(first_name),
            last_name=str(last_name),
            dob=dob,
            phone=str(phone),
            org_id=org_id,
            emr_id=str(emr_id) if emr_id else None,
        )
        seen_hashes[patient_hash] = patient.id
        result.stats["new_patients" if is_new else "existing_patients"] += 1
        return ValidRow(patient_id=patient.id, patient_hash=patient_hash, variables=variables)

    @staticmethod
    def _parse_dob(value: Any) -> date:
        try:
            parsed = parse_birth_date(str(value))
        except ValueError:
            parsed = None
        if parsed is None:
            raise RowError(f'Patient record error: date of birth "{value}" is not a valid date')
        return parsed
