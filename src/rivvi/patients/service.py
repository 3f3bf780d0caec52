"""
Patient service: deduplication, organization linking and lookups.
"""

from datetime import date
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from rivvi.calls.schemas import CallResponse
from rivvi.patients.hashing import (
    clean_phone,
    generate_patient_hash,
    generate_secondary_hash,
    is_minor,
    normalize_phone,
    phone_variants,
)
from rivvi.patients.models import Patient
from rivvi.patients.repository import PatientRepository
from rivvi.patients.schemas import (
    PatientCreate,
    PatientDetail,
    PatientListItem,
    PatientResponse,
    PatientUpdate,
)
from rivvi.shared.exceptions import ConflictError, NotFoundError
from rivvi.shared.logging import get_logger

logger = get_logger(__name__)


class PatientService:
    """Service for patient business logic."""

    def __init__(self, session: AsyncSession, repository: PatientRepository | None = None) -> None:
        self._session = session
        self._repository = repository or PatientRepository(session)

    async def find_or_create(
        self,
        first_name: str,
        last_name: str,
        dob: date,
        phone: str,
        org_id: UUID,
        emr_id: str | None = None,
        secondary_phone: str | None = None,
    ) -> tuple[Patient, bool]:
        """Match a patient by hash, then by phone and last name, else create one.

        The patient is linked to ``org_id`` when it is not already.

        Returns:
            Tuple of (patient, is_new).
        """
        patient, is_new, _ = await self._resolve(
            first_name, last_name, dob, phone, org_id, emr_id, secondary_phone
        )
        return patient, is_new

    async def _resolve(
        self,
        first_name: str,
        last_name: str,
        dob: date,
        phone: str,
        org_id: UUID,
        emr_id: str | None,
        secondary_phone: str | None,
    ) -> tuple[Patient, bool, bool]:
        first_name = first_name.strip()
        last_name = last_name.strip()
        primary_phone = clean_phone(phone)
        normalized = normalize_phone(phone)
        patient_hash = generate_patient_hash(first_name, last_name, dob, phone)

        patient = await self._repository.get_by_hash(patient_hash)
        if patient is None and normalized:
            patient = await self._repository.get_by_phone_and_last_name(normalized, last_name)

        is_new = patient is None
        if patient is None:
            patient = await self._repository.create(
                Patient(
                    patient_hash=patient_hash,
                    secondary_hash=generate_secondary_hash(last_name, dob, phone),
                    normalized_phone=normalized,
                    first_name=first_name,
                    last_name=last_name,
                    dob=dob,
                    is_minor=is_minor(dob),
                    primary_phone=primary_phone,
                    secondary_phone=clean_phone(secondary_phone) or None,
                    external_ids={str(org_id): emr_id} if emr_id else None,
                )
            )
            logger.info("Patient created", extra={"patient_id": str(patient.id), "org_id": str(org_id)})
        else:
            if normalize_phone(patient.primary_phone) != normalized:
                patient.secondary_phone = patient.primary_phone
                patient.primary_phone = primary_phone
                patient.normalized_phone = normalized
            elif secondary_phone:
                patient.secondary_phone = clean_phone(secondary_phone)
            patient.first_name = first_name
            patient.last_name = last_name
            patient.dob = dob
            patient.is_minor = is_minor(dob)
            patient.patient_hash = patient_hash
            patient.secondary_hash = generate_secondary_hash(last_name, dob, phone)
            if emr_id:
                patient.external_ids = {**(patient.external_ids or {}), str(org_id): emr_id}
            await self._repository.save(patient)

        link = await self._repository.get_link(org_id, patient.id)
        already_linked = link is not None
        if link is None:
            await self._repository.link(org_id, patient.id, emr_id)
        elif emr_id and link.emr_id_in_org != emr_id:
            link.emr_id_in_org = emr_id
            await self._session.flush()

        return patient, is_new, already_linked

    async def find_by_phone(self, phone: str, org_id: UUID | None = None) -> Patient | None:
        """Find a patient by any stored form of a phone number.

        A patient linked to ``org_id`` wins over other matches.
        """
        variants = phone_variants(phone)
        if not variants:
            return None
        candidates = list(await self._repository.find_by_phone_variants(variants))
        if not candidates:
            return None
        if org_id is not None:
            linked = await self._repository.linked_patient_ids(org_id, [p.id for p in candidates])
            for candidate in candidates:
                if candidate.id in linked:
                    return candidate
        return candidates[0]

    async def search_by_phone(self, org_id: UUID, phone: str) -> Patient | None:
        patient = await self.find_by_phone(phone, org_id)
        if patient is None or await self._repository.get_link(org_id, patient.id) is None:
            return None
        return patient

    async def get_all(
        self,
        org_id: UUID,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[PatientListItem], int]:
        rows, total = await self._repository.list_for_org(org_id, search, limit, offset)
        items = [
            PatientListItem(
                **PatientResponse.model_validate(patient).model_dump(),
                emr_id=emr_id,
                call_count=call_count,
            )
            for patient, emr_id, call_count in rows
        ]
        return items, total

    async def _get_linked(self, org_id: UUID, patient_id: UUID) -> tuple[Patient, str | None]:
        link = await self._repository.get_link(org_id, patient_id)
        patient = await self._repository.get_by_id(patient_id) if link else None
        if patient is None or link is None:
            raise NotFoundError(
                f"Patient with ID {patient_id} not found",
                {"patient_id": str(patient_id)},
            )
        return patient, link.emr_id_in_org

    async def get_by_id(self, org_id: UUID, patient_id: UUID) -> PatientDetail:
        patient, emr_id = await self._get_linked(org_id, patient_id)
        calls = await self._repository.recent_calls(org_id, patient_id)
        return PatientDetail(
            **PatientResponse.model_validate(patient).model_dump(),
            emr_id=emr_id,
            recent_calls=[CallResponse.model_validate(c) for c in calls],
        )

    async def create(self, org_id: UUID, data: PatientCreate) -> Patient:
        patient, is_new, already_linked = await self._resolve(
            data.first_name,
            data.last_name,
            data.dob,
            data.primary_phone,
            org_id,
            data.emr_id,
            data.secondary_phone,
        )
        if not is_new and already_linked:
            raise ConflictError(
                "Patient already exists in this organization",
                {"patient_id": str(patient.id)},
            )
        return patient

    async def update(self, org_id: UUID, patient_id: UUID, data: PatientUpdate) -> Patient:
        patient, _ = await self._get_linked(org_id, patient_id)
        update_data = data.model_dump(exclude_unset=True)
        emr_id = update_data.pop("emr_id", None)

        for field in ("first_name", "last_name", "dob"):
            if update_data.get(field) is not None:
                setattr(patient, field, update_data[field])
        if update_data.get("primary_phone"):
            patient.primary_phone = clean_phone(update_data["primary_phone"])
            patient.normalized_phone = normalize_phone(update_data["primary_phone"])
        if "secondary_phone" in update_data:
            patient.secondary_phone = clean_phone(update_data["secondary_phone"]) or None

        new_hash = generate_patient_hash(
            patient.first_name, patient.last_name, patient.dob, patient.primary_phone
        )
        if new_hash != patient.patient_hash:
            other = await self._repository.get_by_hash(new_hash)
            if other is not None and other.id != patient.id:
                raise ConflictError(
                    "Another patient already has these details",
                    {"patient_id": str(other.id)},
                )
        patient.patient_hash = new_hash
        patient.secondary_hash = generate_secondary_hash(
            patient.last_name, patient.dob, patient.primary_phone
        )
        patient.is_minor = is_minor(patient.dob)

        if emr_id is not None:
            link = await self._repository.get_link(org_id, patient_id)
            if link is not None:
                link.emr_id_in_org = emr_id
            patient.external_ids = {**(patient.external_ids or {}), str(org_id): emr_id}

        patient = await self._repository.save(patient)
        logger.info("Patient updated", extra={"patient_id": str(patient.id), "org_id": str(org_id)})
        return patient
