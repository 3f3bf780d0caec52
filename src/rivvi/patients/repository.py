"""
Patient repository for database operations.
"""

from typing import Sequence
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from rivvi.calls.models import Call
from rivvi.patients.models import OrganizationPatient, Patient


class PatientRepository:
    """Repository for patients and their organization links."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, patient_id: UUID) -> Patient | None:
        return await self._session.get(Patient, patient_id)

    async def get_by_hash(self, patient_hash: str) -> Patient | None:
        stmt = select(Patient).where(Patient.patient_hash == patient_hash)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def get_by_phone_and_last_name(self, normalized_phone: str, last_name: str) -> Patient | None:
        stmt = (
            select(Patient)
            .where(
                Patient.normalized_phone == normalized_phone,
                func.lower(Patient.last_name) == last_name.lower().strip(),
            )
            .order_by(Patient.created_at)
            .limit(1)
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def find_by_phone_variants(self, variants: list[str]) -> Sequence[Patient]:
        stmt = select(Patient).where(
            or_(
                Patient.normalized_phone.in_(variants),
                Patient.primary_phone.in_(variants),
                Patient.secondary_phone.in_(variants),
            )
        )
        return (await self._session.execute(stmt)).scalars().all()

    async def create(self, patient: Patient) -> Patient:
        self._session.add(patient)
        await self._session.flush()
        await self._session.refresh(patient)
        return patient

    async def save(self, patient: Patient) -> Patient:
        await self._session.flush()
        await self._session.refresh(patient)
        return patient

    async def get_link(self, org_id: UUID, patient_id: UUID) -> OrganizationPatient | None:
        return await self._session.get(OrganizationPatient, (org_id, patient_id))

    async def linked_patient_ids(self, org_id: UUID, patient_ids: list[UUID]) -> set[UUID]:
        if not patient_ids:
            return set()
        stmt = select(OrganizationPatient.patient_id).where(
            OrganizationPatient.org_id == org_id,
            OrganizationPatient.patient_id.in_(patient_ids),
        )
        return set((await self._session.execute(stmt)).scalars().all())

    async def link(self, org_id: UUID, patient_id: UUID, emr_id: str | None = None) -> OrganizationPatient:
        link = OrganizationPatient(org_id=org_id, patient_id=patient_id, emr_id_in_org=emr_id)
        self._session.add(link)
        await self._session.flush()
        return link

    async def list_for_org(
        self,
        org_id: UUID,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[tuple[Patient, str | None, int]], int]:
        """Patients linked to an organization with their EMR id and call count.

        Returns:
            Tuple of ([(patient, emr_id, call_count)], total count).
        """
        conditions = [OrganizationPatient.org_id == org_id]
        if search:
            term = f"%{search.strip()}%"
            conditions.append(
                or_(
                    Patient.first_name.ilike(term),
                    Patient.last_name.ilike(term),
                    Patient.primary_phone.ilike(term),
                    Patient.normalized_phone.ilike(term),
                )
            )

        count_stmt = (
            select(func.count())
            .select_from(Patient)
            .join(OrganizationPatient, OrganizationPatient.patient_id == Patient.id)
            .where(*conditions)
        )
        total = (await self._session.execute(count_stmt)).scalar() or 0

        call_count = (
            select(func.count(Call.id))
            .where(Call.patient_id == Patient.id, Call.org_id == org_id)
            .correlate(Patient)
            .scalar_subquery()
        )
        stmt = (
            select(Patient, OrganizationPatient.emr_id_in_org, call_count)
            .join(OrganizationPatient, OrganizationPatient.patient_id == Patient.id)
            .where(*conditions)
            .order_by(Patient.last_name, Patient.first_name)
            .offset(offset)
            .limit(limit)
        )
        rows = (await self._session.execute(stmt)).all()
        return [(row[0], row[1], row[2] or 0) for row in rows], total

    async def recent_calls(self, org_id: UUID, patient_id: UUID, limit: int = 10) -> Sequence[Call]:
        stmt = (
            select(Call)
            .where(Call.org_id == org_id, Call.patient_id == patient_id)
            .order_by(Call.created_at.desc())
            .limit(limit)
        )
        return (await self._session.execute(stmt)).scalars().all()
