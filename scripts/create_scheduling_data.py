"""Create development scheduling data (specialist, patient, weekly templates).

Also prints bearer tokens for the specialist and for a system caller so the
API can be exercised straight away.
"""

import asyncio
from datetime import time
from uuid import uuid4

from sqlalchemy import select

from app.core.security import create_access_token
from app.db.init_db import create_tables
from app.db.session import AsyncSessionLocal
from app.models.patient import Patient
from app.models.scheduling import AvailabilityTemplate, DayOfWeek
from app.models.specialist import Specialist

SPECIALIST_EMAIL = "dra.lopez@agenda.local"
PATIENT_PHONE = "+5215512345678"


async def create_scheduling_data():
    """Create a specialist with a Monday to Friday agenda and one patient."""
    await create_tables()

    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(Specialist).where(Specialist.email == SPECIALIST_EMAIL)
        )
        specialist = result.scalar_one_or_none()

        if not specialist:
            specialist = Specialist(
                id=str(uuid4()),
                email=SPECIALIST_EMAIL,
                name="Dra. Ana López",
                specialty="Psicología clínica",
                whatsapp_number="+5215500000001",
                is_active=True,
            )
            session.add(specialist)
            await session.flush()
            print(f"Created specialist: {specialist.id}")
        else:
            print(f"Specialist already exists: {specialist.id}")

        result = await session.execute(
            select(AvailabilityTemplate).where(
                AvailabilityTemplate.specialist_id == specialist.id
            ).limit(1)
        )
        if result.scalar_one_or_none():
            print("Availability templates already exist, skipping...")
        else:
            templates_created = 0
            weekdays = [
                DayOfWeek.MONDAY,
                DayOfWeek.TUESDAY,
                DayOfWeek.WEDNESDAY,
                DayOfWeek.THURSDAY,
                DayOfWeek.FRIDAY,
            ]
            for day in weekdays:
                # Morning 09:00-13:00, afternoon 16:00-19:00
                for start, end in [(time(9, 0), time(13, 0)), (time(16, 0), time(19, 0))]:
                    session.add(
                        AvailabilityTemplate(
                            id=str(uuid4()),
                            specialist_id=specialist.id,
                            day_of_week=day.value,
                            start_time=start,
                            end_time=end,
                            slot_duration_minutes=60,
                            is_active=True,
                        )
                    )
                    templates_created += 1

            print(f"Created {templates_created} availability templates")

        result = await session.execute(
            select(Patient).where(Patient.phone == PATIENT_PHONE)
        )
        patient = result.scalar_one_or_none()

        if not patient:
            patient = Patient(
                id=str(uuid4()),
                name="Carlos Pérez",
                phone=PATIENT_PHONE,
            )
            session.add(patient)
            await session.flush()
            print(f"Created patient: {patient.id}")

        await session.commit()

        specialist_token = create_access_token(
            subject=specialist.id,
            additional_claims={"actor_type": "specialist"},
        )
        system_token = create_access_token(
            subject="booking-bot",
            additional_claims={"actor_type": "system"},
        )

        print("\n=== Summary ===")
        print(f"Specialist ID: {specialist.id}")
        print(f"Patient ID: {patient.id}")
        print(f"Specialist token: {specialist_token}")
        print(f"System token: {system_token}")
        print("Scheduling data setup complete!")


if __name__ == "__main__":
    asyncio.run(create_scheduling_data())
