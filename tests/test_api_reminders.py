"""Reminder API tests.

Appointments here are booked against the real clock, so only the booking
confirmation is due right away.
"""

import httpx
import pytest

from tests.conftest import MONDAY, local


@pytest.fixture
async def booked(api_client: httpx.AsyncClient, specialist, patient, system_headers) -> dict:
    response = await api_client.post(
        "/api/v1/appointments",
        json={
            "specialist_id": specialist.id,
            "patient_id": patient.id,
            "start": local(MONDAY, 10).isoformat(),
            "duration_minutes": 60,
        },
        headers=system_headers,
    )
    assert response.status_code == 201
    return response.json()


class TestReminderAccess:
    """Only system callers reach the reminder endpoints."""

    @pytest.mark.asyncio
    async def test_requires_auth(self, api_client: httpx.AsyncClient) -> None:
        response = await api_client.get("/api/v1/reminders/due")

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_specialist_forbidden(
        self, api_client: httpx.AsyncClient, specialist_headers
    ) -> None:
        response = await api_client.get("/api/v1/reminders/due", headers=specialist_headers)

        assert response.status_code == 403


class TestReminderFlow:
    """Tests for due listing, claims and results."""

    @pytest.mark.asyncio
    async def test_due_lists_confirmation(
        self, api_client: httpx.AsyncClient, booked, system_headers
    ) -> None:
        response = await api_client.get("/api/v1/reminders/due", headers=system_headers)

        assert response.status_code == 200
        due = response.json()
        assert [r["kind"] for r in due] == ["confirmation"]
        assert due[0]["appointment_id"] == booked["id"]
        assert due[0]["state"] == "pending"

    @pytest.mark.asyncio
    async def test_claim_then_report_sent(
        self, api_client: httpx.AsyncClient, booked, system_headers
    ) -> None:
        claim = await api_client.post(
            "/api/v1/reminders/claim",
            json={"worker_id": "external-1"},
            headers=system_headers,
        )
        assert claim.status_code == 200
        claimed = claim.json()
        assert len(claimed) == 1
        assert claimed[0]["lease_token"]

        again = await api_client.post(
            "/api/v1/reminders/claim",
            json={"worker_id": "external-2"},
            headers=system_headers,
        )
        assert again.json() == []

        result = await api_client.post(
            f"/api/v1/reminders/{claimed[0]['id']}/result",
            json={
                "outcome": "sent",
                "provider_message_id": "wa-1",
                "lease_token": claimed[0]["lease_token"],
            },
            headers=system_headers,
        )

        assert result.status_code == 200
        data = result.json()
        assert data["state"] == "sent"
        assert data["attempt_count"] == 1
        assert data["lease_token"] is None

        due = await api_client.get("/api/v1/reminders/due", headers=system_headers)
        assert due.json() == []

    @pytest.mark.asyncio
    async def test_wrong_lease_token_is_conflict(
        self, api_client: httpx.AsyncClient, booked, system_headers
    ) -> None:
        claim = await api_client.post(
            "/api/v1/reminders/claim",
            json={"worker_id": "external-1"},
            headers=system_headers,
        )
        reminder_id = claim.json()[0]["id"]

        result = await api_client.post(
            f"/api/v1/reminders/{reminder_id}/result",
            json={"outcome": "sent", "lease_token": "somebody-else"},
            headers=system_headers,
        )

        assert result.status_code == 409

    @pytest.mark.asyncio
    async def test_failed_attempt_stays_pending(
        self, api_client: httpx.AsyncClient, booked, system_headers
    ) -> None:
        due = await api_client.get("/api/v1/reminders/due", headers=system_headers)
        reminder_id = due.json()[0]["id"]

        result = await api_client.post(
            f"/api/v1/reminders/{reminder_id}/result",
            json={"outcome": "failed", "error": "Gateway unavailable"},
            headers=system_headers,
        )

        assert result.status_code == 200
        assert result.json()["state"] == "pending"
        assert result.json()["last_error"] == "Gateway unavailable"

    @pytest.mark.asyncio
    async def test_result_after_cancel_is_conflict(
        self, api_client: httpx.AsyncClient, booked, system_headers
    ) -> None:
        due = await api_client.get("/api/v1/reminders/due", headers=system_headers)
        reminder_id = due.json()[0]["id"]
        await api_client.post(
            f"/api/v1/appointments/{booked['id']}/cancel", headers=system_headers
        )

        result = await api_client.post(
            f"/api/v1/reminders/{reminder_id}/result",
            json={"outcome": "sent"},
            headers=system_headers,
        )

        assert result.status_code == 409

    @pytest.mark.asyncio
    async def test_unknown_reminder(self, api_client: httpx.AsyncClient, system_headers) -> None:
        response = await api_client.post(
            "/api/v1/reminders/00000000-0000-0000-0000-000000000000/result",
            json={"outcome": "sent"},
            headers=system_headers,
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_outcome_rejected(
        self, api_client: httpx.AsyncClient, booked, system_headers
    ) -> None:
        due = await api_client.get("/api/v1/reminders/due", headers=system_headers)

        response = await api_client.post(
            f"/api/v1/reminders/{due.json()[0]['id']}/result",
            json={"outcome": "maybe"},
            headers=system_headers,
        )

        assert response.status_code == 422
