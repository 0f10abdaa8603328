"""API tests for the dialer, agent and contact endpoints."""

from uuid import uuid4

import pytest
from httpx import AsyncClient

from dialer.agents.models import AgentStatus
from dialer.calls.models import CallStatus, MachineDetectionResult
from dialer.contacts.models import ContactStatus
from dialer.telephony.mock_adapter import MockTelephonyProvider


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient) -> None:
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    @pytest.mark.asyncio
    async def test_correlation_id_echoed(self, client: AsyncClient) -> None:
        response = await client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Correlation-ID"] == "req-123"


class TestContactsApi:
    @pytest.mark.asyncio
    async def test_create_normalizes_numbers(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/dialer/contacts",
            json={
                "contacts": [
                    {"name": "Alex Buyer", "phone_number": "1 (415) 555-0101"},
                    {"name": "Sam Refi", "phone_number": "+14155550102", "notes": "rate/term"},
                ]
            },
        )

        assert response.status_code == 201
        body = response.json()
        assert body["created"] == 2
        assert body["contacts"][0]["phone_number"] == "+14155550101"
        assert body["contacts"][1]["status"] == "not_contacted"

    @pytest.mark.asyncio
    async def test_invalid_number_rejected(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/dialer/contacts",
            json={"contacts": [{"name": "Bad", "phone_number": "12"}]},
        )

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_list_filters_by_status(self, client: AsyncClient, factory) -> None:
        await factory.contact(status=ContactStatus.CONTACTED)
        keep = await factory.contact(status=ContactStatus.NO_ANSWER)

        response = await client.get("/api/dialer/contacts", params={"status": "no_answer"})

        assert response.status_code == 200
        assert [c["id"] for c in response.json()] == [str(keep.id)]


class TestAgentsApi:
    @pytest.mark.asyncio
    async def test_register_and_list(self, client: AsyncClient) -> None:
        response = await client.post(
            "/api/dialer/agents/register", json={"user_id": "u-1", "name": "Robin"}
        )

        assert response.status_code == 200
        agent = response.json()["agent"]
        assert agent["status"] == "offline"

        listed = await client.get("/api/dialer/agents")
        assert [a["id"] for a in listed.json()] == [agent["id"]]

    @pytest.mark.asyncio
    async def test_status_update_assigns_queued_call(
        self, client: AsyncClient, factory
    ) -> None:
        agent = await factory.agent(status=AgentStatus.OFFLINE)
        call = await factory.call()
        await factory.queue_entry(call)

        response = await client.post(
            f"/api/dialer/agents/{agent.id}/status", json={"status": "available"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["assigned_call"]["id"] == str(call.id)
        assert body["agent"]["status"] == "busy"

    @pytest.mark.asyncio
    async def test_status_update_unknown_agent(self, client: AsyncClient) -> None:
        response = await client.post(
            f"/api/dialer/agents/{uuid4()}/status", json={"status": "available"}
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_connect_call(self, client: AsyncClient, factory) -> None:
        agent = await factory.agent()
        call = await factory.call()

        response = await client.post(
            f"/api/dialer/agents/{agent.id}/connect-call", json={"call_id": str(call.id)}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["identity"] == f"agent-{agent.id}"
        assert body["call"]["agent_id"] == str(agent.id)
        assert body["token"]

    @pytest.mark.asyncio
    async def test_connect_ended_call_conflicts(self, client: AsyncClient, factory) -> None:
        agent = await factory.agent()
        call = await factory.call(status=CallStatus.COMPLETED)

        response = await client.post(
            f"/api/dialer/agents/{agent.id}/connect-call", json={"call_id": str(call.id)}
        )

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_token(self, client: AsyncClient, factory) -> None:
        agent = await factory.agent()

        response = await client.get(f"/api/dialer/agents/{agent.id}/token")

        assert response.status_code == 200
        body = response.json()
        assert body["identity"] == f"agent-{agent.id}"
        assert body["expires_in"] == 3600


class TestDialerApi:
    @pytest.mark.asyncio
    async def test_start_places_calls(
        self, client: AsyncClient, factory, mock_provider: MockTelephonyProvider
    ) -> None:
        agent = await factory.agent(status=AgentStatus.OFFLINE)
        await factory.contact()
        await factory.contact()

        response = await client.post(
            "/api/dialer/start", json={"agent_id": str(agent.id), "max_concurrent_calls": 2}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["target_calls"] == 2
        assert len(body["calls_placed"]) == 2
        assert body["calls_placed"][0]["call_sid"].startswith("CAMOCK")
        assert len(mock_provider.calls) == 2

    @pytest.mark.asyncio
    async def test_start_without_contacts(self, client: AsyncClient, factory) -> None:
        agent = await factory.agent()

        response = await client.post("/api/dialer/start", json={"agent_id": str(agent.id)})

        assert response.status_code == 404
        assert response.json()["detail"] == "No contacts available to call"

    @pytest.mark.asyncio
    async def test_start_without_available_agents(self, client: AsyncClient, factory) -> None:
        agent = await factory.agent(status=AgentStatus.BUSY)
        await factory.contact()

        response = await client.post("/api/dialer/start", json={"agent_id": str(agent.id)})

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_start_rejects_out_of_range_pacing(self, client: AsyncClient, factory) -> None:
        agent = await factory.agent()

        response = await client.post(
            "/api/dialer/start", json={"agent_id": str(agent.id), "max_concurrent_calls": 50}
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_stop(self, client: AsyncClient, factory, mock_provider: MockTelephonyProvider) -> None:
        agent = await factory.agent()
        call = await factory.call()

        response = await client.post("/api/dialer/stop", json={"agent_id": str(agent.id)})

        assert response.status_code == 200
        assert response.json()["hung_up_calls"] == 1
        assert mock_provider.hangups == [call.twilio_call_sid]

    @pytest.mark.asyncio
    async def test_end_call(self, client: AsyncClient, factory) -> None:
        call = await factory.call()

        response = await client.post("/api/dialer/calls/end", json={"call_sid": call.twilio_call_sid})

        assert response.status_code == 200
        assert response.json()["call"]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_end_unknown_call(self, client: AsyncClient) -> None:
        response = await client.post("/api/dialer/calls/end", json={"call_sid": "CANOTOURS"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_end_call_provider_error(
        self, client: AsyncClient, factory, mock_provider: MockTelephonyProvider
    ) -> None:
        call = await factory.call()
        mock_provider.configure_control_failure()

        response = await client.post("/api/dialer/calls/end", json={"call_sid": call.twilio_call_sid})

        assert response.status_code == 502
        assert response.json()["detail"]["code"] == "MOCK_ERROR"

    @pytest.mark.asyncio
    async def test_list_calls_by_status(self, client: AsyncClient, factory) -> None:
        await factory.call(status=CallStatus.COMPLETED)
        live = await factory.call()

        response = await client.get("/api/dialer/calls", params={"status": "in_progress"})

        assert [c["id"] for c in response.json()] == [str(live.id)]

    @pytest.mark.asyncio
    async def test_queue_excludes_assigned_on_request(self, client: AsyncClient, factory) -> None:
        agent = await factory.agent(status=AgentStatus.BUSY)
        taken = await factory.call(agent=agent)
        await factory.queue_entry(taken, assigned_to=agent)
        waiting = await factory.call()
        await factory.queue_entry(waiting)

        everything = await client.get("/api/dialer/queue")
        unassigned = await client.get("/api/dialer/queue", params={"include_assigned": "false"})

        assert len(everything.json()) == 2
        assert [e["call_id"] for e in unassigned.json()] == [str(waiting.id)]

    @pytest.mark.asyncio
    async def test_stats(self, client: AsyncClient, factory) -> None:
        await factory.agent()
        await factory.call(status=CallStatus.COMPLETED, amd=MachineDetectionResult.HUMAN)
        await factory.call(status=CallStatus.COMPLETED, amd=MachineDetectionResult.MACHINE)
        waiting = await factory.call(amd=MachineDetectionResult.HUMAN)
        await factory.queue_entry(waiting)
        busy = await factory.agent(status=AgentStatus.BUSY)
        await factory.call(agent=busy, metadata={"queue_wait_seconds": 12.0})
        await factory.call(agent=busy, status=CallStatus.COMPLETED, metadata={"queue_wait_seconds": 4.0})

        response = await client.get("/api/dialer/stats")

        assert response.status_code == 200
        stats = response.json()
        assert stats["total_calls"] == 5
        assert stats["active_calls"] == 2
        assert stats["calls_in_queue"] == 1
        assert stats["available_agents"] == 1
        assert stats["completed_calls"] == 3
        assert stats["human_answers"] == 2
        assert stats["machine_answers"] == 1
        assert stats["average_wait_time"] == 8.0
