"""Tests for the webhook endpoint and the health routes."""

from __future__ import annotations

import httpx
import pytest
from fastapi.testclient import TestClient

from fakes import (
    FakeAgent,
    FakeLinearClient,
    encode,
    session_created_payload,
    session_prompted_payload,
    sign,
    stop_payload,
)
from linear_agent.agent import AssistantText
from linear_agent.controller import AgentController
from linear_agent.server import create_app


@pytest.fixture
def controller(config, linear, agent):
    return AgentController(config, linear, agent)


@pytest.fixture
def app(controller):
    return create_app(controller.config, controller=controller)


@pytest.fixture
async def http(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def deliver(http: httpx.AsyncClient, payload: dict, signature: str | None = None):
    body = encode(payload)
    return await http.post(
        "/webhook",
        content=body,
        headers={
            "Content-Type": "application/json",
            "Linear-Signature": sign(body) if signature is None else signature,
        },
    )


class TestSignature:
    def test_bad_signature_rejected(self, app, agent):
        client = TestClient(app)
        body = encode(session_created_payload())
        response = client.post("/webhook", content=body, headers={"Linear-Signature": "00" * 32})
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid signature"}
        assert agent.requests == []

    def test_missing_signature_rejected(self, app):
        client = TestClient(app)
        response = client.post("/webhook", content=encode(session_created_payload()))
        assert response.status_code == 401

    def test_signature_over_exact_bytes(self, app):
        client = TestClient(app)
        body = encode(session_created_payload())
        signature = sign(body)
        tampered = body.replace(b"fix the bug", b"drop the db")
        response = client.post("/webhook", content=tampered, headers={"Linear-Signature": signature})
        assert response.status_code == 401


class TestMalformed:
    def test_invalid_json(self, app):
        client = TestClient(app)
        body = b"{not json"
        response = client.post("/webhook", content=body, headers={"Linear-Signature": sign(body)})
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid JSON"}

    def test_missing_type(self, app):
        client = TestClient(app)
        body = encode({"action": "created"})
        response = client.post("/webhook", content=body, headers={"Linear-Signature": sign(body)})
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid payload"}

    async def test_prompted_without_body(self, http, controller):
        response = await deliver(http, session_prompted_payload(body=""))
        await controller.drain()
        assert response.status_code == 400
        assert "error" in response.json()


class TestDelivery:
    async def test_session_created_acknowledged_and_run(self, http, controller, agent, linear):
        agent.messages = [AssistantText("Fixed the click handler.")]
        response = await deliver(http, session_created_payload("session-1"))
        await controller.drain()

        assert response.status_code == 200
        assert response.json() == {"received": True}
        assert len(agent.requests) == 1
        assert linear.bodies("response") == ["Fixed the click handler."]

    async def test_redelivery_skipped(self, http, controller, agent):
        await deliver(http, session_created_payload("session-1"))
        response = await deliver(http, session_created_payload("session-1"))
        await controller.drain()

        assert response.json() == {"received": True, "skipped": "duplicate"}
        assert len(agent.requests) == 1

    async def test_stop_without_run(self, http, controller):
        response = await deliver(http, stop_payload("session-1"))
        await controller.drain()
        assert response.json() == {
            "received": True,
            "action": "stop-acknowledged",
            "cancelled": False,
        }

    async def test_unrelated_event(self, http, agent):
        response = await deliver(http, {"type": "Issue", "action": "update", "data": {"id": "i-1"}})
        assert response.status_code == 200
        assert response.json() == {"received": True}
        assert agent.requests == []


async def test_no_controller_is_not_ready(config):
    from linear_agent import webhook

    webhook.configure(None, config.webhook_secret)
    transport = httpx.ASGITransport(app=create_app(config))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        response = await deliver(client, session_created_payload())
    assert response.status_code == 503


class TestHealth:
    async def test_root(self, http):
        response = await http.get("/")
        assert response.json() == {"status": "ok", "agent": "Claude"}

    async def test_health_counters(self, http, controller):
        await deliver(http, session_created_payload("session-1"))
        await controller.drain()

        data = (await http.get("/health")).json()
        assert data["status"] == "ok"
        assert data["environment"] == "development"
        assert data["active_runs"] == 0
        assert data["tracked_keys"] == 1
        assert data["background_tasks"] == 0


def test_fresh_app_without_controller_reports_zero(config):
    client = TestClient(create_app(config))
    data = client.get("/health").json()
    assert data["active_runs"] == 0
    assert data["background_tasks"] == 0


def test_root_reports_configured_name(config):
    config.agent_name = "Reviewer"
    controller = AgentController(config, FakeLinearClient(), FakeAgent())
    client = TestClient(create_app(config, controller=controller))
    assert client.get("/").json() == {"status": "ok", "agent": "Reviewer"}
