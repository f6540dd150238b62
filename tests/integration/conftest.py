"""Integration test fixtures"""
import pytest
from typing import Generator
from fastapi.testclient import TestClient

from automation.core.dependencies import reset_engine
from automation.main import app

TENANT_ID = "tenant-1"


@pytest.fixture
def client(monkeypatch) -> Generator[TestClient, None, None]:
    """Test client running the app lifespan on in-memory backends.

    The embedded worker is started, so published events are processed in
    the background.
    """
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("REDIS_URL", raising=False)
    monkeypatch.setenv("RUN_EMBEDDED_WORKER", "true")
    monkeypatch.setenv("QUEUE_POLL_INTERVAL", "0.05")

    with TestClient(app, headers={"X-Tenant-Id": TENANT_ID}) as test_client:
        yield test_client
    reset_engine()


@pytest.fixture
def sample_workflow_yaml() -> str:
    """YAML definition of an active lead-welcome workflow"""
    return """
workflow:
  name: "welcome-new-leads"
  description: "Greet new leads and create a follow-up task"
  active: true
  triggers:
    - event: "contact.created"
      filters:
        status: "lead"
  actions:
    - type: "send_email"
      config:
        subject: "Welcome!"
        body: "Thanks for signing up"
    - type: "create_task"
      config:
        title: "Follow up with new lead"
"""
