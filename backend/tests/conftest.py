"""Shared pytest fixtures."""

import asyncio
import os
import tempfile

# Settings are read at import time, so they must be in place first
os.environ.setdefault("GROQ_API_KEY", "test-key")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["MEDIA_ROOT"] = tempfile.mkdtemp(prefix="wellbeing-media-")
os.environ.pop("SMTP_HOST", None)

from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from main import app
from wellbeing.database import db_service
from wellbeing.limits import limiter
from wellbeing.realtime import broker

PASSWORD = "secret123"


@pytest.fixture(autouse=True)
def mock_db():
    """Point the shared MongoDB service at a fresh in-memory database."""
    limiter.enabled = False
    db_service.client = AsyncMongoMockClient()
    db_service.db = db_service.client["wellbeing_test"]
    yield db_service.db
    db_service.client = None
    db_service.db = None
    broker._subscribers.clear()


@pytest.fixture
def client():
    # No context manager: the lifespan would try to reach a real MongoDB
    return TestClient(app)


def signup(client, email, user_type="patient", **extra):
    """Register a user and return (token, user_id)."""
    payload = {
        "email": email,
        "password": PASSWORD,
        "first_name": extra.pop("first_name", "Test"),
        "last_name": extra.pop("last_name", user_type.title()),
        "user_type": user_type,
        **extra,
    }
    response = client.post("/api/auth/signup", json=payload)
    assert response.status_code == 201, response.text
    data = response.json()
    return data["access_token"], data["user"]["id"]


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def future_date(days=7):
    return (date.today() + timedelta(days=days)).isoformat()


@pytest.fixture
def patient(client):
    return signup(client, "pat@example.com", "patient", first_name="Pat", last_name="Lee",
                  date_of_birth="1990-06-15")


@pytest.fixture
def doctor(client, monkeypatch):
    """A verified doctor."""
    monkeypatch.setattr("wellbeing.accounts.AUTO_VERIFY_DOCTORS", True)
    return signup(client, "doc@example.com", "doctor", first_name="Dana", last_name="House",
                  specialization="Cardiology", experience_years=12)


def run(coro):
    """Run a database coroutine from a synchronous test."""
    return asyncio.run(coro)


@pytest.fixture
def booked(client, patient, doctor):
    """A pending appointment between the patient and doctor fixtures."""
    patient_token, _ = patient
    _, doctor_id = doctor
    response = client.post("/api/appointments", headers=auth(patient_token), json={
        "doctor_id": doctor_id,
        "appointment_date": future_date(),
        "appointment_time": "09:30",
        "reason": "Chest pain",
    })
    assert response.status_code == 201, response.text
    return response.json()
