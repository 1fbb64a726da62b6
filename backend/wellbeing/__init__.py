"""
Wellbeing Appointments Backend Package

This package contains the API for the patient/doctor appointment app:
accounts and profiles, the doctor directory, appointments, patient-doctor
chat with a realtime stream, and the LLM-backed symptom checker.
"""

__version__ = "1.0.0"
__author__ = "Wellbeing Team"

from wellbeing.accounts import router as accounts_router
from wellbeing.appointments import router as appointments_router
from wellbeing.assistant import router as assistant_router
from wellbeing.doctors import router as doctors_router
from wellbeing.messages import router as messages_router

__all__ = [
    "accounts_router",
    "appointments_router",
    "assistant_router",
    "doctors_router",
    "messages_router",
]
