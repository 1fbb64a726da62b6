"""
End-to-end smoke check for the Wellbeing API.
Run this after starting the server: python main.py

Usage:
    python smoke_api.py
    python smoke_api.py --base-url http://localhost:8000 --skip-ai
"""

import argparse
import json
import time
from datetime import date, timedelta
from typing import Any, Dict, Optional

import requests


BASE_URL = "http://localhost:8000"
TIMEOUT = 30  # seconds

RUN_ID = int(time.time())
PATIENT_EMAIL = f"patient_{RUN_ID}@example.com"
DOCTOR_EMAIL = f"doctor_{RUN_ID}@example.com"
PASSWORD = "testpass123"


class Colors:
    """ANSI color codes for terminal output"""
    HEADER = '\033[95m'
    OKCYAN = '\033[96m'
    OKGREEN = '\033[92m'
    WARNING = '\033[93m'
    FAIL = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'


def print_header(text: str):
    print(f"\n{Colors.HEADER}{Colors.BOLD}{'='*60}")
    print(f"{text}")
    print(f"{'='*60}{Colors.ENDC}\n")


def print_success(text: str):
    print(f"{Colors.OKGREEN}✓ {text}{Colors.ENDC}")


def print_error(text: str):
    print(f"{Colors.FAIL}✗ {text}{Colors.ENDC}")


def print_info(text: str):
    print(f"{Colors.OKCYAN}ℹ {text}{Colors.ENDC}")


def print_response(title: str, response: requests.Response):
    """Pretty print API response"""
    print(f"\n{Colors.BOLD}{title}{Colors.ENDC}")
    print("-" * 60)

    if response.status_code in [200, 201]:
        try:
            print(json.dumps(response.json(), indent=2, default=str))
            print_success(f"Status: {response.status_code} OK")
        except json.JSONDecodeError:
            print(response.text)
            print_error("Invalid JSON response")
    else:
        print_error(f"Status: {response.status_code}")
        print(response.text)

    print("-" * 60)


def call(method: str, path: str, title: str, token: Optional[str] = None, **kwargs) -> Optional[Any]:
    """Make a request, print it, and return parsed JSON for 2xx responses"""
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    try:
        response = requests.request(method, f"{BASE_URL}{path}", headers=headers, timeout=TIMEOUT, **kwargs)
    except requests.exceptions.ConnectionError:
        print_error("Cannot connect to server")
        print_info("Please start the server: python main.py")
        return None

    print_response(title, response)
    if response.status_code in (200, 201):
        return response.json()
    return None


def check_server() -> bool:
    print_header("🔌 Server Connection")
    return call("GET", "/", "Root") is not None


def check_signup(email: str, user_type: str, **extra) -> Optional[Dict[str, Any]]:
    print_header(f"🔐 Signup ({user_type})")
    payload = {
        "email": email,
        "password": PASSWORD,
        "first_name": "Smoke",
        "last_name": user_type.title(),
        "user_type": user_type,
        **extra,
    }
    print_info(f"Creating user: {email}")
    return call("POST", "/api/auth/signup", "Signup Response", json=payload)


def check_login(email: str) -> Optional[str]:
    print_header("🔑 Login")
    data = call("POST", "/api/auth/login", "Login Response", json={"email": email, "password": PASSWORD})
    return data["access_token"] if data else None


def check_booking(patient_token: str, doctor_id: str) -> Optional[str]:
    print_header("📅 Book Appointment")
    payload = {
        "doctor_id": doctor_id,
        "appointment_date": (date.today() + timedelta(days=3)).isoformat(),
        "appointment_time": "10:30",
        "reason": "Smoke test check-up",
    }
    data = call("POST", "/api/appointments", "Booking Response", patient_token, json=payload)
    return data["id"] if data else None


def check_doctor_dashboard(doctor_token: str, appointment_id: str) -> bool:
    print_header("🩺 Doctor Dashboard")
    pending = call("GET", "/api/doctor/appointments?scope=pending", "Pending", doctor_token)
    if not pending or not any(a["id"] == appointment_id for a in pending["appointments"]):
        print_error("Booked appointment missing from pending list")
        return False
    confirmed = call("POST", f"/api/appointments/{appointment_id}/confirm", "Confirm", doctor_token)
    return bool(confirmed and confirmed["status"] == "confirmed")


def check_chat(patient_token: str, patient_id: str, doctor_token: str, doctor_id: str) -> bool:
    print_header("💬 Chat")
    sent = call("POST", "/api/messages", "Send", patient_token,
                json={"receiver_id": doctor_id, "content": "Hello doctor, smoke test here."})
    if not sent:
        return False
    counts = call("GET", "/api/messages/unread-counts", "Unread Counts", doctor_token)
    conversation = call("GET", f"/api/messages/{patient_id}", "Conversation", doctor_token)
    marked = call("POST", f"/api/messages/{patient_id}/read", "Mark Read", doctor_token)
    return bool(counts and counts["counts"].get(patient_id) and conversation and marked)


def check_symptoms() -> bool:
    print_header("🤖 Symptom Check")
    data = call("POST", "/api/symptom-check", "Symptom Check",
                json={"symptoms": "headache and mild fever since yesterday", "answers": []})
    return bool(data and ("nextQuestion" in data or "prediction" in data))


def run_all(skip_ai: bool):
    results = {"Server Connection": check_server()}
    if not results["Server Connection"]:
        return results

    patient = check_signup(PATIENT_EMAIL, "patient", date_of_birth="1990-05-01")
    doctor = check_signup(DOCTOR_EMAIL, "doctor", specialization="General Medicine")
    results["Signup"] = bool(patient and doctor)
    if not results["Signup"]:
        return results

    patient_token = check_login(PATIENT_EMAIL)
    doctor_token = check_login(DOCTOR_EMAIL)
    results["Login"] = bool(patient_token and doctor_token)

    patient_id, doctor_id = patient["user"]["id"], doctor["user"]["id"]

    appointment_id = check_booking(patient_token, doctor_id)
    results["Book Appointment"] = appointment_id is not None
    results["Doctor Dashboard"] = bool(appointment_id) and check_doctor_dashboard(doctor_token, appointment_id)
    results["Chat"] = check_chat(patient_token, patient_id, doctor_token, doctor_id)

    if not skip_ai:
        results["Symptom Check"] = check_symptoms()

    results["Logout"] = call("POST", "/api/auth/logout", "Logout", patient_token) is not None
    return results


def print_summary(results: Dict[str, bool]):
    print_header("📊 Summary")
    for name, passed in results.items():
        status = f"{Colors.OKGREEN}✅ PASSED{Colors.ENDC}" if passed else f"{Colors.FAIL}❌ FAILED{Colors.ENDC}"
        print(f"{name:.<40} {status}")

    passed = sum(results.values())
    print(f"\n{Colors.BOLD}Total: {passed}/{len(results)} checks passed{Colors.ENDC}\n")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Smoke check a running Wellbeing API")
    parser.add_argument("--base-url", default=BASE_URL)
    parser.add_argument("--skip-ai", action="store_true", help="Skip LLM-backed endpoints")
    args = parser.parse_args()
    BASE_URL = args.base_url.rstrip("/")

    try:
        print_summary(run_all(args.skip_ai))
    except KeyboardInterrupt:
        print(f"\n\n{Colors.WARNING}Interrupted by user{Colors.ENDC}\n")
