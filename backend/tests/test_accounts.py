"""Tests for signup, login, password reset, profiles and health data."""

from unittest.mock import patch

from conftest import PASSWORD, auth, run, signup
from wellbeing.accounts import bmi_category
from wellbeing.auth import create_access_token, decode_token
from wellbeing.database import db_service


class TestSignupAndLogin:
    """Tests for account registration and login."""

    def test_patient_signup_creates_all_records(self, client):
        token, user_id = signup(client, "new@example.com", "patient", date_of_birth="2000-01-31")

        assert decode_token(token).id == user_id
        profile = run(db_service.get_collection("profiles").find_one({"user_id": user_id}))
        patient = run(db_service.get_collection("patients").find_one({"user_id": user_id}))
        assert profile["user_type"] == "patient"
        assert patient["date_of_birth"] == "2000-01-31"
        assert patient["bmi"] is None

    def test_blank_optional_fields_stored_as_null(self, client):
        _, patient_id = signup(client, "blank-pat@example.com", "patient",
                               phone="", gender="", address=" ", emergency_contact="")
        _, doctor_id = signup(client, "blank-doc@example.com", "doctor",
                              medical_license="", specialization="", qualifications="", bio="")

        profile = run(db_service.get_collection("profiles").find_one({"user_id": patient_id}))
        patient = run(db_service.get_collection("patients").find_one({"user_id": patient_id}))
        doctor = run(db_service.get_collection("doctors").find_one({"user_id": doctor_id}))
        assert profile["phone"] is None
        assert all(patient[field] is None for field in ("gender", "address", "emergency_contact"))
        assert all(doctor[field] is None for field in ("medical_license", "specialization", "qualifications", "bio"))

    def test_doctor_signup_is_unverified_by_default(self, client):
        _, user_id = signup(client, "dr@example.com", "doctor", specialization="Neurology")

        doctor = run(db_service.get_collection("doctors").find_one({"user_id": user_id}))
        assert doctor["specialization"] == "Neurology"
        assert doctor["is_verified"] is False

    def test_duplicate_email_rejected(self, client):
        signup(client, "dup@example.com")
        response = client.post("/api/auth/signup", json={
            "email": "DUP@example.com",
            "password": PASSWORD,
            "first_name": "A",
            "last_name": "B",
            "user_type": "patient",
        })
        assert response.status_code == 400
        assert response.json()["detail"] == "Email already registered"

    def test_signup_rejects_unknown_role(self, client):
        response = client.post("/api/auth/signup", json={
            "email": "x@example.com",
            "password": PASSWORD,
            "first_name": "A",
            "last_name": "B",
            "user_type": "admin",
        })
        assert response.status_code == 422

    def test_login_returns_token_and_user(self, client):
        _, user_id = signup(client, "login@example.com")
        response = client.post("/api/auth/login", json={"email": "login@example.com", "password": PASSWORD})

        assert response.status_code == 200
        data = response.json()
        assert data["token_type"] == "bearer"
        assert data["user"]["id"] == user_id
        assert data["user"]["user_type"] == "patient"

    def test_login_wrong_password(self, client):
        signup(client, "login@example.com")
        response = client.post("/api/auth/login", json={"email": "login@example.com", "password": "wrong-pass"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid email or password"

    def test_me_requires_token(self, client):
        assert client.get("/api/auth/me").status_code in (401, 403)
        assert client.get("/api/auth/me", headers=auth("not-a-jwt")).status_code == 401

    def test_me_returns_profile(self, client, patient):
        token, user_id = patient
        data = client.get("/api/auth/me", headers=auth(token)).json()
        assert data["email"] == "pat@example.com"
        assert data["profile"]["first_name"] == "Pat"
        assert data["profile"]["date_of_birth"] == "1990-06-15"

    def test_token_without_role_is_rejected(self, client):
        token = create_access_token({"sub": "abc"})
        assert client.get("/api/profile", headers=auth(token)).status_code == 401


class TestPasswordReset:
    """Tests for the forgot/reset password flow."""

    def test_forgot_password_unknown_email_same_answer(self, client):
        with patch("wellbeing.accounts.mailer.send_password_reset") as mock_send:
            response = client.post("/api/auth/forgot-password", json={"email": "nobody@example.com"})
        assert response.status_code == 200
        mock_send.assert_not_called()

    def test_reset_flow(self, client):
        signup(client, "reset@example.com")
        with patch("wellbeing.accounts.mailer.send_password_reset") as mock_send:
            client.post("/api/auth/forgot-password", json={"email": "reset@example.com"})
        email, token = mock_send.call_args.args
        assert email == "reset@example.com"

        response = client.post("/api/auth/reset-password", json={"token": token, "new_password": "brand-new-pw"})
        assert response.status_code == 200

        login = client.post("/api/auth/login", json={"email": "reset@example.com", "password": "brand-new-pw"})
        assert login.status_code == 200

        # Tokens are single use
        again = client.post("/api/auth/reset-password", json={"token": token, "new_password": "another-pw"})
        assert again.status_code == 400

    def test_reset_with_bogus_token(self, client):
        response = client.post("/api/auth/reset-password", json={"token": "x" * 40, "new_password": "whatever1"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid or expired reset token"


class TestProfile:
    """Tests for profile read/update and picture upload."""

    def test_update_common_and_role_fields(self, client, patient):
        token, _ = patient
        response = client.put("/api/profile", headers=auth(token), json={
            "phone": "555-0100",
            "address": "1 Main St",
        })
        assert response.status_code == 200
        data = response.json()
        assert data["phone"] == "555-0100"
        assert data["address"] == "1 Main St"
        assert data["first_name"] == "Pat"

    def test_names_cannot_be_cleared(self, client, patient):
        token, _ = patient
        for field in ("first_name", "last_name"):
            response = client.put("/api/profile", headers=auth(token), json={field: None})
            assert response.status_code == 422

        profile = client.get("/api/profile", headers=auth(token)).json()
        assert profile["first_name"] == "Pat"
        assert profile["last_name"] == "Lee"

    def test_patient_cannot_set_doctor_fields(self, client, patient):
        token, _ = patient
        response = client.put("/api/profile", headers=auth(token), json={"specialization": "Cardiology"})
        assert response.status_code == 400
        assert "specialization" in response.json()["detail"]

    def test_doctor_updates_fee(self, client, doctor):
        token, _ = doctor
        response = client.put("/api/profile", headers=auth(token), json={"consultation_fee": 80})
        assert response.status_code == 200
        assert response.json()["consultation_fee"] == 80

    def test_upload_picture(self, client, patient):
        token, user_id = patient
        response = client.post(
            "/api/profile/picture",
            headers=auth(token),
            files={"file": ("me.png", b"\x89PNG\r\n\x1a\nfake", "image/png")},
        )
        assert response.status_code == 200
        url = response.json()["profile_picture_url"]
        assert url.endswith(f"/media/avatars/profile-pictures/{user_id}/me.png")

        profile = client.get("/api/profile", headers=auth(token)).json()
        assert profile["profile_picture_url"] == url

    def test_upload_extension_follows_content_type(self, client, patient):
        token, user_id = patient
        response = client.post(
            "/api/profile/picture",
            headers=auth(token),
            files={"file": ("avatar.html", b"\x89PNG\r\n\x1a\nfake", "image/png")},
        )
        assert response.status_code == 200
        assert response.json()["profile_picture_url"].endswith(f"/profile-pictures/{user_id}/avatar.png")

    def test_upload_rejects_non_image(self, client, patient):
        token, _ = patient
        response = client.post(
            "/api/profile/picture",
            headers=auth(token),
            files={"file": ("notes.txt", b"hello", "text/plain")},
        )
        assert response.status_code == 400


class TestHealthData:
    """Tests for patient vitals and habits."""

    def test_bmi_category(self):
        assert bmi_category(None) is None
        assert bmi_category(17.0) == "underweight"
        assert bmi_category(22.0) == "normal"
        assert bmi_category(24.9) == "overweight"

    def test_update_and_read_back(self, client, patient):
        token, _ = patient
        response = client.put("/api/patients/me/health", headers=auth(token), json={
            "bmi": 23.1,
            "smoking_habit": "Occasional",
            "drinking_habit": "Weekly",
            "heart_rate": 72,
            "blood_pressure": "120/80",
        })
        assert response.status_code == 200
        data = response.json()
        assert data["bmi_category"] == "normal"
        assert data["smoking_status"] is True
        assert data["drinking_status"] is False

        stored = client.get("/api/patients/me/health", headers=auth(token)).json()
        assert stored["heart_rate"] == 72
        assert stored["blood_pressure"] == "120/80"

    def test_missing_habits_stay_unknown(self, client, patient):
        token, _ = patient
        data = client.put("/api/patients/me/health", headers=auth(token), json={
            "smoking_habit": "Non-smoker",
        }).json()
        assert data["smoking_status"] is False
        assert data["drinking_status"] is None

    def test_doctors_cannot_record_health(self, client, doctor):
        token, _ = doctor
        response = client.put("/api/patients/me/health", headers=auth(token), json={"bmi": 20})
        assert response.status_code == 403
