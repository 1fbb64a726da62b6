from fastapi import APIRouter, HTTPException, Request, status, Depends, UploadFile, File
from pydantic import BaseModel, Field, EmailStr, field_validator
from pymongo.errors import DuplicateKeyError
from typing import Dict, Iterable, Literal, Optional
from datetime import date, datetime
import logging
import os

from wellbeing.auth import (
    CurrentUser,
    create_access_token,
    get_current_user,
    hash_password,
    hash_reset_token,
    new_reset_token,
    require_patient,
    verify_password,
)
from wellbeing.database import db_service, parse_object_id
from wellbeing.limits import limiter
from wellbeing.storage import AVATARS_BUCKET, IMAGE_TYPES, MAX_AVATAR_BYTES, read_upload, storage, stored_filename
from wellbeing import mailer

router = APIRouter()
logger = logging.getLogger(__name__)

AUTO_VERIFY_DOCTORS = os.getenv("AUTO_VERIFY_DOCTORS", "false").strip().lower() in {
    "1", "true", "yes", "on"
}

COMMON_FIELDS = ("first_name", "last_name", "phone", "profile_picture_url")
PATIENT_FIELDS = ("date_of_birth", "gender", "address", "emergency_contact")
DOCTOR_FIELDS = (
    "medical_license", "specialization", "experience_years",
    "qualifications", "consultation_fee", "bio",
)
HEALTH_FIELDS = (
    "bmi", "smoking_status", "drinking_status", "heart_rate",
    "body_temperature", "blood_pressure", "activity",
)


# ==================== PYDANTIC MODELS ====================

def _blank_to_none(v):
    if isinstance(v, str) and not v.strip():
        return None
    return v


class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=30)
    user_type: Literal["patient", "doctor"]

    # Patient
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    address: Optional[str] = None
    emergency_contact: Optional[str] = None

    # Doctor
    medical_license: Optional[str] = None
    specialization: Optional[str] = None
    experience_years: Optional[int] = Field(None, ge=0, le=80)
    qualifications: Optional[str] = None
    consultation_fee: Optional[float] = Field(None, ge=0)
    bio: Optional[str] = Field(None, max_length=2000)

    @field_validator(
        "phone", "date_of_birth", "gender", "address", "emergency_contact",
        "medical_license", "specialization", "experience_years", "qualifications",
        "consultation_fee", "bio",
        mode="before",
    )
    @classmethod
    def blank_values(cls, v):
        return _blank_to_none(v)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class AuthResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: dict


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=10)
    new_password: str = Field(..., min_length=6)


class ProfileUpdateRequest(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = Field(None, max_length=30)
    profile_picture_url: Optional[str] = None

    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    address: Optional[str] = None
    emergency_contact: Optional[str] = None

    medical_license: Optional[str] = None
    specialization: Optional[str] = None
    experience_years: Optional[int] = Field(None, ge=0, le=80)
    qualifications: Optional[str] = None
    consultation_fee: Optional[float] = Field(None, ge=0)
    bio: Optional[str] = Field(None, max_length=2000)

    @field_validator("date_of_birth", "experience_years", "consultation_fee", mode="before")
    @classmethod
    def blank_values(cls, v):
        return _blank_to_none(v)

    @field_validator("first_name", "last_name")
    @classmethod
    def names_required(cls, v):
        # Names may be changed but never cleared
        if v is None:
            raise ValueError("Name cannot be empty")
        return v


class HealthDataRequest(BaseModel):
    bmi: Optional[float] = Field(None, ge=0, le=200)
    smoking_habit: Optional[str] = None
    drinking_habit: Optional[str] = None
    heart_rate: Optional[float] = Field(None, ge=0, le=400)
    body_temperature: Optional[float] = Field(None, ge=0, le=120)
    blood_pressure: Optional[str] = Field(None, max_length=20)
    activity: Optional[str] = Field(None, max_length=200)

    @field_validator("bmi", "heart_rate", "body_temperature", "blood_pressure", "activity", mode="before")
    @classmethod
    def blank_values(cls, v):
        return _blank_to_none(v)


class HealthDataResponse(BaseModel):
    bmi: Optional[float] = None
    bmi_category: Optional[str] = None
    smoking_status: Optional[bool] = None
    drinking_status: Optional[bool] = None
    heart_rate: Optional[float] = None
    body_temperature: Optional[float] = None
    blood_pressure: Optional[str] = None
    activity: Optional[str] = None


# ==================== HELPERS ====================

def bmi_category(bmi: Optional[float]) -> Optional[str]:
    if bmi is None:
        return None
    if bmi < 18.5:
        return "underweight"
    if bmi < 24.9:
        return "normal"
    return "overweight"


def role_collection(user_type: str):
    return db_service.get_collection("doctors" if user_type == "doctor" else "patients")


def _public_user(user_id: str, email: str, profile: dict) -> dict:
    return {
        "id": user_id,
        "email": email,
        "user_type": profile.get("user_type"),
        "first_name": profile.get("first_name"),
        "last_name": profile.get("last_name"),
    }


async def load_profile(user_id: str) -> Optional[dict]:
    """Profile merged with the patient or doctor record, or None"""
    profile = await db_service.get_collection("profiles").find_one({"user_id": user_id})
    if not profile:
        return None

    merged = {k: v for k, v in profile.items() if k not in ("_id", "user_id")}
    merged["id"] = user_id

    record = await role_collection(profile.get("user_type")).find_one({"user_id": user_id})
    if record:
        merged.update({k: v for k, v in record.items() if k not in ("_id", "user_id")})
    return merged


async def profile_summaries(user_ids: Iterable[str]) -> Dict[str, dict]:
    """Map user id -> {first_name, last_name, profile_picture_url, date_of_birth}"""
    ids = list({uid for uid in user_ids if uid})
    if not ids:
        return {}

    summaries = {}
    cursor = db_service.get_collection("profiles").find({"user_id": {"$in": ids}})
    async for profile in cursor:
        summaries[profile["user_id"]] = {
            "first_name": profile.get("first_name"),
            "last_name": profile.get("last_name"),
            "profile_picture_url": profile.get("profile_picture_url"),
        }

    cursor = db_service.get_collection("patients").find({"user_id": {"$in": ids}})
    async for patient in cursor:
        if patient["user_id"] in summaries:
            summaries[patient["user_id"]]["date_of_birth"] = patient.get("date_of_birth")
    return summaries


# ==================== AUTH ENDPOINTS ====================

@router.post("/auth/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
async def signup(request: Request, signup_data: SignupRequest):
    """Register a patient or doctor account"""
    try:
        users_collection = db_service.get_collection("users")
        email = signup_data.email.lower()

        existing_user = await users_collection.find_one({"email": email})
        if existing_user:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Email already registered"
            )

        data = signup_data.model_dump(mode="json")
        now = datetime.utcnow()

        result = await users_collection.insert_one({
            "email": email,
            "password": hash_password(signup_data.password),
            "user_type": signup_data.user_type,
            "created_at": now,
            "updated_at": now
        })
        user_id = str(result.inserted_id)

        profile_doc = {
            "user_id": user_id,
            "user_type": signup_data.user_type,
            "first_name": signup_data.first_name,
            "last_name": signup_data.last_name,
            "phone": signup_data.phone,
            "profile_picture_url": None,
            "created_at": now,
            "updated_at": now
        }
        await db_service.get_collection("profiles").insert_one(profile_doc)

        if signup_data.user_type == "patient":
            record = {field: data.get(field) for field in PATIENT_FIELDS}
            record.update({field: None for field in HEALTH_FIELDS})
        else:
            record = {field: data.get(field) for field in DOCTOR_FIELDS}
            record["is_verified"] = AUTO_VERIFY_DOCTORS
        record["user_id"] = user_id
        await role_collection(signup_data.user_type).insert_one(record)

        access_token = create_access_token({"sub": user_id, "user_type": signup_data.user_type})

        logger.info(f"New {signup_data.user_type} registered: {email}")

        return AuthResponse(
            access_token=access_token,
            user=_public_user(user_id, email, profile_doc)
        )

    except HTTPException:
        raise
    except DuplicateKeyError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered"
        )
    except Exception as e:
        logger.error(f"Signup error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Signup failed"
        )


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit("10/minute")
async def login(request: Request, login_data: LoginRequest):
    """User login"""
    try:
        users_collection = db_service.get_collection("users")
        email = login_data.email.lower()

        user = await users_collection.find_one({"email": email})
        if not user or not verify_password(login_data.password, user["password"]):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid email or password"
            )

        user_id = str(user["_id"])
        profile = await db_service.get_collection("profiles").find_one({"user_id": user_id}) or {
            "user_type": user["user_type"]
        }

        access_token = create_access_token({"sub": user_id, "user_type": user["user_type"]})

        logger.info(f"User logged in: {email}")

        return AuthResponse(
            access_token=access_token,
            user=_public_user(user_id, email, profile)
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Login error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Login failed"
        )


@router.post("/auth/logout")
async def logout(user: CurrentUser = Depends(get_current_user)):
    """User logout (client should delete token)"""
    logger.info(f"User logged out: {user.id}")
    return {"message": "Logged out successfully"}


@router.get("/auth/me")
async def me(user: CurrentUser = Depends(get_current_user)):
    """Current account with its profile"""
    try:
        account = await db_service.get_collection("users").find_one(
            {"_id": parse_object_id(user.id, "User")}
        )
        if not account:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="User not found"
            )

        return {
            "id": user.id,
            "email": account["email"],
            "user_type": account["user_type"],
            "profile": await load_profile(user.id)
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Get account error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve account"
        )


@router.post("/auth/forgot-password")
@limiter.limit("5/minute")
async def forgot_password(request: Request, body: ForgotPasswordRequest):
    """Email a password reset link. Same answer whether or not the account exists."""
    try:
        users_collection = db_service.get_collection("users")
        email = body.email.lower()

        user = await users_collection.find_one({"email": email})
        if user:
            token, token_hash, expires = new_reset_token()
            await users_collection.update_one(
                {"_id": user["_id"]},
                {"$set": {"reset_token_hash": token_hash, "reset_token_expires": expires}}
            )
            mailer.send_password_reset(email, token)
            logger.info(f"Password reset requested for {email}")
        else:
            logger.info("Password reset requested for unknown email")

        return {"message": "If an account exists for that email, a reset link has been sent."}

    except Exception as e:
        logger.error(f"Forgot password error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process password reset"
        )


@router.post("/auth/reset-password")
@limiter.limit("10/minute")
async def reset_password(request: Request, body: ResetPasswordRequest):
    """Set a new password using a reset token"""
    try:
        users_collection = db_service.get_collection("users")

        user = await users_collection.find_one({"reset_token_hash": hash_reset_token(body.token)})
        if not user or not user.get("reset_token_expires") or user["reset_token_expires"] < datetime.utcnow():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid or expired reset token"
            )

        await users_collection.update_one(
            {"_id": user["_id"]},
            {
                "$set": {"password": hash_password(body.new_password), "updated_at": datetime.utcnow()},
                "$unset": {"reset_token_hash": "", "reset_token_expires": ""}
            }
        )

        logger.info(f"Password reset completed for {user['email']}")
        return {"message": "Password updated successfully"}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Reset password error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to reset password"
        )


# ==================== PROFILE ENDPOINTS ====================

@router.get("/profile")
async def get_profile(user: CurrentUser = Depends(get_current_user)):
    """Profile merged with patient or doctor details"""
    try:
        profile = await load_profile(user.id)
        if not profile:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Profile not found"
            )
        return profile

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Get profile error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve profile"
        )


@router.put("/profile")
async def update_profile(request: ProfileUpdateRequest, user: CurrentUser = Depends(get_current_user)):
    """Partial profile update; role-specific fields go to the patient/doctor record"""
    try:
        changes = request.model_dump(mode="json", exclude_unset=True)

        foreign = DOCTOR_FIELDS if user.is_patient else PATIENT_FIELDS
        rejected = sorted(field for field in changes if field in foreign)
        if rejected:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Field(s) not applicable to {user.user_type} accounts: {', '.join(rejected)}"
            )

        own = PATIENT_FIELDS if user.is_patient else DOCTOR_FIELDS
        common = {k: v for k, v in changes.items() if k in COMMON_FIELDS}
        role_specific = {k: v for k, v in changes.items() if k in own}

        profiles_collection = db_service.get_collection("profiles")
        result = await profiles_collection.update_one(
            {"user_id": user.id},
            {"$set": {**common, "updated_at": datetime.utcnow()}}
        )
        if result.matched_count == 0:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Profile not found"
            )

        if role_specific:
            await role_collection(user.user_type).update_one(
                {"user_id": user.id},
                {"$set": role_specific},
                upsert=True
            )

        logger.info(f"Profile updated for user: {user.id} ({', '.join(sorted(changes)) or 'no fields'})")
        return await load_profile(user.id)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Profile update error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update profile"
        )


@router.post("/profile/picture")
async def upload_profile_picture(file: UploadFile = File(...), user: CurrentUser = Depends(get_current_user)):
    """Upload a profile picture to the avatars bucket and save its URL"""
    try:
        contents = await read_upload(file, MAX_AVATAR_BYTES, IMAGE_TYPES)

        path = f"profile-pictures/{user.id}/{stored_filename(file.filename, file.content_type, IMAGE_TYPES)}"
        url = storage.upload(AVATARS_BUCKET, path, contents, upsert=True)

        await db_service.get_collection("profiles").update_one(
            {"user_id": user.id},
            {"$set": {"profile_picture_url": url, "updated_at": datetime.utcnow()}}
        )

        logger.info(f"Profile picture uploaded for user: {user.id}")
        return {"profile_picture_url": url}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Profile picture upload error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to upload profile picture"
        )


# ==================== HEALTH DATA ENDPOINTS ====================

@router.put("/patients/me/health", response_model=HealthDataResponse)
async def update_health_data(request: HealthDataRequest, user: CurrentUser = Depends(require_patient)):
    """Record the patient's latest vitals and habits"""
    try:
        health = {
            "bmi": request.bmi,
            "smoking_status": None if request.smoking_habit is None else request.smoking_habit != "Non-smoker",
            "drinking_status": None if request.drinking_habit is None else request.drinking_habit == "Daily",
            "heart_rate": request.heart_rate,
            "body_temperature": request.body_temperature,
            "blood_pressure": request.blood_pressure,
            "activity": request.activity,
        }

        await db_service.get_collection("patients").update_one(
            {"user_id": user.id},
            {"$set": {**health, "health_updated_at": datetime.utcnow()}},
            upsert=True
        )

        logger.info(f"Health data updated for patient: {user.id}")
        return HealthDataResponse(**health, bmi_category=bmi_category(health["bmi"]))

    except Exception as e:
        logger.error(f"Health data update error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update health data"
        )


@router.get("/patients/me/health", response_model=HealthDataResponse)
async def get_health_data(user: CurrentUser = Depends(require_patient)):
    """Latest vitals and habits for the dashboard"""
    try:
        patient = await db_service.get_collection("patients").find_one({"user_id": user.id})
        if not patient:
            return HealthDataResponse()

        health = {field: patient.get(field) for field in HEALTH_FIELDS}
        return HealthDataResponse(**health, bmi_category=bmi_category(health["bmi"]))

    except Exception as e:
        logger.error(f"Get health data error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve health data"
        )
