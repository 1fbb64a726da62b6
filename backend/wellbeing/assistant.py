from fastapi import APIRouter, HTTPException, Request, status, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal, Optional
from datetime import datetime
import logging

from wellbeing.accounts import load_profile
from wellbeing.auth import CurrentUser, get_current_user, get_optional_user
from wellbeing.database import db_service, parse_object_id, serialize_doc
from wellbeing.limits import limiter
from wellbeing.llm import llm_service
from wellbeing.realtime import broker

router = APIRouter()
logger = logging.getLogger(__name__)

INTERNAL_ERROR = {"error": "Internal server error"}


# ==================== PYDANTIC MODELS ====================

class SymptomCheckRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    symptoms: str = Field(default="", max_length=2000)
    answers: List[str] = Field(default_factory=list, max_length=50)
    user_id: Optional[str] = Field(default=None, alias="userId")


class RecommendationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    profile: Optional[dict] = None
    appointment: Optional[dict] = None
    appointment_id: Optional[str] = Field(default=None, alias="appointmentId")
    user_id: Optional[str] = Field(default=None, alias="userId")


class ReminderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId")
    message: str = Field(..., min_length=1, max_length=1000)
    via: Literal["sms", "app"]


# ==================== HELPERS ====================

async def load_appointment_context(appointment_id: str, user: CurrentUser):
    """(patient profile, appointment) for an appointment the caller is party to"""
    owner_field = "doctor_id" if user.is_doctor else "patient_id"
    appointment = await db_service.get_collection("appointments").find_one({
        "_id": parse_object_id(appointment_id, "Appointment"),
        owner_field: user.id
    })
    if not appointment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Appointment not found"
        )

    profile = await load_profile(appointment["patient_id"])
    return profile, serialize_doc(appointment)


# ==================== AI ENDPOINTS ====================

@router.post("/symptom-check")
@limiter.limit("20/minute")
async def symptom_check(request: Request, body: SymptomCheckRequest):
    """Next clarifying question, or a prediction once the model names a condition/specialist"""
    try:
        logger.info(f"Symptom check: {body.symptoms[:100]} ({len(body.answers)} previous answers)")
        return await llm_service.symptom_check(body.symptoms, body.answers)

    except Exception as e:
        logger.error(f"Symptom check error: {e}", exc_info=True)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=INTERNAL_ERROR)


@router.post("/recommendations")
@limiter.limit("20/minute")
async def recommendations(
    request: Request,
    body: RecommendationRequest,
    user: Optional[CurrentUser] = Depends(get_optional_user),
):
    """Lifestyle, reminder and diet tips after an appointment"""
    profile, appointment = body.profile, body.appointment

    if body.appointment_id:
        if user is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Sign in to get recommendations for a stored appointment"
            )
        stored_profile, stored_appointment = await load_appointment_context(body.appointment_id, user)
        profile = profile or stored_profile
        appointment = appointment or stored_appointment

    if profile is None and appointment is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Provide a profile, an appointment, or an appointmentId"
        )

    try:
        text = await llm_service.generate_recommendations(profile, appointment)
        return {"recommendations": text}

    except Exception as e:
        logger.error(f"Recommendation error: {e}", exc_info=True)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=INTERNAL_ERROR)


# ==================== REMINDER ENDPOINT ====================

@router.post("/send-reminder")
async def send_reminder(request: ReminderRequest, user: CurrentUser = Depends(get_current_user)):
    """Store a reminder; in-app reminders are pushed on the user's realtime stream"""
    if request.user_id != user.id and not user.is_doctor:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only send reminders to yourself"
        )

    try:
        target = await db_service.get_collection("profiles").find_one({"user_id": request.user_id})
        if not target:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="User not found"
            )

        reminder_doc = {
            "user_id": request.user_id,
            "created_by": user.id,
            "message": request.message,
            "via": request.via,
            # No SMS gateway: sms reminders wait in the collection
            "status": "delivered" if request.via == "app" else "queued",
            "created_at": datetime.utcnow()
        }
        await db_service.get_collection("reminders").insert_one(reminder_doc)
        reminder = serialize_doc(reminder_doc)

        if request.via == "app":
            broker.publish(request.user_id, {"type": "reminder", "reminder": reminder})

        logger.info(f"Reminder {reminder['id']} for {request.user_id} via {request.via}: {reminder['status']}")
        return {"id": reminder["id"], "status": reminder["status"]}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Send reminder error: {e}", exc_info=True)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=INTERNAL_ERROR)
