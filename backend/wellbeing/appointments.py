from fastapi import APIRouter, HTTPException, Query, status, Depends
from pydantic import BaseModel, Field
from typing import List, Literal, Optional
from datetime import date, datetime, time
import logging

from wellbeing.accounts import profile_summaries
from wellbeing.auth import CurrentUser, get_current_user, require_doctor, require_patient
from wellbeing.database import db_service, parse_object_id, serialize_doc

router = APIRouter()
logger = logging.getLogger(__name__)

PENDING_STATUSES = ["pending", "requested"]
ACTIVE_STATUSES = ["pending", "confirmed"]
COMPLETED_STATUSES = ["completed", "consulted"]
FINAL_STATUSES = COMPLETED_STATUSES + ["cancelled"]

# target status -> statuses it may be reached from
TRANSITIONS = {
    "confirmed": set(PENDING_STATUSES),
    "completed": set(PENDING_STATUSES) | {"confirmed"},
    "cancelled": set(PENDING_STATUSES) | {"confirmed"},
}

CHRONOLOGICAL = [("appointment_date", 1), ("appointment_time", 1)]
REVERSE_CHRONOLOGICAL = [("appointment_date", -1), ("appointment_time", -1)]
NEWEST_CREATED = [("created_at", -1)]


# ==================== PYDANTIC MODELS ====================

class BookAppointmentRequest(BaseModel):
    doctor_id: str
    appointment_date: date
    appointment_time: time
    reason: Optional[str] = Field(None, max_length=1000)


# ==================== HELPERS ====================

def today_iso() -> str:
    return date.today().isoformat()


def calculate_age(date_of_birth: Optional[str], today: Optional[date] = None) -> Optional[int]:
    if not date_of_birth:
        return None
    try:
        dob = date.fromisoformat(str(date_of_birth)[:10])
    except ValueError:
        return None
    today = today or date.today()
    return today.year - dob.year - ((today.month, today.day) < (dob.month, dob.day))


async def _fetch(query: dict, sort: list, limit: int = 0) -> List[dict]:
    cursor = db_service.get_collection("appointments").find(query).sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return [serialize_doc(doc) async for doc in cursor]


async def with_doctor_details(appointments: List[dict]) -> List[dict]:
    """Embed doctor specialization and name, as the patient screens show them"""
    doctor_ids = {appt["doctor_id"] for appt in appointments}
    profiles = await profile_summaries(doctor_ids)
    specializations = {}
    async for doctor in db_service.get_collection("doctors").find({"user_id": {"$in": list(doctor_ids)}}):
        specializations[doctor["user_id"]] = doctor.get("specialization")

    for appt in appointments:
        profile = profiles.get(appt["doctor_id"], {})
        appt["doctors"] = {
            "specialization": specializations.get(appt["doctor_id"]),
            "profiles": {
                "first_name": profile.get("first_name"),
                "last_name": profile.get("last_name"),
            },
        }
    return appointments


async def with_patient_details(appointments: List[dict]) -> List[dict]:
    """Embed patient name and picture, as the doctor dashboard shows them"""
    profiles = await profile_summaries(appt["patient_id"] for appt in appointments)
    for appt in appointments:
        profile = profiles.get(appt["patient_id"], {})
        appt["patients"] = {
            "first_name": profile.get("first_name"),
            "last_name": profile.get("last_name"),
            "profile_picture_url": profile.get("profile_picture_url"),
        }
    return appointments


async def _load_owned(appointment_id: str, user: CurrentUser) -> dict:
    """Fetch an appointment the caller is a party to (404 otherwise)"""
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
    return appointment


async def change_status(appointment_id: str, user: CurrentUser, new_status: str) -> dict:
    appointment = await _load_owned(appointment_id, user)

    current = appointment.get("status")
    if current not in TRANSITIONS[new_status]:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot change appointment from {current} to {new_status}"
        )

    now = datetime.utcnow()
    await db_service.get_collection("appointments").update_one(
        {"_id": appointment["_id"]},
        {"$set": {"status": new_status, "updated_at": now}}
    )
    appointment.update(status=new_status, updated_at=now)

    logger.info(f"Appointment {appointment_id}: {current} -> {new_status} by {user.user_type} {user.id}")
    return serialize_doc(appointment)


# ==================== PATIENT ENDPOINTS ====================

@router.post("/appointments", status_code=status.HTTP_201_CREATED)
async def book_appointment(request: BookAppointmentRequest, user: CurrentUser = Depends(require_patient)):
    """Request an appointment with a doctor; it starts as pending"""
    try:
        doctor = await db_service.get_collection("doctors").find_one({"user_id": request.doctor_id})
        if not doctor:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="The selected doctor does not exist."
            )

        if request.appointment_date < date.today():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Please select a future date for your appointment."
            )

        now = datetime.utcnow()
        appointment_doc = {
            "doctor_id": request.doctor_id,
            "patient_id": user.id,
            "appointment_date": request.appointment_date.isoformat(),
            "appointment_time": request.appointment_time.strftime("%H:%M"),
            "reason": request.reason,
            "status": "pending",
            "notes": None,
            "created_at": now,
            "updated_at": now
        }
        result = await db_service.get_collection("appointments").insert_one(appointment_doc)

        logger.info(f"Appointment booked: {result.inserted_id} patient={user.id} doctor={request.doctor_id}")
        return serialize_doc(appointment_doc)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Book appointment error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to book appointment"
        )


@router.get("/appointments")
async def list_my_appointments(
    scope: Literal["all", "upcoming", "active", "history"] = Query(default="all"),
    user: CurrentUser = Depends(require_patient),
):
    """Patient's appointments, with doctor details"""
    try:
        query = {"patient_id": user.id}
        sort = CHRONOLOGICAL

        if scope == "upcoming":
            query["appointment_date"] = {"$gte": today_iso()}
        elif scope == "active":
            query["status"] = {"$in": ACTIVE_STATUSES}
        elif scope == "history":
            query["status"] = {"$in": COMPLETED_STATUSES}
            sort = REVERSE_CHRONOLOGICAL

        appointments = await _fetch(query, sort)
        return {"appointments": await with_doctor_details(appointments)}

    except Exception as e:
        logger.error(f"List appointments error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load appointments"
        )


@router.get("/appointments/doctors")
async def list_my_doctors(user: CurrentUser = Depends(require_patient)):
    """Doctors the patient has a confirmed appointment with (chat contacts)"""
    try:
        confirmed = await _fetch({"patient_id": user.id, "status": "confirmed"}, CHRONOLOGICAL)
        doctor_ids = list(dict.fromkeys(appt["doctor_id"] for appt in confirmed))
        profiles = await profile_summaries(doctor_ids)

        doctors = [
            {
                "id": doctor_id,
                "first_name": profiles.get(doctor_id, {}).get("first_name"),
                "last_name": profiles.get(doctor_id, {}).get("last_name"),
                "profile_picture_url": profiles.get(doctor_id, {}).get("profile_picture_url"),
            }
            for doctor_id in doctor_ids
        ]
        return {"doctors": doctors}

    except Exception as e:
        logger.error(f"List patient doctors error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load doctors"
        )


@router.get("/appointments/{appointment_id}")
async def get_appointment(appointment_id: str, user: CurrentUser = Depends(get_current_user)):
    try:
        appointment = serialize_doc(await _load_owned(appointment_id, user))
        if user.is_doctor:
            return (await with_patient_details([appointment]))[0]
        return (await with_doctor_details([appointment]))[0]

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Get appointment error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load appointment"
        )


# ==================== STATUS ENDPOINTS ====================

@router.post("/appointments/{appointment_id}/confirm")
async def confirm_appointment(appointment_id: str, user: CurrentUser = Depends(require_doctor)):
    try:
        return await change_status(appointment_id, user, "confirmed")
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Confirm appointment error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to confirm appointment"
        )


@router.post("/appointments/{appointment_id}/complete")
async def complete_appointment(appointment_id: str, user: CurrentUser = Depends(require_doctor)):
    """Mark the patient as seen"""
    try:
        return await change_status(appointment_id, user, "completed")
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Complete appointment error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to mark appointment as seen"
        )


@router.post("/appointments/{appointment_id}/cancel")
async def cancel_appointment(appointment_id: str, user: CurrentUser = Depends(get_current_user)):
    """Cancel by either party"""
    try:
        return await change_status(appointment_id, user, "cancelled")
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Cancel appointment error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to cancel appointment"
        )


# ==================== DOCTOR DASHBOARD ENDPOINTS ====================

@router.get("/doctor/appointments")
async def list_doctor_appointments(
    scope: Literal["today", "upcoming", "pending", "completed", "recent"] = Query(default="today"),
    limit: int = Query(default=0, ge=0, le=100),
    user: CurrentUser = Depends(require_doctor),
):
    """Doctor dashboard appointment lists, with patient details"""
    try:
        query = {"doctor_id": user.id}
        today = today_iso()

        if scope == "today":
            query.update(appointment_date=today, status={"$ne": "completed"})
            sort = CHRONOLOGICAL
        elif scope == "upcoming":
            query.update(appointment_date={"$gt": today}, status={"$nin": ["cancelled", "completed"]})
            sort = CHRONOLOGICAL
        elif scope == "pending":
            query["status"] = {"$in": PENDING_STATUSES}
            sort = NEWEST_CREATED
        elif scope == "completed":
            query["status"] = {"$in": COMPLETED_STATUSES}
            sort = REVERSE_CHRONOLOGICAL
        else:
            sort = NEWEST_CREATED
            limit = limit or 1

        appointments = await _fetch(query, sort, limit)
        return {"appointments": await with_patient_details(appointments)}

    except Exception as e:
        logger.error(f"Doctor appointments error ({scope}): {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load appointments"
        )


@router.get("/doctor/appointments/count")
async def count_doctor_appointments(user: CurrentUser = Depends(require_doctor)):
    try:
        count = await db_service.get_collection("appointments").count_documents(
            {"doctor_id": user.id, "status": {"$ne": "cancelled"}}
        )
        return {"count": count}

    except Exception as e:
        logger.error(f"Count appointments error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load total appointments count"
        )


@router.get("/doctor/patients")
async def list_doctor_patients(user: CurrentUser = Depends(require_doctor)):
    """Unique patients across non-cancelled appointments, most recent first"""
    try:
        appointments = await _fetch(
            {"doctor_id": user.id, "status": {"$ne": "cancelled"}}, NEWEST_CREATED
        )

        patient_ids = []
        for appt in appointments:
            if appt["patient_id"] not in patient_ids:
                patient_ids.append(appt["patient_id"])

        profiles = await profile_summaries(patient_ids)
        patients = []
        for patient_id in patient_ids:
            profile = profiles.get(patient_id)
            if not profile:
                continue
            patients.append({
                "id": patient_id,
                "first_name": profile.get("first_name"),
                "last_name": profile.get("last_name"),
                "profile_picture_url": profile.get("profile_picture_url"),
                "date_of_birth": profile.get("date_of_birth"),
                "age": calculate_age(profile.get("date_of_birth")),
            })
        return {"patients": patients}

    except Exception as e:
        logger.error(f"Doctor patients error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load patients"
        )
