from fastapi import APIRouter, HTTPException, Query, status
from typing import List, Optional
import logging

from wellbeing.accounts import profile_summaries
from wellbeing.database import db_service

router = APIRouter()
logger = logging.getLogger(__name__)

ALL_SPECIALIZATIONS = "All Specializations"

SPECIALIZATIONS = [
    ALL_SPECIALIZATIONS,
    "Cardiology",
    "Dermatology",
    "Pediatrics",
    "Orthopedics",
    "Neurology",
    "Gynecology",
    "Psychiatry",
    "General Medicine",
]


def _doctor_card(doctor: dict, profile: Optional[dict]) -> dict:
    card = {k: v for k, v in doctor.items() if k not in ("_id", "user_id")}
    card["id"] = doctor["user_id"]
    card["profiles"] = {
        "first_name": (profile or {}).get("first_name"),
        "last_name": (profile or {}).get("last_name"),
        "profile_picture_url": (profile or {}).get("profile_picture_url"),
    }
    return card


def matches_filters(card: dict, search: str, specialization: str) -> bool:
    """Name/specialization substring search plus exact specialization filter"""
    names = card["profiles"]
    full_name = f"{names.get('first_name') or ''} {names.get('last_name') or ''}".lower()
    doctor_specialization = card.get("specialization") or ""
    term = search.lower()

    matches_search = term in full_name or term in doctor_specialization.lower()
    matches_specialization = (
        specialization in ("", ALL_SPECIALIZATIONS)
        or doctor_specialization == specialization
    )
    return matches_search and matches_specialization


@router.get("/doctors/specializations")
async def list_specializations() -> List[str]:
    return SPECIALIZATIONS


@router.get("/doctors")
async def list_doctors(
    search: str = Query(default="", max_length=100),
    specialization: str = Query(default="", max_length=100),
):
    """Verified doctors, optionally filtered by search term and specialization"""
    try:
        doctors_collection = db_service.get_collection("doctors")

        doctors = [doc async for doc in doctors_collection.find({"is_verified": True})]
        profiles = await profile_summaries(doc["user_id"] for doc in doctors)

        cards = []
        for doctor in doctors:
            profile = profiles.get(doctor["user_id"])
            # Doctors without a profile row cannot be displayed or booked
            if not profile:
                continue
            card = _doctor_card(doctor, profile)
            if matches_filters(card, search.strip(), specialization.strip()):
                cards.append(card)

        cards.sort(key=lambda c: ((c["profiles"]["last_name"] or "").lower(), (c["profiles"]["first_name"] or "").lower()))
        return {"doctors": cards}

    except Exception as e:
        logger.error(f"List doctors error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load doctors"
        )


@router.get("/doctors/{doctor_id}")
async def get_doctor(doctor_id: str):
    try:
        doctor = await db_service.get_collection("doctors").find_one({"user_id": doctor_id})
        if not doctor:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Doctor not found"
            )

        profiles = await profile_summaries([doctor_id])
        return _doctor_card(doctor, profiles.get(doctor_id))

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Get doctor error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load doctor"
        )
