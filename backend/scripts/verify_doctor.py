"""
Mark doctor accounts as verified so they appear in the doctor directory.

Usage:
  python scripts/verify_doctor.py --list
  python scripts/verify_doctor.py --email dr.house@example.com
  python scripts/verify_doctor.py --email dr.house@example.com --revoke
"""

import argparse
import asyncio
import logging
import os
import sys

from bson import ObjectId
from dotenv import load_dotenv

env_path = os.path.join(os.path.dirname(__file__), "..", ".env")
load_dotenv(dotenv_path=env_path)

from wellbeing.database import db_service

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")
logger = logging.getLogger("verify_doctor")


async def list_unverified():
    doctors = db_service.get_collection("doctors")
    users = db_service.get_collection("users")
    count = 0
    async for doctor in doctors.find({"is_verified": {"$ne": True}}):
        if not ObjectId.is_valid(doctor.get("user_id")):
            logger.warning(f"Skipping doctor record {doctor['_id']} with bad user_id {doctor.get('user_id')!r}")
            continue
        user = await users.find_one({"_id": ObjectId(doctor["user_id"])})
        email = user["email"] if user else "<missing user>"
        print(f"{doctor['user_id']}  {email}  {doctor.get('specialization') or '-'}  license={doctor.get('medical_license') or '-'}")
        count += 1
    logger.info(f"{count} unverified doctor(s)")


async def set_verified(email: str, verified: bool) -> bool:
    user = await db_service.get_collection("users").find_one({"email": email.lower()})
    if not user or user.get("user_type") != "doctor":
        logger.error(f"No doctor account for {email}")
        return False

    result = await db_service.get_collection("doctors").update_one(
        {"user_id": str(user["_id"])},
        {"$set": {"is_verified": verified}}
    )
    if result.matched_count == 0:
        logger.error(f"Doctor record missing for {email}")
        return False

    logger.info(f"{email}: is_verified={verified}")
    return True


async def main(args) -> int:
    db_service.connect()
    try:
        if args.list:
            await list_unverified()
            return 0
        ok = await set_verified(args.email, not args.revoke)
        return 0 if ok else 1
    finally:
        db_service.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Verify doctor accounts")
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--email", help="Email of the doctor account")
    group.add_argument("--list", action="store_true", help="List unverified doctors")
    parser.add_argument("--revoke", action="store_true", help="Remove verification instead")
    sys.exit(asyncio.run(main(parser.parse_args())))
