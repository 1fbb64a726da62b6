from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING
from pymongo.server_api import ServerApi
from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException, status
import os
import logging
import certifi

logger = logging.getLogger(__name__)

DB_NAME = os.getenv("MONGODB_DB", "wellbeing")


class MongoDB:
    client: AsyncIOMotorClient = None
    db = None

    def connect(self):
        """Connect to MongoDB (Atlas SRV URIs get the certifi CA bundle)"""
        mongodb_uri = os.getenv("MONGODB_URI")

        if not mongodb_uri:
            raise RuntimeError("MONGODB_URI not found in environment variables")

        try:
            options = {
                "serverSelectionTimeoutMS": 10000,
                "connectTimeoutMS": 20000,
                "socketTimeoutMS": 20000,
                "maxPoolSize": 10,
                "minPoolSize": 1,
                "retryWrites": True,
            }
            if mongodb_uri.startswith("mongodb+srv://"):
                options.update(server_api=ServerApi('1'), tls=True, tlsCAFile=certifi.where())

            self.client = AsyncIOMotorClient(mongodb_uri, **options)
            self.db = self.client[DB_NAME]

            logger.info(f"✓ MongoDB client initialized (database: {DB_NAME})")

        except Exception as e:
            logger.error(f"MongoDB connection error: {e}")
            raise RuntimeError(f"Failed to connect to MongoDB: {e}")

    def get_collection(self, name: str):
        """Get a collection from the database"""
        if self.db is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self.db[name]

    async def ensure_indexes(self):
        """Create the indexes the API queries rely on"""
        await self.get_collection("users").create_index("email", unique=True)
        for name in ("profiles", "patients", "doctors"):
            await self.get_collection(name).create_index("user_id", unique=True)
        await self.get_collection("appointments").create_index(
            [("patient_id", ASCENDING), ("appointment_date", ASCENDING)]
        )
        await self.get_collection("appointments").create_index(
            [("doctor_id", ASCENDING), ("appointment_date", ASCENDING)]
        )
        await self.get_collection("messages").create_index(
            [("sender_id", ASCENDING), ("receiver_id", ASCENDING), ("created_at", DESCENDING)]
        )
        await self.get_collection("messages").create_index(
            [("receiver_id", ASCENDING), ("is_read", ASCENDING)]
        )
        logger.info("✓ MongoDB indexes ensured")

    def close(self):
        if self.client:
            self.client.close()
            self.client = None
            self.db = None


def parse_object_id(value: str, what: str = "Resource") -> ObjectId:
    """Convert a path id to ObjectId, treating malformed ids as not found"""
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{what} not found"
        )


def serialize_doc(doc: dict) -> dict:
    """Turn a Mongo document into a JSON-friendly dict with a string `id`"""
    data = {k: v for k, v in doc.items() if k != "_id"}
    if "_id" in doc:
        data["id"] = str(doc["_id"])
    return data


db_service = MongoDB()
