from fastapi import APIRouter, HTTPException, status, Depends, UploadFile, File, Form
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, field_validator
from typing import AsyncGenerator
from datetime import datetime
import logging
import time

from wellbeing.accounts import profile_summaries
from wellbeing.auth import CurrentUser, get_current_user, get_stream_user
from wellbeing.database import db_service, serialize_doc
from wellbeing.realtime import broker, format_sse
from wellbeing.storage import (
    CHAT_MEDIA_BUCKET,
    CHAT_MEDIA_TYPES,
    MAX_CHAT_MEDIA_BYTES,
    read_upload,
    storage,
    stored_filename,
)

router = APIRouter()
logger = logging.getLogger(__name__)


# ==================== PYDANTIC MODELS ====================

class SendMessageRequest(BaseModel):
    receiver_id: str
    content: str = Field(..., min_length=1, max_length=5000)
    message_type: str = Field(default="text", max_length=100)

    @field_validator("content")
    @classmethod
    def strip_content(cls, v):
        if not v.strip():
            raise ValueError("Message content cannot be blank")
        return v


# ==================== HELPERS ====================

async def with_sender(messages: list) -> list:
    """Embed the sender's name and picture in each message"""
    profiles = await profile_summaries(msg["sender_id"] for msg in messages)
    for msg in messages:
        profile = profiles.get(msg["sender_id"], {})
        msg["sender"] = {
            "first_name": profile.get("first_name"),
            "last_name": profile.get("last_name"),
            "profile_picture_url": profile.get("profile_picture_url"),
        }
    return messages


async def check_recipient(sender_id: str, receiver_id: str):
    """400 for messages to yourself, 404 when the receiver has no profile"""
    if sender_id == receiver_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot send a message to yourself"
        )

    receiver = await db_service.get_collection("profiles").find_one({"user_id": receiver_id})
    if not receiver:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Recipient not found"
        )


async def send_message(sender_id: str, receiver_id: str, content: str, message_type: str = "text") -> dict:
    """Insert a message, embed its sender and push it to the receiver's stream"""
    await check_recipient(sender_id, receiver_id)

    message_doc = {
        "sender_id": sender_id,
        "receiver_id": receiver_id,
        "content": content,
        "message_type": message_type,
        "is_read": False,
        "created_at": datetime.utcnow()
    }
    await db_service.get_collection("messages").insert_one(message_doc)

    message = (await with_sender([serialize_doc(message_doc)]))[0]
    delivered = broker.publish(receiver_id, {"type": "message", "message": message})

    logger.info(f"Message {message['id']} {sender_id} -> {receiver_id} (live subscribers: {delivered})")
    return message


# ==================== MESSAGE ENDPOINTS ====================

@router.post("/messages", status_code=status.HTTP_201_CREATED)
async def post_message(request: SendMessageRequest, user: CurrentUser = Depends(get_current_user)):
    try:
        return await send_message(user.id, request.receiver_id, request.content, request.message_type)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Send message error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to send message"
        )


@router.post("/messages/media", status_code=status.HTTP_201_CREATED)
async def post_media_message(
    receiver_id: str = Form(...),
    file: UploadFile = File(...),
    user: CurrentUser = Depends(get_current_user),
):
    """Upload a file to chat media storage and send its URL as a message"""
    try:
        # Validate the recipient before anything is written to storage
        await check_recipient(user.id, receiver_id)
        contents = await read_upload(file, MAX_CHAT_MEDIA_BYTES, CHAT_MEDIA_TYPES)

        filename = stored_filename(file.filename, file.content_type, CHAT_MEDIA_TYPES)
        path = f"chat-media/{user.id}/{int(time.time() * 1000)}_{filename}"
        url = storage.upload(CHAT_MEDIA_BUCKET, path, contents, upsert=True)

        return await send_message(user.id, receiver_id, url, file.content_type)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Send media error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to send media"
        )


@router.get("/messages/unread-counts")
async def unread_counts(user: CurrentUser = Depends(get_current_user)):
    """Unread messages addressed to the caller, counted per sender"""
    try:
        counts = {}
        cursor = db_service.get_collection("messages").find(
            {"receiver_id": user.id, "is_read": False},
            {"sender_id": 1}
        )
        async for msg in cursor:
            counts[msg["sender_id"]] = counts.get(msg["sender_id"], 0) + 1
        return {"counts": counts}

    except Exception as e:
        logger.error(f"Unread counts error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load unread counts"
        )


@router.get("/messages/stream")
async def stream_messages(user: CurrentUser = Depends(get_stream_user)):
    """Server-Sent Events feed of messages and reminders addressed to the caller"""

    async def generate_sse() -> AsyncGenerator[str, None]:
        yield format_sse({"type": "subscribed", "user_id": user.id})
        async for event in broker.listen(user.id):
            yield format_sse(event)

    return StreamingResponse(
        generate_sse(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        }
    )


@router.get("/messages/{other_user_id}")
async def get_conversation(other_user_id: str, user: CurrentUser = Depends(get_current_user)):
    """Both directions of the conversation with another user, oldest first"""
    try:
        cursor = db_service.get_collection("messages").find({
            "$or": [
                {"sender_id": user.id, "receiver_id": other_user_id},
                {"sender_id": other_user_id, "receiver_id": user.id},
            ]
        }).sort("created_at", 1)

        messages = [serialize_doc(msg) async for msg in cursor]
        return {"messages": await with_sender(messages)}

    except Exception as e:
        logger.error(f"Get messages error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load messages"
        )


@router.post("/messages/{other_user_id}/read")
async def mark_messages_read(other_user_id: str, user: CurrentUser = Depends(get_current_user)):
    """Mark everything other_user_id sent to the caller as read"""
    if other_user_id == user.id:
        logger.warning(f"mark read called with sender == receiver ({user.id}); arguments are likely swapped")

    try:
        result = await db_service.get_collection("messages").update_many(
            {"sender_id": other_user_id, "receiver_id": user.id, "is_read": False},
            {"$set": {"is_read": True}}
        )
        return {"updated": result.modified_count}

    except Exception as e:
        logger.error(f"Mark read error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to mark messages as read"
        )
