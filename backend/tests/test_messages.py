"""Tests for patient-doctor chat."""

import asyncio
import json

from conftest import auth
from wellbeing.auth import get_stream_user
from wellbeing.messages import send_message, stream_messages
from wellbeing.realtime import broker
from wellbeing.storage import CHAT_MEDIA_BUCKET, storage


def send(client, token, receiver_id, content="Hello"):
    return client.post("/api/messages", headers=auth(token), json={"receiver_id": receiver_id, "content": content})


def send_file(client, token, receiver_id, name, data, content_type):
    return client.post(
        "/api/messages/media",
        headers=auth(token),
        data={"receiver_id": receiver_id},
        files={"file": (name, data, content_type)},
    )


def stored_chat_files():
    bucket = storage.root / CHAT_MEDIA_BUCKET
    return {path for path in bucket.rglob("*") if path.is_file()} if bucket.exists() else set()


class TestSendMessage:
    """Tests for sending text and media messages."""

    def test_send_embeds_sender(self, client, patient, doctor):
        response = send(client, patient[0], doctor[1], "Is my test ready?")
        assert response.status_code == 201
        message = response.json()
        assert message["sender_id"] == patient[1]
        assert message["receiver_id"] == doctor[1]
        assert message["is_read"] is False
        assert message["message_type"] == "text"
        assert message["sender"]["first_name"] == "Pat"

    def test_blank_content_rejected(self, client, patient, doctor):
        assert send(client, patient[0], doctor[1], "   ").status_code == 422

    def test_cannot_message_self(self, client, patient):
        response = send(client, patient[0], patient[1])
        assert response.status_code == 400

    def test_unknown_recipient(self, client, patient):
        response = send(client, patient[0], "000000000000000000000000")
        assert response.status_code == 404
        assert response.json()["detail"] == "Recipient not found"

    def test_send_publishes_to_receiver(self, client, patient, doctor):
        queue = broker.subscribe(doctor[1])
        try:
            send(client, patient[0], doctor[1], "ping")
            event = queue.get_nowait()
        finally:
            broker.unsubscribe(doctor[1], queue)
        assert event["type"] == "message"
        assert event["message"]["content"] == "ping"

    def test_media_message(self, client, patient, doctor):
        response = client.post(
            "/api/messages/media",
            headers=auth(patient[0]),
            data={"receiver_id": doctor[1]},
            files={"file": ("scan report.pdf", b"%PDF-1.4 fake", "application/pdf")},
        )
        assert response.status_code == 201
        message = response.json()
        assert message["message_type"] == "application/pdf"
        assert "/media/chat-media/chat-media/" in message["content"]
        assert message["content"].endswith("_scan_report.pdf")

    def test_media_to_unknown_recipient_stores_nothing(self, client, patient):
        before = stored_chat_files()
        response = send_file(client, patient[0], "000000000000000000000000", "x.pdf", b"%PDF-1.4", "application/pdf")
        assert response.status_code == 404
        assert stored_chat_files() == before

    def test_media_to_self_stores_nothing(self, client, patient):
        before = stored_chat_files()
        response = send_file(client, patient[0], patient[1], "x.pdf", b"%PDF-1.4", "application/pdf")
        assert response.status_code == 400
        assert stored_chat_files() == before

    def test_media_rejects_html(self, client, patient, doctor):
        before = stored_chat_files()
        response = send_file(client, patient[0], doctor[1], "page.html", b"<script>alert(1)</script>", "text/html")
        assert response.status_code == 400
        assert stored_chat_files() == before

    def test_media_extension_follows_content_type(self, client, patient, doctor):
        response = send_file(client, patient[0], doctor[1], "page.html", b"\x89PNG fake", "image/png")
        assert response.status_code == 201
        url = response.json()["content"]
        assert url.endswith("_page.png")

        served = client.get("/media/" + url.split("/media/", 1)[1])
        assert served.status_code == 200
        assert served.headers["content-type"] == "image/png"


class TestConversation:
    """Tests for history, unread counts and read receipts."""

    def test_history_both_directions(self, client, patient, doctor):
        send(client, patient[0], doctor[1], "first")
        send(client, doctor[0], patient[1], "second")
        send(client, patient[0], doctor[1], "third")

        messages = client.get(f"/api/messages/{doctor[1]}", headers=auth(patient[0])).json()["messages"]
        assert [m["content"] for m in messages] == ["first", "second", "third"]
        assert messages[1]["sender"]["last_name"] == "House"

    def test_unread_counts_and_mark_read(self, client, patient, doctor):
        send(client, patient[0], doctor[1], "one")
        send(client, patient[0], doctor[1], "two")

        counts = client.get("/api/messages/unread-counts", headers=auth(doctor[0])).json()["counts"]
        assert counts == {patient[1]: 2}

        marked = client.post(f"/api/messages/{patient[1]}/read", headers=auth(doctor[0])).json()
        assert marked["updated"] == 2

        counts = client.get("/api/messages/unread-counts", headers=auth(doctor[0])).json()["counts"]
        assert counts == {}

    def test_mark_read_only_affects_received(self, client, patient, doctor):
        send(client, patient[0], doctor[1], "one")
        # The sender marking its own outgoing messages changes nothing
        marked = client.post(f"/api/messages/{doctor[1]}/read", headers=auth(patient[0])).json()
        assert marked["updated"] == 0

    def test_stream_requires_token(self, client):
        assert client.get("/api/messages/stream").status_code == 401
        assert client.get("/api/messages/stream", params={"token": "bad"}).status_code == 401


class TestStream:
    """Tests for the realtime message stream."""

    def test_stream_delivers_new_messages(self, patient, doctor):
        patient_token, patient_id = patient
        _, doctor_id = doctor

        async def scenario():
            user = await get_stream_user(token=patient_token, credentials=None)
            response = await stream_messages(user=user)
            frames = response.body_iterator

            first = await frames.__anext__()
            pending = asyncio.ensure_future(frames.__anext__())
            for _ in range(100):
                if broker.subscriber_count(patient_id):
                    break
                await asyncio.sleep(0.01)

            await send_message(doctor_id, patient_id, "Your results are in")
            second = await asyncio.wait_for(pending, timeout=2)
            await frames.aclose()
            return first, second

        first, second = asyncio.run(scenario())
        assert response_event(first) == {"type": "subscribed", "user_id": patient_id}

        event = response_event(second)
        assert event["type"] == "message"
        assert event["message"]["content"] == "Your results are in"
        assert event["message"]["sender_id"] == doctor_id
        assert event["message"]["sender"]["first_name"] == "Dana"


def response_event(frame):
    assert frame.startswith("data: ") and frame.endswith("\n\n")
    return json.loads(frame[len("data: "):])
