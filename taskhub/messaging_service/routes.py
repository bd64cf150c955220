from fastapi import (
    APIRouter, BackgroundTasks, Depends, File, HTTPException, Query, Response, UploadFile,
    WebSocket, WebSocketDisconnect, status
)
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from typing import List
import json
import logging

from taskhub.auth import resolve_account, resolve_user_from_token
from taskhub.database import SessionLocal, get_db, utcnow
from taskhub.errors import TaskhubError
from taskhub.events import EventPublisher, get_event_publisher
from taskhub.messaging_service import crud, storage
from taskhub.messaging_service.delivery import DeliveryRouter, get_delivery_router
from taskhub.messaging_service.schemas import (
    ConversationFlagRequest, ConversationResponse, InboxEntry, MarkReadResponse, MessageCreate,
    MessageEdit, MessageResponse, ReactionRequest, ReactionsResponse, StartConversationRequest,
    StartConversationResponse, UnreadCountResponse, Attachment
)
from taskhub.user_service.crud import get_display_name

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/chat", tags=["chat"])

PREVIEW_LENGTH = 140


def _message_payload(message) -> dict:
    return MessageResponse.model_validate(message).model_dump(mode="json")


def _conversation_update(conversation, with_user: int, message) -> dict:
    return {
        "conversation_id": conversation.id,
        "with_user": with_user,
        "last_message": {
            "text": message.text,
            "created_at": message.created_at,
            "attachments": message.attachments or [],
        },
    }


def schedule_message_delivery(
    background_tasks: BackgroundTasks,
    delivery: DeliveryRouter,
    publisher: EventPublisher,
    message,
    conversation,
    conversation_created: bool,
    payload: dict = None,
):
    """Queue the post-commit side effects of one send, in push order.

    The receiver gets the message; the sender never gets an echo of it, only the
    inbox refresh.
    """
    payload = payload or _message_payload(message)
    receiver_id, sender_id = message.receiver_id, message.sender_id

    if conversation_created:
        background_tasks.add_task(delivery.emit_reliable, receiver_id, "conversation:new", {
            "conversation_id": conversation.id,
            "from": sender_id,
            "is_task_conversation": bool(conversation.is_task_conversation),
            "task_id": conversation.task_id,
            "proposal_id": conversation.proposal_id,
        })
    background_tasks.add_task(delivery.emit_volatile, receiver_id, "message:new", payload)
    background_tasks.add_task(
        delivery.emit_volatile, receiver_id, "conversationUpdate",
        _conversation_update(conversation, sender_id, message)
    )
    background_tasks.add_task(
        delivery.emit_volatile, sender_id, "conversationUpdate",
        _conversation_update(conversation, receiver_id, message)
    )
    background_tasks.add_task(publisher.publish, "chat.message", {
        "conversation_id": conversation.id,
        "message_id": message.id,
        "sender_id": sender_id,
        "recipient_id": receiver_id,
        "preview": (message.text or "")[:PREVIEW_LENGTH],
    })


# ------- Conversations -------
@router.post("/conversations/start", response_model=StartConversationResponse)
def start_conversation(
    request: StartConversationRequest,
    response: Response,
    db: Session = Depends(get_db),
    account=Depends(resolve_account)
):
    conversation, is_new, is_different_context = crud.start_or_get_conversation(
        db,
        account["id"],
        request.recipient_id,
        task_id=request.task_id,
        proposal_id=request.proposal_id,
    )
    response.status_code = status.HTTP_201_CREATED if is_new else status.HTTP_200_OK
    return {
        "conversation": conversation,
        "is_new": is_new,
        "is_different_context": is_different_context,
        "recipient_name": get_display_name(db, request.recipient_id),
    }


@router.get("/inbox", response_model=List[InboxEntry])
def get_inbox(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    account=Depends(resolve_account)
):
    return crud.list_inbox(db, account["id"], page, limit)


@router.get("/conversations/{conversation_id}", response_model=ConversationResponse)
def get_conversation(
    conversation_id: int,
    db: Session = Depends(get_db),
    account=Depends(resolve_account)
):
    return crud.get_conversation_for(db, conversation_id, account["id"])


@router.get("/conversations/{conversation_id}/messages", response_model=List[MessageResponse])
def get_conversation_messages(
    conversation_id: int,
    background_tasks: BackgroundTasks,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    account=Depends(resolve_account),
    delivery: DeliveryRouter = Depends(get_delivery_router)
):
    user_id = account["id"]
    messages, seen = crud.list_messages(db, conversation_id, user_id, page, limit)
    if seen:
        conversation = crud.get_conversation_for(db, conversation_id, user_id)
        background_tasks.add_task(
            delivery.emit_reliable, conversation.other_participant(user_id), "messagesSeen",
            {"conversation_id": conversation_id, "seen_by": user_id, "seen_at": utcnow()}
        )
    return messages


@router.patch("/conversations/{conversation_id}/read", response_model=MarkReadResponse)
def mark_conversation_read(
    conversation_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    account=Depends(resolve_account),
    delivery: DeliveryRouter = Depends(get_delivery_router)
):
    user_id = account["id"]
    conversation, count = crud.mark_conversation_read(db, conversation_id, user_id)
    if count:
        background_tasks.add_task(
            delivery.emit_reliable, conversation.other_participant(user_id), "messagesSeen",
            {"conversation_id": conversation_id, "seen_by": user_id, "seen_at": utcnow()}
        )
    return {"modified_count": count}


@router.put("/conversations/{conversation_id}/pin", response_model=ConversationResponse)
def pin_conversation(
    conversation_id: int,
    request: ConversationFlagRequest,
    db: Session = Depends(get_db),
    account=Depends(resolve_account)
):
    return crud.set_pinned(db, conversation_id, account["id"], request.value)


@router.put("/conversations/{conversation_id}/mute", response_model=ConversationResponse)
def mute_conversation(
    conversation_id: int,
    request: ConversationFlagRequest,
    db: Session = Depends(get_db),
    account=Depends(resolve_account)
):
    return crud.set_muted(db, conversation_id, account["id"], request.value)


# ------- Messages -------
@router.post("/messages", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
def send_message(
    request: MessageCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    account=Depends(resolve_account),
    delivery: DeliveryRouter = Depends(get_delivery_router),
    publisher: EventPublisher = Depends(get_event_publisher)
):
    message, conversation, created = crud.send_message(
        db,
        account["id"],
        conversation_id=request.conversation_id,
        receiver_id=request.receiver_id,
        text=request.text,
        attachments=request.attachments,
        reply_to_id=request.reply_to_id,
        task_id=request.task_id,
        proposal_id=request.proposal_id,
    )
    schedule_message_delivery(background_tasks, delivery, publisher, message, conversation, created)
    return message


@router.get("/messages/search", response_model=List[MessageResponse])
def search_messages(
    q: str = Query(""),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    account=Depends(resolve_account)
):
    return crud.search_messages(db, account["id"], q, page, limit)


@router.get("/messages/unread/count", response_model=UnreadCountResponse)
def get_unread_count(
    db: Session = Depends(get_db),
    account=Depends(resolve_account)
):
    return {"unread_count": crud.unread_total(db, account["id"])}


@router.patch("/messages/{message_id}", response_model=MessageResponse)
def edit_message(
    message_id: int,
    request: MessageEdit,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    account=Depends(resolve_account),
    delivery: DeliveryRouter = Depends(get_delivery_router)
):
    message = crud.edit_message(
        db,
        message_id,
        account["id"],
        text=request.text,
        attachments_to_remove=request.attachments_to_remove,
        new_attachments=request.new_attachments,
    )
    payload = _message_payload(message)
    for user_id in (message.receiver_id, message.sender_id):
        background_tasks.add_task(delivery.emit_reliable, user_id, "message:edited", payload)
    return message


@router.delete("/messages/{message_id}")
def delete_message(
    message_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    account=Depends(resolve_account),
    delivery: DeliveryRouter = Depends(get_delivery_router)
):
    user_id = account["id"]
    message = crud.soft_delete_message(db, message_id, user_id)
    payload = {"message_id": message.id, "by": user_id}
    for participant in (message.receiver_id, message.sender_id):
        background_tasks.add_task(delivery.emit_reliable, participant, "message:deleted", payload)
    return {"message": "Message hidden for user"}


@router.patch("/messages/{message_id}/read", response_model=MessageResponse)
def mark_message_read(
    message_id: int,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    account=Depends(resolve_account),
    delivery: DeliveryRouter = Depends(get_delivery_router)
):
    user_id = account["id"]
    message = crud.mark_message_read(db, message_id, user_id)
    background_tasks.add_task(delivery.emit_reliable, message.sender_id, "message:seen", {
        "message_id": message.id,
        "seen_by": user_id,
        "read_at": message.read_at,
    })
    background_tasks.add_task(delivery.emit_volatile, message.sender_id, "conversationUpdate", {
        "conversation_id": message.conversation_id,
        "last_message": {"text": message.text, "created_at": message.created_at, "read": True, "read_at": message.read_at},
    })
    return message


@router.post("/messages/{message_id}/reactions", response_model=ReactionsResponse)
def react_to_message(
    message_id: int,
    request: ReactionRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    account=Depends(resolve_account),
    delivery: DeliveryRouter = Depends(get_delivery_router)
):
    message = crud.toggle_reaction(db, message_id, account["id"], request.emoji)
    result = ReactionsResponse.model_validate({
        "message_id": message.id,
        "reactions": [{"emoji": r.emoji, "user_id": r.user_id} for r in message.reactions],
    })
    payload = result.model_dump(mode="json")
    for user_id in (message.receiver_id, message.sender_id):
        background_tasks.add_task(delivery.emit_reliable, user_id, "message:reaction", payload)
    return result


@router.post("/attachments", response_model=List[Attachment], status_code=status.HTTP_201_CREATED)
async def upload_attachments(
    files: List[UploadFile] = File(...),
    account=Depends(resolve_account)
):
    if len(files) > storage.MAX_FILES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"At most {storage.MAX_FILES} files")
    uploaded = []
    for upload in files:
        data = await upload.read()
        attachment = await run_in_threadpool(
            storage.upload_attachment, upload.filename, data, upload.content_type or ""
        )
        uploaded.append(attachment)
    return uploaded


# ------- Real-time channel -------
def _send_from_socket(user_id: int, frame: dict):
    db = SessionLocal()
    try:
        request = MessageCreate.model_validate(frame)
        message, conversation, created = crud.send_message(
            db,
            user_id,
            conversation_id=request.conversation_id,
            receiver_id=request.receiver_id,
            text=request.text,
            attachments=request.attachments,
            reply_to_id=request.reply_to_id,
            task_id=request.task_id,
            proposal_id=request.proposal_id,
        )
        return message, conversation, created, _message_payload(message)
    finally:
        db.close()


def _mark_seen_from_socket(user_id: int, message_id: int):
    db = SessionLocal()
    try:
        message = crud.mark_message_read(db, message_id, user_id)
        return message.sender_id, message.id, message.read_at
    finally:
        db.close()


def _typing_target(user_id: int, conversation_id: int):
    db = SessionLocal()
    try:
        conversation = crud.get_conversation_for(db, conversation_id, user_id)
        return conversation.other_participant(user_id)
    finally:
        db.close()


async def _handle_frame(websocket: WebSocket, user_id: int, frame, delivery: DeliveryRouter, publisher: EventPublisher):
    if not isinstance(frame, dict):
        raise ValueError("Frames must be JSON objects")
    event = frame.get("event")
    data = frame.get("data") or {}

    if event == "message:new":
        message, conversation, created, payload = await run_in_threadpool(_send_from_socket, user_id, data)
        background_tasks = BackgroundTasks()
        schedule_message_delivery(
            background_tasks, delivery, publisher, message, conversation, created, payload=payload
        )
        await websocket.send_json({
            "event": "message:ack",
            "data": {"client_id": data.get("client_id"), "message": payload},
        })
        await background_tasks()
    elif event == "message:seen":
        sender_id, message_id, read_at = await run_in_threadpool(
            _mark_seen_from_socket, user_id, int(data.get("message_id"))
        )
        await delivery.emit_reliable(sender_id, "message:seen", {
            "message_id": message_id, "seen_by": user_id, "read_at": read_at,
        })
    elif event == "ping":
        await websocket.send_json({"event": "pong", "data": {}})
    elif event in ("typing", "stopTyping"):
        conversation_id = int(data.get("conversation_id"))
        other = await run_in_threadpool(_typing_target, user_id, conversation_id)
        await delivery.emit_volatile(other, event, {"conversation_id": conversation_id, "from": user_id})
    else:
        await websocket.send_json({"event": "error", "data": {"detail": f"Unknown event {event!r}"}})


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    delivery: DeliveryRouter = Depends(get_delivery_router),
    publisher: EventPublisher = Depends(get_event_publisher)
):
    token = websocket.query_params.get("token")
    try:
        account = await run_in_threadpool(resolve_user_from_token, token)
        user_id = account["id"]
    except HTTPException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await delivery.connect(websocket, user_id)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
                await _handle_frame(websocket, user_id, frame, delivery, publisher)
            except (TaskhubError, ValueError, TypeError) as exc:
                detail = exc.detail if isinstance(exc, TaskhubError) else str(exc)
                await websocket.send_json({"event": "error", "data": {"detail": detail}})
    except WebSocketDisconnect:
        pass
    finally:
        delivery.disconnect(websocket, user_id)
