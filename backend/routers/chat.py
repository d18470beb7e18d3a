# routers/chat.py — Firm/client conversations with per-reader read state
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Response
from pydantic import Field
from sqlalchemy import select, func, exists
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from auth import CallerContext, require_capability
from database import get_db_session
from errors import NotFound, ValidationError
from models import Conversation, ConversationType, Message, MessageRead
from schemas import CamelModel, iso, enum_value
from tenancy import (
    scoped, effective_client_id, find_or_create,
    require_client_in_scope, require_conversation_in_scope,
    require_document_in_scope, require_task_in_scope,
)

logger = logging.getLogger("ca-portal.chat")

router = APIRouter(prefix="/api/chat", tags=["Chat"])

chat_access = require_capability("can_access_chat")


class ConversationCreate(CamelModel):
    client_id: Optional[str] = None
    related_document_id: Optional[str] = None
    related_task_id: Optional[str] = None


class MessageCreate(CamelModel):
    body: str = Field(..., min_length=1, max_length=10000)


def _conversation_out(c: Conversation, last: Optional[Message] = None, unread: int = 0) -> dict:
    client = c.__dict__.get("client")
    return {
        "id": c.id,
        "clientId": c.client_id,
        "clientName": client.display_name if client else None,
        "type": enum_value(c.type),
        "relatedDocumentId": c.related_document_id,
        "relatedTaskId": c.related_task_id,
        "createdAt": iso(c.created_at),
        "lastMessage": last.body if last else None,
        "lastMessageAt": iso(last.created_at) if last else None,
        "unreadCount": unread,
    }


def _message_out(m: Message, read: bool, sender_name: Optional[str] = None) -> dict:
    if sender_name is None:
        sender = m.__dict__.get("sender")
        sender_name = sender.name if sender else None
    return {
        "id": m.id,
        "conversationId": m.conversation_id,
        "body": m.body,
        "senderId": m.sender_user_id,
        "senderName": sender_name,
        "createdAt": iso(m.created_at),
        "read": read,
    }


def _unread_clause(user_id: str):
    return ~exists().where(MessageRead.message_id == Message.id, MessageRead.user_id == user_id)


# ============================================================
# CONVERSATIONS
# ============================================================

@router.get("/conversations")
async def list_conversations(
    caller: CallerContext = Depends(chat_access),
    db: AsyncSession = Depends(get_db_session),
):
    stmt = scoped(select(Conversation), Conversation, caller).options(selectinload(Conversation.client))
    conversations = (await db.execute(stmt)).scalars().all()
    if not conversations:
        return []

    ids = [c.id for c in conversations]
    unread = dict((await db.execute(
        select(Message.conversation_id, func.count(Message.id))
        .where(Message.conversation_id.in_(ids), _unread_clause(caller.id))
        .group_by(Message.conversation_id)
    )).all())

    out = []
    for c in conversations:
        last = (await db.execute(
            select(Message)
            .where(Message.conversation_id == c.id)
            .order_by(Message.created_at.desc())
            .limit(1)
        )).scalar_one_or_none()
        out.append(_conversation_out(c, last, unread.get(c.id, 0)))

    # Most recent activity first
    out.sort(key=lambda o: o["lastMessageAt"] or o["createdAt"] or "", reverse=True)
    return out


@router.post("/conversations", status_code=201)
async def open_conversation(
    data: ConversationCreate,
    response: Response,
    caller: CallerContext = Depends(chat_access),
    db: AsyncSession = Depends(get_db_session),
):
    """Find-or-create the conversation for (client, document, task)"""
    client_id = effective_client_id(caller, data.client_id)
    if not client_id:
        raise ValidationError("clientId is required")
    client = await require_client_in_scope(db, caller, client_id)

    if data.related_document_id:
        doc = await require_document_in_scope(db, caller, data.related_document_id)
        if doc.client_id != client.id:
            raise NotFound("Document not found")
    if data.related_task_id:
        task = await require_task_in_scope(db, caller, data.related_task_id)
        if task.client_id != client.id:
            raise NotFound("Task not found")

    key = Conversation.build_correlation_key(
        caller.firm_id, client.id, data.related_document_id, data.related_task_id
    )
    conversation, created = await find_or_create(
        db, Conversation, Conversation.correlation_key, key,
        lambda: Conversation(
            firm_id=caller.firm_id,
            client_id=client.id,
            type=ConversationType.CA_CLIENT if caller.is_client else ConversationType.INTERNAL,
            related_document_id=data.related_document_id,
            related_task_id=data.related_task_id,
            correlation_key=key,
            created_by_user_id=caller.id,
        ),
    )
    if not created:
        response.status_code = 200

    out = _conversation_out(conversation)
    out["clientName"] = client.display_name
    return out


# ============================================================
# MESSAGES
# ============================================================

@router.get("/conversations/{conversation_id}/messages")
async def list_messages(
    conversation_id: str,
    caller: CallerContext = Depends(chat_access),
    db: AsyncSession = Depends(get_db_session),
):
    conversation = await require_conversation_in_scope(db, caller, conversation_id)
    messages = (await db.execute(
        select(Message)
        .where(Message.conversation_id == conversation.id)
        .options(selectinload(Message.sender))
        .order_by(Message.created_at.asc())
    )).scalars().all()

    read_ids = set()
    if messages:
        read_ids = set((await db.execute(
            select(MessageRead.message_id).where(
                MessageRead.user_id == caller.id,
                MessageRead.message_id.in_([m.id for m in messages]),
            )
        )).scalars().all())

    return [_message_out(m, m.id in read_ids) for m in messages]


@router.post("/conversations/{conversation_id}/messages", status_code=201)
async def send_message(
    conversation_id: str,
    data: MessageCreate,
    caller: CallerContext = Depends(chat_access),
    db: AsyncSession = Depends(get_db_session),
):
    conversation = await require_conversation_in_scope(db, caller, conversation_id)
    message = Message(conversation_id=conversation.id, sender_user_id=caller.id, body=data.body)
    db.add(message)
    await db.commit()
    return _message_out(message, read=False, sender_name=caller.name)


@router.post("/messages/{message_id}/read")
async def mark_message_read(
    message_id: str,
    caller: CallerContext = Depends(chat_access),
    db: AsyncSession = Depends(get_db_session),
):
    stmt = scoped(
        select(Message).join(Conversation, Message.conversation_id == Conversation.id)
        .where(Message.id == message_id),
        Conversation, caller,
    )
    message = (await db.execute(stmt)).scalar_one_or_none()
    if not message:
        raise NotFound("Message not found")

    existing = (await db.execute(
        select(MessageRead).where(
            MessageRead.message_id == message.id,
            MessageRead.user_id == caller.id,
        )
    )).scalar_one_or_none()
    if existing is None:
        try:
            async with db.begin_nested():
                db.add(MessageRead(message_id=message.id, user_id=caller.id))
        except IntegrityError:
            # A concurrent request already recorded the read
            logger.debug(f"Read marker for message {message.id} already present")
        await db.commit()

    return {"message": "Message marked as read"}
