# tenancy.py — Tenant scoping helpers
# Every lookup of tenant-owned data is filtered by the caller's firm, and for
# CLIENT callers by the caller's own client. Anything outside that scope is
# reported exactly like a missing row.
import logging
from typing import Optional, Callable, Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CallerContext
from errors import NotFound
from models import Client, ComplianceTask, Document, DocumentFolder, Conversation

logger = logging.getLogger("ca-portal.tenancy")


def effective_client_id(caller: CallerContext, requested: Optional[str]) -> Optional[str]:
    """CLIENT callers are pinned to their own client; requested overrides are ignored"""
    if caller.is_client:
        return caller.client_id
    return requested


def scoped(stmt, model, caller: CallerContext, client_id: Optional[str] = None):
    """Add firm (and client) filters for a model carrying firm_id/client_id"""
    stmt = stmt.where(model.firm_id == caller.firm_id)
    if caller.is_client:
        stmt = stmt.where(model.client_id == caller.client_id)
    elif client_id:
        stmt = stmt.where(model.client_id == client_id)
    return stmt


async def _first_in_scope(db: AsyncSession, model, row_id: str, caller: CallerContext, label: str):
    stmt = scoped(select(model).where(model.id == row_id), model, caller)
    row = (await db.execute(stmt)).scalar_one_or_none()
    if row is None:
        logger.debug(f"{label} {row_id} not in scope of firm {caller.firm_id}")
        raise NotFound(f"{label} not found")
    return row


async def require_client_in_scope(db: AsyncSession, caller: CallerContext, client_id: str) -> Client:
    stmt = select(Client).where(Client.id == client_id, Client.firm_id == caller.firm_id)
    if caller.is_client:
        stmt = stmt.where(Client.id == caller.client_id)
    client = (await db.execute(stmt)).scalar_one_or_none()
    if client is None:
        raise NotFound("Client not found")
    return client


async def require_task_in_scope(db: AsyncSession, caller: CallerContext, task_id: str) -> ComplianceTask:
    return await _first_in_scope(db, ComplianceTask, task_id, caller, "Task")


async def require_document_in_scope(db: AsyncSession, caller: CallerContext, document_id: str) -> Document:
    return await _first_in_scope(db, Document, document_id, caller, "Document")


async def require_folder_in_scope(db: AsyncSession, caller: CallerContext, folder_id: str) -> DocumentFolder:
    return await _first_in_scope(db, DocumentFolder, folder_id, caller, "Folder")


async def require_conversation_in_scope(db: AsyncSession, caller: CallerContext, conversation_id: str) -> Conversation:
    return await _first_in_scope(db, Conversation, conversation_id, caller, "Conversation")


async def find_or_create(
    db: AsyncSession,
    model,
    key_column,
    key: str,
    factory: Callable[[], Any],
):
    """Select by natural key, insert under a SAVEPOINT, re-select on a lost race.

    Returns (row, created).
    """
    existing = (await db.execute(select(model).where(key_column == key))).scalar_one_or_none()
    if existing is not None:
        return existing, False

    row = factory()
    try:
        async with db.begin_nested():
            db.add(row)
    except IntegrityError:
        logger.info(f"{model.__tablename__}: concurrent insert for key {key}, using winner")
        winner = (await db.execute(select(model).where(key_column == key))).scalar_one()
        return winner, False
    await db.commit()
    return row, True
