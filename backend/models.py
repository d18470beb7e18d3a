# models.py — Database models for the CA Practice Portal
# - UUID string primary keys everywhere
# - 4-role system (SUPER_ADMIN, CA_ADMIN, CA_STAFF, CLIENT)
# - Every tenant-owned row carries firm_id (and client_id where it belongs to a client)
# - Natural keys for upserted rows (folders, conversations) are real unique columns

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean, BigInteger, Integer,
    Enum as SQLEnum, ForeignKey, Text, Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, PyEnum):
    SUPER_ADMIN = "SUPER_ADMIN"
    CA_ADMIN = "CA_ADMIN"
    CA_STAFF = "CA_STAFF"
    CLIENT = "CLIENT"


class UserStatus(str, PyEnum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class ClientType(str, PyEnum):
    INDIVIDUAL = "INDIVIDUAL"
    BUSINESS = "BUSINESS"


class ComplianceFrequency(str, PyEnum):
    ANNUAL = "ANNUAL"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"


class TaskStatus(str, PyEnum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    FILED = "FILED"
    APPROVED = "APPROVED"


class DocumentStatus(str, PyEnum):
    REQUESTED = "REQUESTED"
    UPLOADED = "UPLOADED"
    REVIEWED = "REVIEWED"
    APPROVED = "APPROVED"


class EventSource(str, PyEnum):
    MANUAL = "MANUAL"
    SYSTEM = "SYSTEM"


class ConversationType(str, PyEnum):
    INTERNAL = "INTERNAL"
    CA_CLIENT = "CA_CLIENT"


class NotificationType(str, PyEnum):
    DEADLINE_REMINDER = "DEADLINE_REMINDER"
    DOCUMENT_UPLOADED = "DOCUMENT_UPLOADED"
    FILING_COMPLETED = "FILING_COMPLETED"
    TASK_ASSIGNED = "TASK_ASSIGNED"


class AuditEventType(str, PyEnum):
    # Auth events
    USER_LOGIN = "auth.user.login"
    PASSWORD_CHANGED = "auth.password.changed"
    PASSWORD_RESET = "auth.password.reset"
    # User administration
    USER_CREATED = "user.created"
    PERMISSIONS_CHANGED = "user.permissions.changed"
    FIRM_CREATED = "firm.created"
    # Client events
    CLIENT_CREATED = "client.created"
    CLIENT_UPDATED = "client.updated"
    # Task events
    TASK_CREATED = "task.created"
    TASK_STATUS_CHANGED = "task.status.changed"
    TASK_ASSIGNED = "task.assigned"
    # Document events
    DOCUMENT_UPLOADED = "document.uploaded"
    DOCUMENT_STATUS_CHANGED = "document.status.changed"
    DOCUMENT_DELETED = "document.deleted"


# ============================================================
# FIRMS
# ============================================================

class Firm(Base):
    __tablename__ = "firms"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False, index=True)
    gstin = Column(String, unique=True, nullable=True)
    address = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    users = relationship("User", back_populates="firm")
    clients = relationship("Client", back_populates="firm")


# ============================================================
# USERS
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False, index=True)
    password_hash = Column(String, nullable=False)
    role = Column(SQLEnum(UserRole), nullable=False, index=True)
    firm_id = Column(String, ForeignKey("firms.id"), nullable=True, index=True)
    status = Column(SQLEnum(UserStatus), default=UserStatus.ACTIVE, nullable=False)

    # Capability flags (authoritative for CA_STAFF)
    can_view_clients = Column(Boolean, default=False, nullable=False)
    can_edit_clients = Column(Boolean, default=False, nullable=False)
    can_access_documents = Column(Boolean, default=False, nullable=False)
    can_access_tasks = Column(Boolean, default=False, nullable=False)
    can_access_calendar = Column(Boolean, default=False, nullable=False)
    can_access_chat = Column(Boolean, default=False, nullable=False)

    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    firm = relationship("Firm", back_populates="users")
    client = relationship(
        "Client", back_populates="primary_user", uselist=False,
        foreign_keys="Client.primary_user_id",
    )

    __table_args__ = (
        Index("idx_user_firm_role", "firm_id", "role"),
    )


CAPABILITY_FLAGS = (
    "can_view_clients",
    "can_edit_clients",
    "can_access_documents",
    "can_access_tasks",
    "can_access_calendar",
    "can_access_chat",
)


# ============================================================
# CLIENTS
# ============================================================

class Client(Base):
    __tablename__ = "clients"

    id = Column(String, primary_key=True, default=new_uuid)
    firm_id = Column(String, ForeignKey("firms.id"), nullable=False, index=True)
    primary_user_id = Column(String, ForeignKey("users.id"), nullable=False, unique=True)
    display_name = Column(String, nullable=False)
    type = Column(SQLEnum(ClientType), nullable=False)
    pan = Column(String, nullable=True)
    gstin = Column(String, nullable=True)
    cin = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    firm = relationship("Firm", back_populates="clients")
    primary_user = relationship("User", back_populates="client", foreign_keys=[primary_user_id])

    __table_args__ = (
        UniqueConstraint("firm_id", "pan", name="uq_client_firm_pan"),
    )


# ============================================================
# COMPLIANCE
# ============================================================

class ComplianceType(Base):
    __tablename__ = "compliance_types"

    id = Column(String, primary_key=True, default=new_uuid)
    code = Column(String, unique=True, nullable=False, index=True)
    display_name = Column(String, nullable=False)
    frequency = Column(SQLEnum(ComplianceFrequency), nullable=False)
    meta = Column(JSON, nullable=False, default=dict)  # due-date rule descriptor
    created_at = Column(DateTime(timezone=True), default=utcnow)


class ComplianceTask(Base):
    __tablename__ = "compliance_tasks"

    id = Column(String, primary_key=True, default=new_uuid)
    firm_id = Column(String, ForeignKey("firms.id"), nullable=False, index=True)
    client_id = Column(String, ForeignKey("clients.id"), nullable=False, index=True)
    compliance_type_id = Column(String, ForeignKey("compliance_types.id"), nullable=False)
    period_start = Column(DateTime(timezone=True), nullable=False)
    period_end = Column(DateTime(timezone=True), nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=False, index=True)
    status = Column(SQLEnum(TaskStatus), default=TaskStatus.PENDING, nullable=False, index=True)
    assigned_to_user_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)
    created_by_user_id = Column(String, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    client = relationship("Client")
    compliance_type = relationship("ComplianceType")
    assigned_to = relationship("User", foreign_keys=[assigned_to_user_id])
    created_by = relationship("User", foreign_keys=[created_by_user_id])
    comments = relationship("TaskComment", back_populates="task", order_by="TaskComment.created_at")

    __table_args__ = (
        Index("idx_task_firm_client", "firm_id", "client_id"),
        Index("idx_task_firm_status", "firm_id", "status"),
    )


class TaskComment(Base):
    """Append-only comment on a compliance task"""
    __tablename__ = "task_comments"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("compliance_tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    author_user_id = Column(String, ForeignKey("users.id"), nullable=False)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    task = relationship("ComplianceTask", back_populates="comments")
    author = relationship("User")


# ============================================================
# DOCUMENTS
# ============================================================

class DocumentFolder(Base):
    __tablename__ = "document_folders"

    id = Column(String, primary_key=True, default=new_uuid)
    firm_id = Column(String, ForeignKey("firms.id"), nullable=False, index=True)
    client_id = Column(String, ForeignKey("clients.id"), nullable=False, index=True)
    financial_year = Column(String, nullable=False)
    name = Column(String, nullable=False)
    parent_folder_id = Column(String, ForeignKey("document_folders.id"), nullable=True)
    # firm|client|financial_year|name|parent; a NULL parent must still collide
    natural_key = Column(String, unique=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    documents = relationship("Document", back_populates="folder")
    subfolders = relationship("DocumentFolder")

    @staticmethod
    def build_natural_key(firm_id, client_id, financial_year, name, parent_folder_id) -> str:
        return "|".join([firm_id, client_id, financial_year, name, parent_folder_id or "-"])


class Document(Base):
    __tablename__ = "documents"

    id = Column(String, primary_key=True, default=new_uuid)
    folder_id = Column(String, ForeignKey("document_folders.id"), nullable=False, index=True)
    firm_id = Column(String, ForeignKey("firms.id"), nullable=False, index=True)
    client_id = Column(String, ForeignKey("clients.id"), nullable=False, index=True)
    file_name = Column(String, nullable=False)
    mime_type = Column(String, nullable=False, default="application/octet-stream")
    size = Column(BigInteger, default=0)
    storage_path = Column(String, nullable=False)
    version_group_id = Column(String, nullable=False, index=True)
    version_number = Column(Integer, nullable=False, default=1)
    status = Column(SQLEnum(DocumentStatus), default=DocumentStatus.UPLOADED, nullable=False)
    uploaded_by_id = Column(String, ForeignKey("users.id"), nullable=False)
    uploaded_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    folder = relationship("DocumentFolder", back_populates="documents")
    uploader = relationship("User")

    __table_args__ = (
        Index("idx_document_folder_name", "folder_id", "file_name"),
        UniqueConstraint("version_group_id", "version_number", name="uq_document_version"),
        UniqueConstraint("folder_id", "file_name", "version_number", name="uq_document_folder_name_version"),
    )


# ============================================================
# CALENDAR
# ============================================================

class CalendarEvent(Base):
    __tablename__ = "calendar_events"

    id = Column(String, primary_key=True, default=new_uuid)
    firm_id = Column(String, ForeignKey("firms.id"), nullable=False, index=True)
    client_id = Column(String, ForeignKey("clients.id"), nullable=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    start_at = Column(DateTime(timezone=True), nullable=False, index=True)
    end_at = Column(DateTime(timezone=True), nullable=False)
    source = Column(SQLEnum(EventSource), default=EventSource.MANUAL, nullable=False)
    related_task_id = Column(String, ForeignKey("compliance_tasks.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    client = relationship("Client")
    task = relationship("ComplianceTask")


# ============================================================
# CHAT
# ============================================================

class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(String, primary_key=True, default=new_uuid)
    firm_id = Column(String, ForeignKey("firms.id"), nullable=False, index=True)
    client_id = Column(String, ForeignKey("clients.id"), nullable=False, index=True)
    type = Column(SQLEnum(ConversationType), nullable=False)
    related_document_id = Column(String, ForeignKey("documents.id", ondelete="SET NULL"), nullable=True)
    related_task_id = Column(String, ForeignKey("compliance_tasks.id", ondelete="SET NULL"), nullable=True)
    # firm|client|document|task
    correlation_key = Column(String, unique=True, nullable=False)
    created_by_user_id = Column(String, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    client = relationship("Client")
    messages = relationship("Message", back_populates="conversation", order_by="Message.created_at")

    @staticmethod
    def build_correlation_key(firm_id, client_id, related_document_id, related_task_id) -> str:
        return "|".join([firm_id, client_id, related_document_id or "-", related_task_id or "-"])


class Message(Base):
    __tablename__ = "messages"

    id = Column(String, primary_key=True, default=new_uuid)
    conversation_id = Column(String, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_user_id = Column(String, ForeignKey("users.id"), nullable=False)
    body = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    conversation = relationship("Conversation", back_populates="messages")
    sender = relationship("User")
    reads = relationship("MessageRead", back_populates="message")


class MessageRead(Base):
    """Per-reader read marker; read state is per (message, user)"""
    __tablename__ = "message_reads"

    id = Column(String, primary_key=True, default=new_uuid)
    message_id = Column(String, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    read_at = Column(DateTime(timezone=True), default=utcnow)

    message = relationship("Message", back_populates="reads")

    __table_args__ = (
        UniqueConstraint("message_id", "user_id", name="uq_message_read"),
    )


# ============================================================
# NOTIFICATIONS
# ============================================================

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String, primary_key=True, default=new_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(SQLEnum(NotificationType), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    __table_args__ = (
        Index("idx_notification_user_read", "user_id", "read_at"),
    )


# ============================================================
# AUDIT LOG
# ============================================================

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, default=new_uuid)
    event_type = Column(String, nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)
    firm_id = Column(String, ForeignKey("firms.id"), nullable=True, index=True)
    resource_type = Column(String, nullable=True)
    resource_id = Column(String, nullable=True)
    details = Column(JSON, nullable=False, default=dict)
    request_id = Column(String, nullable=True)
    timestamp = Column(DateTime(timezone=True), default=utcnow, index=True)

    __table_args__ = (
        Index("idx_audit_firm_timestamp", "firm_id", "timestamp"),
    )
