from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Computed,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects import mysql

metadata = MetaData()

# MySQL guarda DATETIME con segundos; el orden del historial necesita microsegundos
Timestamp = DateTime().with_variant(mysql.DATETIME(fsp=6), "mysql")

agents = Table(
    "agents",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False),
    Column("name", String(255), nullable=False),
    Column("status", String(20), nullable=False, default="inactive"),
    Column("ai_model", String(100)),
    Column("ai_temperature", Float),
    Column("ai_max_tokens", Integer),
    Column("ai_system_prompt", Text),
    Column("ai_context", Text),
    Column("personality", JSON),
    Column("whatsapp_phone_id", String(64), index=True),
    Column("whatsapp_access_token", Text),
    Column("created_at", Timestamp),
)

conversations = Table(
    "conversations",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("agent_id", String(36), nullable=False, index=True),
    Column("user_id", String(36)),
    Column("contact_phone", String(32), nullable=False),
    Column("contact_name", String(255)),
    Column("whatsapp_conversation_id", String(64)),
    Column("status", String(20), nullable=False, default="active"),
    # contact_phone mientras status = "active", NULL en cualquier otro estado
    Column(
        "active_phone",
        String(32),
        Computed("CASE WHEN status = 'active' THEN contact_phone END", persisted=True),
    ),
    Column("context", JSON),
    Column("metadata", JSON),
    Column("lead_score", Integer, nullable=False, default=0),
    Column("last_message_at", Timestamp),
    Column("created_at", Timestamp),
    Column("updated_at", Timestamp),
    UniqueConstraint("agent_id", "active_phone", name="uq_conversations_active_contact"),
)

messages = Table(
    "messages",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("conversation_id", String(36), nullable=False, index=True),
    Column("agent_id", String(36), nullable=False),
    Column("content", Text, nullable=False, default=""),
    Column("message_type", String(20), nullable=False, default="text"),
    Column("direction", String(10), nullable=False),
    Column("sender_phone", String(32)),
    Column("sender_name", String(255)),
    Column("whatsapp_message_id", String(128), index=True),
    Column("whatsapp_status", String(20)),
    Column("delivered_at", Timestamp),
    Column("read_at", Timestamp),
    Column("ai_generated", Boolean, nullable=False, default=False),
    Column("ai_model", String(100)),
    Column("ai_tokens_used", Integer),
    Column("ai_confidence", Float),
    Column("metadata", JSON),
    Column("attachments", JSON),
    Column("created_at", Timestamp, index=True),
)

wa_processed_messages = Table(
    "wa_processed_messages",
    metadata,
    Column("wamid", String(128), primary_key=True),
    Column("created_at", Timestamp),
)
