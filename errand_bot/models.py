from sqlalchemy import (
    Column,
    Integer,
    String,
    JSON,
    DateTime,
    ForeignKey,
    Text,
    Index,
    func,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, nullable=False, unique=True, index=True)
    password_hash = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    errands = relationship("ErrandTask", back_populates="user")


class ErrandTask(Base):
    """
    Durable copy of one errand task record.

    The nested parts of the record (details, conversation log, call outcome,
    history) are stored as JSON documents in the same shape the API returns.
    """
    __tablename__ = "errand_tasks"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(String(64), nullable=False, unique=True, index=True)
    request = Column(Text, nullable=True)
    callback_phone = Column(String(32), nullable=True)
    status = Column(String(40), nullable=False, default="processing", index=True)
    location_hint = Column(JSON, nullable=True)  # {"lat": float, "lng": float}
    details = Column(JSON, nullable=False, default=dict)
    call_sid = Column(String(64), nullable=True, index=True)
    conversation_log = Column(JSON, nullable=False, default=list)
    call_outcome = Column(JSON, nullable=True)
    history = Column(JSON, nullable=False, default=list)
    error = Column(Text, nullable=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    last_updated = Column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="errands")

    __table_args__ = (
        Index("ix_errand_tasks_status_last_updated", "status", "last_updated"),
    )
