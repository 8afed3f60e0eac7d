"""Relational tables: datasets, collections, data rows, ledger, images, bills."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# Claims never match this lock time; used to park tasks that need an operator.
FAR_FUTURE = datetime(2999, 5, 5)
EPOCH = datetime(2000, 1, 1)


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite drops tz info anyway)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return uuid4().hex


class Base(DeclarativeBase):
    pass


class Dataset(Base):
    __tablename__ = "datasets"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    team_id: Mapped[str] = mapped_column(String(64), index=True)
    parent_id: Mapped[str | None] = mapped_column(String(32), index=True)
    name: Mapped[str] = mapped_column(String(255), default="")
    type: Mapped[str] = mapped_column(String(32), default="dataset")
    vector_model: Mapped[str | None] = mapped_column(String(255))
    agent_model: Mapped[str | None] = mapped_column(String(255))
    auto_sync: Mapped[bool] = mapped_column(Boolean, default=False)
    api_server: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    update_time: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Collection(Base):
    __tablename__ = "dataset_collections"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    team_id: Mapped[str] = mapped_column(String(64), index=True)
    dataset_id: Mapped[str] = mapped_column(ForeignKey("datasets.id"), index=True)
    parent_id: Mapped[str | None] = mapped_column(String(32), index=True)
    name: Mapped[str] = mapped_column(String(255), default="")
    type: Mapped[str] = mapped_column(String(32))

    # source descriptor
    file_id: Mapped[str | None] = mapped_column(String(255))
    raw_link: Mapped[str | None] = mapped_column(Text)
    api_file_id: Mapped[str | None] = mapped_column(String(255))
    external_file_id: Mapped[str | None] = mapped_column(String(255))
    external_file_url: Mapped[str | None] = mapped_column(Text)
    related_img_id: Mapped[str | None] = mapped_column(String(255))
    web_page_selector: Mapped[str | None] = mapped_column(String(255))

    # ProcessConfig.model_dump(); the "training_type" key is the variant tag
    process_config: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    tags: Mapped[list[str]] = mapped_column(JSON, default=list)

    raw_text_hash: Mapped[str | None] = mapped_column(String(64))
    raw_text_length: Mapped[int | None] = mapped_column(Integer)
    next_sync_time: Mapped[datetime | None] = mapped_column(DateTime)

    create_time: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    update_time: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    dataset: Mapped[Dataset] = relationship(lazy="joined")

    @property
    def training_type(self) -> str:
        return (self.process_config or {}).get("training_type", "chunk")


class DatasetData(Base):
    __tablename__ = "dataset_datas"
    __table_args__ = (Index("ix_dataset_datas_owner", "team_id", "dataset_id", "collection_id"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    team_id: Mapped[str] = mapped_column(String(64))
    dataset_id: Mapped[str] = mapped_column(String(32))
    collection_id: Mapped[str] = mapped_column(String(32))
    chunk_index: Mapped[int] = mapped_column(Integer, default=0)
    q: Mapped[str] = mapped_column(Text, default="")
    a: Mapped[str] = mapped_column(Text, default="")
    # [{"type": "default" | "custom", "text": str, "data_id": <vector id>}]
    indexes: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    image_id: Mapped[str | None] = mapped_column(String(255))
    update_time: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    def vector_ids(self) -> list[str]:
        return [entry["data_id"] for entry in self.indexes or [] if entry.get("data_id")]


class TrainingTask(Base):
    """One unit of pipeline work, leased by exactly one worker at a time."""

    __tablename__ = "training_tasks"
    __table_args__ = (Index("ix_training_tasks_claim", "mode", "retry_count", "lock_time"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    team_id: Mapped[str] = mapped_column(String(64), index=True)
    dataset_id: Mapped[str] = mapped_column(String(32), index=True)
    collection_id: Mapped[str] = mapped_column(String(32), index=True)
    bill_id: Mapped[str | None] = mapped_column(String(32))
    mode: Mapped[str] = mapped_column(String(32))

    # chunk payload
    q: Mapped[str] = mapped_column(Text, default="")
    a: Mapped[str] = mapped_column(Text, default="")
    chunk_index: Mapped[int] = mapped_column(Integer, default=0)
    indexes: Mapped[list[str]] = mapped_column(JSON, default=list)
    image_id: Mapped[str | None] = mapped_column(String(255))
    index_size: Mapped[int | None] = mapped_column(Integer)

    # auto index / indexEnhance payload
    auto_indexes: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_indexes_model: Mapped[str | None] = mapped_column(String(255))
    auto_indexes_size: Mapped[int | None] = mapped_column(Integer)
    data_ids: Mapped[list[str]] = mapped_column(JSON, default=list)

    # lease
    lock_time: Mapped[datetime] = mapped_column(DateTime, default=lambda: EPOCH)
    retry_count: Mapped[int] = mapped_column(Integer, default=5)
    error_msg: Mapped[str | None] = mapped_column(Text)
    create_time: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class DatasetImage(Base):
    """An uploaded image; ``expired_at`` is cleared once a collection owns it."""

    __tablename__ = "dataset_images"

    id: Mapped[str] = mapped_column(String(255), primary_key=True, default=new_id)
    team_id: Mapped[str] = mapped_column(String(64), index=True)
    dataset_id: Mapped[str | None] = mapped_column(String(32), index=True)
    collection_id: Mapped[str | None] = mapped_column(String(32), index=True)
    # images extracted from one source share the collection's related_img_id
    related_id: Mapped[str | None] = mapped_column(String(255), index=True)
    path: Mapped[str | None] = mapped_column(Text)
    expired_at: Mapped[datetime | None] = mapped_column(DateTime)
    create_time: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class UsageBill(Base):
    __tablename__ = "usage_bills"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    team_id: Mapped[str] = mapped_column(String(64), index=True)
    app_name: Mapped[str] = mapped_column(String(255), default="")
    source: Mapped[str] = mapped_column(String(32), default="training")
    create_time: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    items: Mapped[list[UsageItem]] = relationship(back_populates="bill", cascade="all, delete-orphan")


class UsageItem(Base):
    __tablename__ = "usage_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    bill_id: Mapped[str] = mapped_column(ForeignKey("usage_bills.id"), index=True)
    mode: Mapped[str] = mapped_column(String(32))
    model: Mapped[str | None] = mapped_column(String(255))
    input_tokens: Mapped[int] = mapped_column(Integer, default=0)
    output_tokens: Mapped[int] = mapped_column(Integer, default=0)
    create_time: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    bill: Mapped[UsageBill] = relationship(back_populates="items")
