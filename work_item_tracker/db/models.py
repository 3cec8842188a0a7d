"""
SQLAlchemy database models for the Work Item Tracker.

Work items keep their type-specific values in a single JSON ``fields``
column; the owning work item type decides how those values are validated
and hydrated. Work items and links are soft-deleted through ``deleted_at``.
"""

from typing import Any, Dict

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Double,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.sql import func

from ..timestamps import as_utc
from .base import Base

# SQLite only auto-increments INTEGER PRIMARY KEY columns
SequenceType = BigInteger().with_variant(Integer, "sqlite")

revision_kind_enum = Enum("create", "update", "delete", name="work_item_revision_kind")
link_revision_kind_enum = Enum("create", "delete", name="work_item_link_revision_kind")

# range of the INTEGER number column on every supported backend
MAX_WORK_ITEM_NUMBER = 2**31 - 1


def _iso(value) -> Any:
    value = as_utc(value)
    return value.isoformat() if value else None


# =============================================================================
# Collaborators consumed by the work item core
# =============================================================================


class IdentityModel(Base):
    """A known user identity. Issued by the external identity provider."""

    __tablename__ = "identities"

    id = Column(Uuid, primary_key=True)
    username = Column(String(256), nullable=False, unique=True, index=True)
    full_name = Column(String(256), nullable=True)
    email = Column(String(256), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "username": self.username,
            "full_name": self.full_name,
            "email": self.email,
        }


class SpaceModel(Base):
    """An owning container for work items."""

    __tablename__ = "spaces"

    id = Column(Uuid, primary_key=True)
    name = Column(String(256), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    owner_id = Column(Uuid, ForeignKey("identities.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now()
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "name": self.name,
            "description": self.description,
            "owner_id": str(self.owner_id),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class AreaModel(Base):
    """An area of a space. The root area has an empty path."""

    __tablename__ = "areas"

    id = Column(Uuid, primary_key=True)
    space_id = Column(Uuid, ForeignKey("spaces.id"), nullable=False, index=True)
    name = Column(String(256), nullable=False)
    # ancestor area ids joined by "/"
    path = Column(String(2048), nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "space_id": str(self.space_id),
            "name": self.name,
            "path": self.path,
        }


class IterationModel(Base):
    """An iteration of a space. The root iteration has an empty path."""

    __tablename__ = "iterations"

    id = Column(Uuid, primary_key=True)
    space_id = Column(Uuid, ForeignKey("spaces.id"), nullable=False, index=True)
    name = Column(String(256), nullable=False)
    path = Column(String(2048), nullable=False, default="")
    start_at = Column(DateTime(timezone=True), nullable=True)
    end_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "space_id": str(self.space_id),
            "name": self.name,
            "path": self.path,
            "start_at": _iso(self.start_at),
            "end_at": _iso(self.end_at),
        }


# =============================================================================
# Work item core
# =============================================================================


class WorkItemTypeModel(Base):
    """Storage form of a work item type: its field schema and ancestry."""

    __tablename__ = "work_item_types"

    id = Column(Uuid, primary_key=True)
    name = Column(String(128), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=0)
    # ancestor type names joined by "/"; never ends with the type's own name
    path = Column(String(1024), nullable=False, default="")
    fields = Column(JSON, nullable=False, default=dict)
    extra_fields_allowed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=func.now(), onupdate=func.now()
    )


class WorkItemModel(Base):
    """Storage row of a work item."""

    __tablename__ = "work_items"

    id = Column(Uuid, primary_key=True)
    type = Column(Uuid, ForeignKey("work_item_types.id"), nullable=False, index=True)
    version = Column(Integer, nullable=False, default=0)
    execution_order = Column(Double, nullable=False)
    space_id = Column(Uuid, ForeignKey("spaces.id"), nullable=False, index=True)
    number = Column(Integer, nullable=False)
    fields = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    commented_at = Column(DateTime(timezone=True), nullable=True)
    linked_at = Column(DateTime(timezone=True), nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("space_id", "number", name="uq_work_items_space_number"),
        Index("ix_work_items_space_order", "space_id", "execution_order"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Snapshot of the stored row, as recorded in revisions."""
        return {
            "id": str(self.id),
            "type": str(self.type),
            "version": self.version,
            "execution_order": self.execution_order,
            "space_id": str(self.space_id),
            "number": self.number,
            "fields": dict(self.fields or {}),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "commented_at": _iso(self.commented_at),
            "linked_at": _iso(self.linked_at),
        }


class WorkItemNumberSequenceModel(Base):
    """Per-space counter for human-visible work item numbers."""

    __tablename__ = "work_item_number_sequences"

    space_id = Column(Uuid, ForeignKey("spaces.id"), primary_key=True)
    current_val = Column(Integer, nullable=False, default=0)


class WorkItemRevisionModel(Base):
    """Append-only record of one work item mutation."""

    __tablename__ = "work_item_revisions"

    sequence = Column(SequenceType, primary_key=True, autoincrement=True)
    work_item_id = Column(Uuid, nullable=False, index=True)
    actor_id = Column(Uuid, nullable=False, index=True)
    kind = Column(revision_kind_enum, nullable=False)
    at = Column(DateTime(timezone=True), nullable=False)
    snapshot = Column(JSON, nullable=False)

    __table_args__ = (
        Index("ix_work_item_revisions_item_at", "work_item_id", "at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "work_item_id": str(self.work_item_id),
            "actor_id": str(self.actor_id),
            "kind": self.kind,
            "at": _iso(self.at),
            "snapshot": self.snapshot,
        }


# =============================================================================
# Link graph
# =============================================================================


class WorkItemLinkTypeModel(Base):
    """A named, directed relation between work items (e.g. "parent of")."""

    __tablename__ = "work_item_link_types"

    id = Column(Uuid, primary_key=True)
    name = Column(String(128), nullable=False, unique=True)
    forward_name = Column(String(128), nullable=False, index=True)
    reverse_name = Column(String(128), nullable=False)
    topology = Column(String(32), nullable=False, default="network")
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "name": self.name,
            "forward_name": self.forward_name,
            "reverse_name": self.reverse_name,
            "topology": self.topology,
        }


class WorkItemLinkModel(Base):
    """A directed, typed relation from ``source_id`` to ``target_id``."""

    __tablename__ = "work_item_links"

    id = Column(Uuid, primary_key=True)
    source_id = Column(Uuid, ForeignKey("work_items.id"), nullable=False, index=True)
    target_id = Column(Uuid, ForeignKey("work_items.id"), nullable=False, index=True)
    link_type_id = Column(
        Uuid, ForeignKey("work_item_link_types.id"), nullable=False, index=True
    )
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "source_id": str(self.source_id),
            "target_id": str(self.target_id),
            "link_type_id": str(self.link_type_id),
            "version": self.version,
            "created_at": _iso(self.created_at),
        }


class WorkItemLinkRevisionModel(Base):
    """Append-only record of link creation and deletion."""

    __tablename__ = "work_item_link_revisions"

    sequence = Column(SequenceType, primary_key=True, autoincrement=True)
    link_id = Column(Uuid, nullable=False, index=True)
    source_id = Column(Uuid, nullable=False)
    target_id = Column(Uuid, nullable=False)
    link_type_id = Column(Uuid, nullable=False)
    actor_id = Column(Uuid, nullable=False)
    kind = Column(link_revision_kind_enum, nullable=False)
    at = Column(DateTime(timezone=True), nullable=False)
