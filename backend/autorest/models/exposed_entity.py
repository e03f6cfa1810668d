"""
Exposed Entity Models - Catalog of tables/collections published through auto-REST
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from autorest.database import Base
import enum


class EntityKind(str, enum.Enum):
    """Kind of backend object an entity maps to."""
    TABLE = "TABLE"
    VIEW = "VIEW"
    COLLECTION = "COLLECTION"


class ExposedEntity(Base):
    """A table, view or collection an administrator has exposed."""
    __tablename__ = "exposed_entities"
    __table_args__ = (
        UniqueConstraint("service_id", "name", name="uq_exposed_entities_service_name"),
        UniqueConstraint("service_id", "path_slug", name="uq_exposed_entities_service_slug"),
    )

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(String(64), nullable=True, index=True)
    service_id = Column(String(64), nullable=False, index=True)
    connection_id = Column(String(64), nullable=True)

    # Location in the target database
    database_name = Column(String(255), nullable=True)
    schema_name = Column(String(255), nullable=True)
    name = Column(String(255), nullable=False)
    kind = Column(String(20), nullable=False, default=EntityKind.TABLE.value)

    primary_key = Column(String(255), nullable=False, default="id")
    default_sort = Column(JSON, nullable=True)  # [["created_at", "desc"], ...]
    path_slug = Column(String(255), nullable=False)

    # Operations
    allow_read = Column(Boolean, default=True, nullable=False)
    allow_create = Column(Boolean, default=False, nullable=False)
    allow_update = Column(Boolean, default=False, nullable=False)
    allow_delete = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    field_policies = relationship(
        "FieldPolicy", back_populates="entity", cascade="all, delete-orphan", lazy="selectin"
    )
    row_policies = relationship(
        "RowPolicy", back_populates="entity", cascade="all, delete-orphan", lazy="selectin"
    )

    def __repr__(self):
        return f"<ExposedEntity(service={self.service_id}, name={self.name}, slug={self.path_slug})>"


class FieldPolicy(Base):
    """Column visibility for one role (or the organization default when role is NULL)."""
    __tablename__ = "field_policies"
    __table_args__ = (
        UniqueConstraint("entity_id", "role_id", name="uq_field_policies_entity_role"),
    )

    id = Column(Integer, primary_key=True, index=True)
    entity_id = Column(Integer, ForeignKey("exposed_entities.id", ondelete="CASCADE"), nullable=False, index=True)
    role_id = Column(String(64), nullable=True)  # NULL = organization default

    masked_fields = Column(JSON, nullable=False, default=list)
    include_fields = Column(JSON, nullable=True)  # Wins over exclude_fields
    exclude_fields = Column(JSON, nullable=True)

    entity = relationship("ExposedEntity", back_populates="field_policies")


class RowPolicy(Base):
    """Row filter template for one role (or the organization default when role is NULL)."""
    __tablename__ = "row_policies"
    __table_args__ = (
        UniqueConstraint("entity_id", "role_id", name="uq_row_policies_entity_role"),
    )

    id = Column(Integer, primary_key=True, index=True)
    entity_id = Column(Integer, ForeignKey("exposed_entities.id", ondelete="CASCADE"), nullable=False, index=True)
    role_id = Column(String(64), nullable=True)

    # Structured filter whose string leaves may hold {{user.id}} style placeholders
    filter_template = Column(JSON, nullable=False)

    entity = relationship("ExposedEntity", back_populates="row_policies")
