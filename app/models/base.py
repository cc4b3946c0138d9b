"""Base Models and Mixins"""

import uuid
from sqlalchemy import Column, DateTime, Boolean, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declared_attr

from app.database import Base
from app.utils.time import get_utc_now


class BaseModel(Base):
    """
    Base model class with common fields for all models.

    Provides:
    - UUID primary key
    - created_at timestamp
    - updated_at timestamp
    """
    __abstract__ = True

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    created_at = Column(DateTime, default=get_utc_now, nullable=False)
    updated_at = Column(DateTime, default=get_utc_now, onupdate=get_utc_now, nullable=False)


class ClientScopedMixin:
    """
    Mixin for tenant data owned by a client.

    Provides:
    - client_id foreign key
    """

    @declared_attr
    def client_id(cls):
        return Column(
            UUID(as_uuid=True),
            ForeignKey("clients.id", ondelete="CASCADE"),
            nullable=False,
            index=True
        )


class ProjectScopedMixin:
    """
    Mixin for records tracked against a project.

    Provides:
    - project_id foreign key
    """

    @declared_attr
    def project_id(cls):
        return Column(
            UUID(as_uuid=True),
            ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
            index=True
        )


class BilledMixin:
    """
    Mixin for source records that end up on an invoice.

    Provides:
    - invoice_id of the PAID invoice that billed the record (NULL = unbilled)
    - billed_at timestamp
    """

    @declared_attr
    def invoice_id(cls):
        return Column(
            UUID(as_uuid=True),
            ForeignKey("invoices.id", ondelete="SET NULL"),
            nullable=True,
            index=True
        )

    billed_at = Column(DateTime, nullable=True)


class StatusMixin:
    """
    Mixin for models with active/inactive status.

    Provides:
    - is_active boolean flag
    """
    is_active = Column(Boolean, default=True, nullable=False, index=True)
