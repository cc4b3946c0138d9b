"""Domain 1: Clients & Projects"""

from sqlalchemy import Column, String, Numeric, Text
from sqlalchemy.dialects.postgresql import ENUM
from sqlalchemy.orm import relationship

from app.config import settings
from app.models.base import BaseModel, ClientScopedMixin, StatusMixin
from app.models.enums import ProjectStatus


class Client(BaseModel, StatusMixin):
    """
    Billed customer. Tenant boundary for projects and invoices.
    """
    __tablename__ = "clients"

    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True, index=True)
    currency = Column(String(3), nullable=False, default=lambda: settings.DEFAULT_CURRENCY)

    # Relationships
    projects = relationship("Project", back_populates="client", cascade="all, delete-orphan")
    invoices = relationship("Invoice", back_populates="client")

    def __repr__(self) -> str:
        return f"<Client {self.name}>"


class Project(BaseModel, ClientScopedMixin):
    """
    Engagement delivered for a client. Billed according to its active contract.
    """
    __tablename__ = "projects"

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(
        ENUM(ProjectStatus, name="project_status", values_callable=lambda x: [e.value for e in x]),
        default=ProjectStatus.ACTIVE,
        nullable=False,
        index=True,
    )
    budget = Column(Numeric(12, 2), nullable=True)

    # Relationships
    client = relationship("Client", back_populates="projects")
    contracts = relationship("BillingContract", back_populates="project", cascade="all, delete-orphan")
    invoices = relationship("Invoice", back_populates="project")

    def __repr__(self) -> str:
        return f"<Project {self.name} - {self.status}>"
