"""Domain 3: Tracked Work (time, expenses, milestones)"""

from sqlalchemy import Column, String, Text, Date, DateTime, Numeric, Boolean
from sqlalchemy.dialects.postgresql import ENUM
from sqlalchemy.orm import relationship

from app.models.base import BaseModel, ProjectScopedMixin, BilledMixin
from app.models.enums import TimeEntryStatus, MilestoneStatus, ExpenseCategory


class TimeEntry(BaseModel, ProjectScopedMixin, BilledMixin):
    """
    Hours logged against a project. Only APPROVED, billable entries are invoiced.
    """
    __tablename__ = "time_entries"

    user_name = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    date = Column(Date, nullable=False, index=True)
    hours = Column(Numeric(8, 2), nullable=False)
    billable = Column(Boolean, default=True, nullable=False)
    status = Column(
        ENUM(TimeEntryStatus, name="time_entry_status", values_callable=lambda x: [e.value for e in x]),
        default=TimeEntryStatus.PENDING,
        nullable=False,
        index=True,
    )

    project = relationship("Project")

    def __repr__(self) -> str:
        return f"<TimeEntry {self.date} {self.hours}h - {self.status}>"


class Expense(BaseModel, ProjectScopedMixin, BilledMixin):
    """
    Cost incurred on a project. Billable expenses can be passed through to the client.
    """
    __tablename__ = "expenses"

    description = Column(Text, nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    date = Column(Date, nullable=False, index=True)
    category = Column(
        ENUM(ExpenseCategory, name="expense_category", values_callable=lambda x: [e.value for e in x]),
        default=ExpenseCategory.OTHER,
        nullable=False,
    )
    billable = Column(Boolean, default=True, nullable=False)

    project = relationship("Project")

    def __repr__(self) -> str:
        return f"<Expense {self.amount} - {self.category}>"


class Milestone(BaseModel, ProjectScopedMixin, BilledMixin):
    """
    Project deliverable. Completion triggers a milestone payment when configured.
    """
    __tablename__ = "milestones"

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    target_date = Column(Date, nullable=True)
    status = Column(
        ENUM(MilestoneStatus, name="milestone_status", values_callable=lambda x: [e.value for e in x]),
        default=MilestoneStatus.PENDING,
        nullable=False,
        index=True,
    )
    completed_at = Column(DateTime, nullable=True)

    project = relationship("Project")

    def __repr__(self) -> str:
        return f"<Milestone {self.name} - {self.status}>"
