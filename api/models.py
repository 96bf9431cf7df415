"""SQLAlchemy models for the construction back-office (workers, projects, finances, AI config)."""
from datetime import date

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


WORKER_STATUSES = ("active", "inactive", "on_leave", "fired")
ATTENDANCE_STATUSES = ("present", "absent", "sick", "vacation")
PROJECT_STATUSES = ("planning", "active", "on_hold", "completed", "cancelled")
CLIENT_STATUSES = ("active", "inactive", "potential")
PRIORITIES = ("low", "medium", "high")
TASK_STATUSES = ("todo", "in_progress", "completed", "cancelled")
CATEGORY_TYPES = ("general", "materials", "labor", "equipment", "transport", "other")


class Worker(Base):
    __tablename__ = "workers"

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String(200), nullable=False, index=True)
    phone = Column(String(32), nullable=True)
    daily_rate = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default="active", index=True)
    position = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())


class Client(Base):
    __tablename__ = "clients"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    contact_person = Column(String(200), nullable=True)
    phone = Column(String(32), nullable=True)
    email = Column(String(200), nullable=True)
    address = Column(String(300), nullable=True)
    company_type = Column(String(50), nullable=True)
    status = Column(String(20), nullable=False, default="active")
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())

    projects = relationship("Project", back_populates="client")


class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    address = Column(String(300), nullable=True)
    description = Column(Text, nullable=True)
    budget = Column(Numeric(14, 2), nullable=True)
    actual_cost = Column(Numeric(14, 2), nullable=True, default=0)
    progress_percentage = Column(Integer, nullable=False, default=0)
    priority = Column(String(10), nullable=False, default="medium")
    status = Column(String(20), nullable=False, default="planning", index=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=True, index=True)
    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())

    client = relationship("Client", back_populates="projects")


class Attendance(Base):
    """One row per (worker, date); writes go through an upsert."""
    __tablename__ = "attendance"
    __table_args__ = (UniqueConstraint("worker_id", "date", name="uq_attendance_worker_date"),)

    id = Column(Integer, primary_key=True, index=True)
    worker_id = Column(Integer, ForeignKey("workers.id"), nullable=False, index=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=True, index=True)
    date = Column(Date, nullable=False, index=True)
    status = Column(String(20), nullable=False)
    hours_worked = Column(Float, nullable=True, default=8)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=func.now())

    worker = relationship("Worker")
    project = relationship("Project")


class Payment(Base):
    """Append-only payroll ledger entry."""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    worker_id = Column(Integer, ForeignKey("workers.id"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=func.now())

    worker = relationship("Worker")


class WorkerAssignment(Base):
    """Worker ↔ project link; active while end_date is NULL."""
    __tablename__ = "worker_assignments"

    id = Column(Integer, primary_key=True, index=True)
    worker_id = Column(Integer, ForeignKey("workers.id"), nullable=False, index=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    foreman_id = Column(Integer, ForeignKey("workers.id"), nullable=True)
    role = Column(String(100), nullable=False, default="worker")
    start_date = Column(Date, nullable=False, default=date.today)
    end_date = Column(Date, nullable=True)
    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())

    worker = relationship("Worker", foreign_keys=[worker_id])
    foreman = relationship("Worker", foreign_keys=[foreman_id])
    project = relationship("Project")


class ProjectTask(Base):
    __tablename__ = "project_tasks"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="todo")
    priority = Column(String(10), nullable=False, default="medium")
    assigned_worker_id = Column(Integer, ForeignKey("workers.id"), nullable=True)
    estimated_hours = Column(Float, nullable=True)
    actual_hours = Column(Float, nullable=True)
    start_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True)
    completed_date = Column(Date, nullable=True)
    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())

    assigned_worker = relationship("Worker")


class ExpenseCategory(Base):
    __tablename__ = "expense_categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, unique=True)
    type = Column(String(20), nullable=False, default="general")
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=func.now())


class ProjectExpense(Base):
    __tablename__ = "project_expenses"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("expense_categories.id"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    date = Column(Date, nullable=False, index=True)
    description = Column(Text, nullable=True)
    receipt_url = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())

    project = relationship("Project")
    category = relationship("ExpenseCategory")


class WorkerExpense(Base):
    __tablename__ = "worker_expenses"

    id = Column(Integer, primary_key=True, index=True)
    worker_id = Column(Integer, ForeignKey("workers.id"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("expense_categories.id"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    date = Column(Date, nullable=False, index=True)
    description = Column(Text, nullable=True)
    receipt_url = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())

    worker = relationship("Worker")
    category = relationship("ExpenseCategory")


class Skill(Base):
    __tablename__ = "skills"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, unique=True)
    category = Column(String(50), nullable=False, default="general")
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=func.now())


class WorkerSkill(Base):
    __tablename__ = "worker_skills"
    __table_args__ = (UniqueConstraint("worker_id", "skill_id", name="uq_worker_skill"),)

    id = Column(Integer, primary_key=True, index=True)
    worker_id = Column(Integer, ForeignKey("workers.id"), nullable=False, index=True)
    skill_id = Column(Integer, ForeignKey("skills.id"), nullable=False)
    level = Column(Integer, nullable=False, default=1)
    years_experience = Column(Integer, nullable=True)
    certified = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())

    skill = relationship("Skill")


class Certification(Base):
    __tablename__ = "certifications"

    id = Column(Integer, primary_key=True, index=True)
    worker_id = Column(Integer, ForeignKey("workers.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    issuing_organization = Column(String(200), nullable=True)
    issue_date = Column(Date, nullable=True)
    expiration_date = Column(Date, nullable=True)
    certificate_url = Column(String(500), nullable=True)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())


class AIProvider(Base):
    """Configuration and last-known health of an external LLM vendor."""
    __tablename__ = "ai_providers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    provider_type = Column(String(20), nullable=False)
    api_endpoint = Column(String(500), nullable=True)
    model_name = Column(String(100), nullable=True)
    priority = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    max_tokens = Column(Integer, nullable=True, default=1000)
    temperature = Column(Float, nullable=True, default=0.7)
    last_status = Column(String(20), nullable=True, default="unknown")
    last_tested_at = Column(DateTime, nullable=True)
    last_response_time_ms = Column(Integer, nullable=True)
    last_error = Column(Text, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())


class NotificationLog(Base):
    __tablename__ = "notifications_log"

    id = Column(Integer, primary_key=True, index=True)
    type = Column(String(50), nullable=False, index=True)
    recipient = Column(String(100), nullable=False)
    message = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    meta = Column("metadata", JSON, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=func.now())


class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    action = Column(String(50), nullable=False, index=True)
    table_name = Column(String(50), nullable=True)
    record_id = Column(String(50), nullable=True)
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    timestamp = Column(DateTime, nullable=False, default=func.now(), index=True)


class SystemSetting(Base):
    __tablename__ = "system_settings"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(100), nullable=False, unique=True)
    value = Column(JSON, nullable=True)
    category = Column(String(50), nullable=False, default="general")
    description = Column(Text, nullable=True)
    is_public = Column(Boolean, nullable=False, default=False)
    updated_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=True, onupdate=func.now())
