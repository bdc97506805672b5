"""
Database models

Users and their canvas data: company -> workflows -> evaluations, plus a
per-user API usage log.
"""

import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import ARRAY, UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .connection import Base


class UserModel(Base):
    """Users table"""
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    plan = Column(String(20), nullable=False, default="free", server_default="free")
    stripe_customer_id = Column(String(255))
    stripe_subscription_id = Column(String(255))
    subscription_status = Column(String(50))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (CheckConstraint("plan IN ('free', 'pro')", name="users_plan_check"),)

    companies = relationship("CompanyModel", back_populates="user", cascade="all, delete-orphan")


class CompanyModel(Base):
    __tablename__ = "companies"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    costo_orario = Column(Numeric(10, 2))
    implementation_plan = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("UserModel", back_populates="companies")
    workflows = relationship("WorkflowModel", back_populates="company", cascade="all, delete-orphan")


class WorkflowModel(Base):
    """Workflows table (id: W001, W002, ...)"""
    __tablename__ = "workflows"

    id = Column(String(20), primary_key=True)
    company_id = Column(UUID(as_uuid=True), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    fase = Column(String(255))
    titolo = Column(String(255), nullable=False)
    descrizione = Column(Text)
    tool = Column(ARRAY(Text), default=list)
    input = Column(ARRAY(Text), default=list)
    output = Column(ARRAY(Text), default=list)
    tempo_medio = Column(Integer, default=0)
    frequenza = Column(Integer, default=0)
    tempo_totale = Column(Integer, default=0)
    pain_points = Column(Text)
    pii = Column(Boolean, default=False)
    hitl = Column(Boolean, default=False)
    citazioni = Column(Boolean, default=False)
    owner = Column(String(255))
    note = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    company = relationship("CompanyModel", back_populates="workflows")
    evaluation = relationship("EvaluationModel", back_populates="workflow", uselist=False, cascade="all, delete-orphan")


class EvaluationModel(Base):
    """2x2 matrix answers (a1..a4 automation, c1..c4 cognitive) and derived scores"""
    __tablename__ = "evaluations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    workflow_id = Column(String(20), ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, unique=True)
    a1 = Column(Integer, default=0)
    a2 = Column(Integer, default=0)
    a3 = Column(Integer, default=0)
    a4 = Column(Integer, default=0)
    c1 = Column(Integer, default=0)
    c2 = Column(Integer, default=0)
    c3 = Column(Integer, default=0)
    c4 = Column(Integer, default=0)
    auto_score = Column(Integer, default=0)
    cog_score = Column(Integer, default=0)
    strategy_name = Column(String(255))
    strategy_color = Column(String(20))
    strategy_desc = Column(Text)
    impatto = Column(Integer, default=0)
    complessita = Column(Integer, default=1)
    priorita = Column(Numeric(6, 2), default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    workflow = relationship("WorkflowModel", back_populates="evaluation")


class ApiUsageModel(Base):
    __tablename__ = "api_usage"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    endpoint = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)


EXPECTED_TABLES = ("users", "companies", "workflows", "evaluations", "api_usage")
