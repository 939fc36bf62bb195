from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.db.database import Base


class Workflow(Base):
    __tablename__ = "workflows"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    type = Column(String, nullable=False)
    active = Column(Boolean, nullable=False, default=False)
    schedule_config = Column(JSON, nullable=True)
    trigger_config = Column(JSON, nullable=True)
    # "metadata" is reserved on declarative classes
    extra = Column("metadata", JSON, nullable=False, default=dict)
    webhook_url = Column(String, nullable=True)
    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)
    last_run_at = Column(String, nullable=True)
    next_run_at = Column(String, nullable=True, index=True)

    steps = relationship(
        "WorkflowStep",
        order_by="WorkflowStep.step_order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class WorkflowStep(Base):
    __tablename__ = "workflow_steps"

    id = Column(String, primary_key=True)
    workflow_id = Column(String, ForeignKey("workflows.id"), nullable=False)
    step_order = Column(Integer, nullable=False)
    type = Column(String, nullable=False)
    service = Column(String, nullable=False)
    action = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    config = Column(JSON, nullable=False, default=dict)
    created_at = Column(String, nullable=False)


class WorkflowRun(Base):
    __tablename__ = "workflow_runs"

    id = Column(String, primary_key=True)
    workflow_id = Column(String, ForeignKey("workflows.id"), nullable=False, index=True)
    status = Column(String, nullable=False, default="pending")
    started_at = Column(String, nullable=False)
    completed_at = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)
    input_data = Column(JSON, nullable=False, default=dict)
    output_data = Column(JSON, nullable=True)
    execution_log = Column(JSON, nullable=False, default=list)
    created_at = Column(String, nullable=False)


class WorkflowLiveStep(Base):
    __tablename__ = "workflow_live_steps"
    __table_args__ = (
        UniqueConstraint("workflow_run_id", "step_number", name="uq_live_step_run_step"),
    )

    id = Column(String, primary_key=True)
    workflow_run_id = Column(
        String, ForeignKey("workflow_runs.id"), nullable=False, index=True
    )
    step_number = Column(Integer, nullable=False)
    step_type = Column(String, nullable=False)
    content = Column(Text, nullable=True)
    timestamp = Column(String, nullable=False)
    extra = Column("metadata", JSON, nullable=False, default=dict)


class WorkflowTrigger(Base):
    __tablename__ = "workflow_triggers"

    id = Column(String, primary_key=True)
    workflow_id = Column(String, ForeignKey("workflows.id"), nullable=False, index=True)
    user_id = Column(String, nullable=False)
    broker_trigger_id = Column(String, nullable=True, index=True)
    toolkit_slug = Column(String, nullable=False)
    trigger_name = Column(String, nullable=False)
    trigger_config = Column(JSON, nullable=False, default=dict)
    connected_account_id = Column(String, nullable=False)
    active = Column(Boolean, nullable=False, default=False)
    extra = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)


class Chat(Base):
    __tablename__ = "chats"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    extra = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)
    last_message_at = Column(String, nullable=False)


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(String, primary_key=True)
    chat_id = Column(String, ForeignKey("chats.id"), nullable=False, index=True)
    role = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    tool_calls = Column(JSON, nullable=True)
    tool_results = Column(JSON, nullable=True)
    extra = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(String, nullable=False)
