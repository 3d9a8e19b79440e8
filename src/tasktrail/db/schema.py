"""
Relational schema for tasktrail.

Tasks are never physically deleted; archived and rejected tasks stay in the
tasks table. Timestamps are epoch seconds.
"""

import time

from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def now_ts() -> int:
    return int(time.time())


class Project(Base):
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False, unique=True)
    root_path = Column(Text, nullable=True)
    created_ts = Column(Integer, nullable=False, default=now_ts)


class Task(Base):
    __tablename__ = "tasks"
    __table_args__ = (
        CheckConstraint("status_id BETWEEN 1 AND 7", name="ck_tasks_status_id"),
        CheckConstraint("priority BETWEEN 1 AND 4", name="ck_tasks_priority"),
        Index("ix_tasks_project_status", "project_id", "status_id"),
    )

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False)
    title = Column(String(200), nullable=False)
    status_id = Column(Integer, nullable=False, default=1)
    priority = Column(Integer, nullable=False, default=2)
    assigned_agent = Column(String(255), nullable=True)
    created_by_agent = Column(String(255), nullable=True)
    layer = Column(String(50), nullable=True)
    created_ts = Column(Integer, nullable=False, default=now_ts)
    updated_ts = Column(Integer, nullable=False, default=now_ts)
    completed_ts = Column(Integer, nullable=True)

    details = relationship(
        "TaskDetails", uselist=False, back_populates="task", cascade="all, delete-orphan"
    )


class TaskDetails(Base):
    __tablename__ = "task_details"

    task_id = Column(Integer, ForeignKey("tasks.id"), primary_key=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False)
    description = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    acceptance_criteria = Column(Text, nullable=True)
    acceptance_criteria_json = Column(Text, nullable=True)

    task = relationship("Task", back_populates="details")


class TaskTag(Base):
    __tablename__ = "task_tags"
    __table_args__ = (UniqueConstraint("project_id", "task_id", "tag", name="uq_task_tags"),)

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False)
    task_id = Column(Integer, ForeignKey("tasks.id"), nullable=False)
    tag = Column(String(100), nullable=False)


class TaskFileLink(Base):
    __tablename__ = "task_file_links"
    __table_args__ = (
        UniqueConstraint("project_id", "task_id", "file_path", name="uq_task_file_links"),
    )

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False)
    task_id = Column(Integer, ForeignKey("tasks.id"), nullable=False, index=True)
    file_path = Column(Text, nullable=False)
    action = Column(String(10), nullable=False, default="edit")
    linked_ts = Column(Integer, nullable=False, default=now_ts)


class TaskPrunedFile(Base):
    __tablename__ = "task_pruned_files"
    __table_args__ = (Index("ix_pruned_project_ts", "project_id", "pruned_ts"),)

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False)
    task_id = Column(Integer, ForeignKey("tasks.id"), nullable=False, index=True)
    file_path = Column(Text, nullable=False)
    pruned_ts = Column(Integer, nullable=False, default=now_ts)
    linked_decision_id = Column(Integer, ForeignKey("decisions.id"), nullable=True)


class Decision(Base):
    __tablename__ = "decisions"
    __table_args__ = (UniqueConstraint("project_id", "key", name="uq_decisions_key"),)

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False)
    key = Column(String(255), nullable=False)
    value = Column(Text, nullable=False, default="")
    created_ts = Column(Integer, nullable=False, default=now_ts)


class ConfigEntry(Base):
    __tablename__ = "config"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)


class ActivityLogEntry(Base):
    __tablename__ = "activity_log"
    __table_args__ = (Index("ix_activity_project_ts", "project_id", "ts"),)

    id = Column(Integer, primary_key=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False)
    agent = Column(String(255), nullable=False)
    action_type = Column(String(50), nullable=False)
    target = Column(String(255), nullable=False)
    details = Column(Text, nullable=True)
    ts = Column(Integer, nullable=False, default=now_ts)


class TaskDependency(Base):
    __tablename__ = "task_dependencies"
    __table_args__ = (
        CheckConstraint("blocker_task_id <> blocked_task_id", name="ck_task_dependencies_self"),
        Index("ix_task_dependencies_blocked", "blocked_task_id"),
    )

    blocker_task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True)
    blocked_task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False)
    created_ts = Column(Integer, nullable=False, default=now_ts)
