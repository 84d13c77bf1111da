from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from database import Base


def utcnow():
    return datetime.now(timezone.utc)


# ------------------------------------------------------------------
# User Model
# ------------------------------------------------------------------

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, nullable=True)
    full_name = Column(String(200), nullable=True)
    password = Column(String(255), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    memberships = relationship("CompanyMember", back_populates="user", cascade="all, delete-orphan")
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")

    @property
    def display_name(self):
        return self.full_name or self.username


# ------------------------------------------------------------------
# Company Model (tenant)
# ------------------------------------------------------------------

class Company(Base):
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    slug = Column(String(100), unique=True, index=True, nullable=False)
    settings = Column(JSON, default=dict)  # {"labels": {...}}

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    members = relationship("CompanyMember", back_populates="company", cascade="all, delete-orphan")
    todos = relationship("Todo", back_populates="company", cascade="all, delete-orphan")
    documents = relationship("Document", back_populates="company", cascade="all, delete-orphan")
    superuser_permissions = relationship("SuperuserPermission", back_populates="company", cascade="all, delete-orphan")


# ------------------------------------------------------------------
# CompanyMember Association Table
# (Many-to-Many: Users <-> Companies, with role)
# ------------------------------------------------------------------

class CompanyMember(Base):
    __tablename__ = "company_members"
    __table_args__ = (UniqueConstraint("company_id", "user_id", name="uq_company_member"),)

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(20), nullable=False, default="user")  # admin / gl / superuser / user

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    user = relationship("User", back_populates="memberships")
    company = relationship("Company", back_populates="members")


# ------------------------------------------------------------------
# SuperuserPermission (company or user a superuser may look after)
# ------------------------------------------------------------------

class SuperuserPermission(Base):
    __tablename__ = "superuser_permissions"

    id = Column(Integer, primary_key=True, index=True)
    superuser_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=True)
    target_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    company = relationship("Company", back_populates="superuser_permissions")
    superuser = relationship("User", foreign_keys=[superuser_id])
    target_user = relationship("User", foreign_keys=[target_user_id])


# ------------------------------------------------------------------
# Todo Model
# ------------------------------------------------------------------

class Todo(Base):
    __tablename__ = "todos"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)

    status = Column(String(20), default="open")        # open / in_progress / question / done
    priority = Column(String(20), default="medium")    # low / medium / high / urgent
    priority_order = Column(Integer, default=0)
    deadline = Column(DateTime(timezone=True), nullable=True)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)

    # Note written when the todo entered the matching status
    in_progress_note = Column(Text, nullable=True)
    question_note = Column(Text, nullable=True)
    done_note = Column(Text, nullable=True)

    archived = Column(Boolean, default=False, nullable=False)
    archived_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    company = relationship("Company", back_populates="todos")
    creator = relationship("User", foreign_keys=[created_by])
    assignees = relationship("TodoAssignee", back_populates="todo", cascade="all, delete-orphan")
    subtasks = relationship(
        "Subtask",
        back_populates="todo",
        cascade="all, delete-orphan",
        order_by="Subtask.order_index",
    )
    comments = relationship(
        "Comment",
        back_populates="todo",
        cascade="all, delete-orphan",
        order_by="Comment.created_at",
    )
    document_links = relationship("TodoDocument", back_populates="todo", cascade="all, delete-orphan")

    @property
    def assignee_ids(self):
        """Ids of the assigned users, as used by the permission checks."""
        return frozenset(a.user_id for a in self.assignees)


# ------------------------------------------------------------------
# TodoAssignee Model (multiple assignees per todo)
# ------------------------------------------------------------------

class TodoAssignee(Base):
    __tablename__ = "todo_assignees"
    __table_args__ = (UniqueConstraint("todo_id", "user_id", name="uq_todo_assignee"),)

    id = Column(Integer, primary_key=True, index=True)
    todo_id = Column(Integer, ForeignKey("todos.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    todo = relationship("Todo", back_populates="assignees")
    user = relationship("User")


# ------------------------------------------------------------------
# Subtask Model
# ------------------------------------------------------------------

class Subtask(Base):
    __tablename__ = "subtasks"

    id = Column(Integer, primary_key=True, index=True)
    todo_id = Column(Integer, ForeignKey("todos.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), default="open")
    order_index = Column(Integer, default=0, nullable=False)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)

    in_progress_note = Column(Text, nullable=True)
    question_note = Column(Text, nullable=True)
    done_note = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    todo = relationship("Todo", back_populates="subtasks")
    assignees = relationship("SubtaskAssignee", back_populates="subtask", cascade="all, delete-orphan")


class SubtaskAssignee(Base):
    __tablename__ = "subtask_assignees"
    __table_args__ = (UniqueConstraint("subtask_id", "user_id", name="uq_subtask_assignee"),)

    id = Column(Integer, primary_key=True, index=True)
    subtask_id = Column(Integer, ForeignKey("subtasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    assigned_at = Column(DateTime(timezone=True), default=utcnow)

    subtask = relationship("Subtask", back_populates="assignees")
    user = relationship("User")


# ------------------------------------------------------------------
# Comment Model
# ------------------------------------------------------------------

class Comment(Base):
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, index=True)
    todo_id = Column(Integer, ForeignKey("todos.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    todo = relationship("Todo", back_populates="comments")
    user = relationship("User")


# ------------------------------------------------------------------
# Document Model (company file store) + link to todos
# ------------------------------------------------------------------

class Document(Base):
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)           # uploaded filename for display
    file_path = Column(String(500), nullable=False)      # path inside UPLOAD_DIR
    file_size = Column(Integer, nullable=False)
    mime_type = Column(String(100), nullable=False)
    uploaded_by = Column(Integer, ForeignKey("users.id"), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    company = relationship("Company", back_populates="documents")
    uploader = relationship("User")
    todo_links = relationship("TodoDocument", back_populates="document", cascade="all, delete-orphan")


class TodoDocument(Base):
    __tablename__ = "todo_documents"
    __table_args__ = (UniqueConstraint("todo_id", "document_id", name="uq_todo_document"),)

    id = Column(Integer, primary_key=True, index=True)
    todo_id = Column(Integer, ForeignKey("todos.id", ondelete="CASCADE"), nullable=False, index=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    todo = relationship("Todo", back_populates="document_links")
    document = relationship("Document", back_populates="todo_links")


# ------------------------------------------------------------------
# Notification Model
# ------------------------------------------------------------------

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    todo_id = Column(Integer, ForeignKey("todos.id", ondelete="SET NULL"), nullable=True)
    type = Column(String(40), nullable=False)  # todo_assigned / todo_status_changed / todo_comment / ...
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    user = relationship("User", back_populates="notifications")
