from pydantic import BaseModel, EmailStr
from datetime import datetime
from typing import Optional, List, Dict

from permissions import Role


# =========================
# 🔹 USER SCHEMAS
# =========================

class UserBase(BaseModel):
    username: str
    email: Optional[EmailStr] = None
    full_name: Optional[str] = None


class UserCreate(UserBase):
    password: str


class UserLogin(BaseModel):
    username: str
    password: str


class UserProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    email: Optional[EmailStr] = None


class PasswordChange(BaseModel):
    current_password: str
    new_password: str


class UserResponse(UserBase):
    id: int
    created_at: datetime

    class Config:
        from_attributes = True


# =========================
# 🔹 COMPANY SCHEMAS
# =========================

class CompanyBase(BaseModel):
    name: str


class CompanyCreate(CompanyBase):
    slug: str


class CompanyUpdate(BaseModel):
    name: Optional[str] = None
    settings: Optional[dict] = None


class CompanyResponse(CompanyBase):
    id: int
    slug: str
    settings: Optional[dict] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class CompanyWithRoleResponse(CompanyResponse):
    role: Role  # The user's role in this company


class SlugAvailabilityResponse(BaseModel):
    slug: str
    available: bool


# =========================
# 🔹 MEMBER SCHEMAS
# =========================

class MemberAdd(BaseModel):
    """Add by user id, or by username / e-mail address."""
    user_id: Optional[int] = None
    identifier: Optional[str] = None
    role: Role = Role.USER


class MemberRoleUpdate(BaseModel):
    role: Role


class MemberResponse(BaseModel):
    user_id: int
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: str
    created_at: datetime


# =========================
# 🔹 SUPERUSER PERMISSION SCHEMAS
# =========================

class SuperuserPermissionCreate(BaseModel):
    """Without target_user_id the superuser is granted the whole company."""
    superuser_id: int
    target_user_id: Optional[int] = None


class SuperuserPermissionResponse(BaseModel):
    id: int
    superuser_id: int
    company_id: Optional[int] = None
    target_user_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


# =========================
# 🔹 LABEL SCHEMAS
# =========================

class LabelsUpdate(BaseModel):
    company: Optional[str] = None
    roles: Optional[Dict[str, str]] = None


class LabelsResponse(BaseModel):
    company: str
    roles: Dict[str, str]


# =========================
# 🔹 TODO SCHEMAS
# =========================

class TodoCreate(BaseModel):
    title: str
    description: Optional[str] = None
    status: str = "open"        # open / in_progress / question / done
    priority: str = "medium"    # low / medium / high / urgent
    deadline: Optional[datetime] = None
    assignee_ids: List[int] = []


class TodoUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[str] = None
    priority_order: Optional[int] = None
    deadline: Optional[datetime] = None


class TodoStatusUpdate(BaseModel):
    status: str
    note: Optional[str] = None


class TodoAssigneesUpdate(BaseModel):
    user_ids: List[int]


class AssigneeResponse(BaseModel):
    user_id: int
    username: Optional[str] = None
    email: Optional[str] = None
    full_name: Optional[str] = None


class SubtaskCreate(BaseModel):
    title: str
    description: Optional[str] = None
    assignee_ids: List[int] = []


class SubtaskUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None


class SubtaskStatusUpdate(BaseModel):
    status: str
    note: Optional[str] = None


class SubtaskResponse(BaseModel):
    id: int
    todo_id: int
    title: str
    description: Optional[str] = None
    status: str
    order_index: int
    created_by: int
    in_progress_note: Optional[str] = None
    question_note: Optional[str] = None
    done_note: Optional[str] = None
    assignees: List[AssigneeResponse] = []
    created_at: datetime
    updated_at: datetime


class TodoResponse(BaseModel):
    id: int
    company_id: int
    title: str
    description: Optional[str] = None
    status: str
    priority: str
    priority_order: int = 0
    deadline: Optional[datetime] = None
    created_by: int
    created_by_name: Optional[str] = None
    in_progress_note: Optional[str] = None
    question_note: Optional[str] = None
    done_note: Optional[str] = None
    archived: bool = False
    archived_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    assignees: List[AssigneeResponse] = []
    subtasks: List[SubtaskResponse] = []

    # What the requesting user may do with this todo
    can_edit: bool = False
    can_change_status: bool = False
    can_delete: bool = False


class ActivityUser(BaseModel):
    name: str
    email: str


class ActivityEntryResponse(BaseModel):
    id: str
    timestamp: datetime
    type: str  # created / status_change
    user: ActivityUser
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    note: Optional[str] = None


# =========================
# 🔹 COMMENT SCHEMAS
# =========================

class CommentCreate(BaseModel):
    content: str


class CommentResponse(BaseModel):
    id: int
    todo_id: int
    user_id: int
    username: Optional[str] = None
    content: str
    created_at: datetime


# =========================
# 🔹 DOCUMENT SCHEMAS
# =========================

class DocumentResponse(BaseModel):
    id: int
    company_id: int
    name: str
    file_size: int
    mime_type: str
    uploaded_by: int
    created_at: datetime

    class Config:
        from_attributes = True


class TodoDocumentLink(BaseModel):
    document_id: int


# =========================
# 🔹 NOTIFICATION SCHEMAS
# =========================

class NotificationResponse(BaseModel):
    id: int
    user_id: int
    todo_id: Optional[int] = None
    type: str
    title: str
    message: str
    read: bool
    read_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class UnreadCountResponse(BaseModel):
    unread: int
