import mimetypes
import os
import re
import uuid
from typing import List, Optional
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload, selectinload
from fastapi import HTTPException, status

from models import (
    User,
    Company,
    CompanyMember,
    SuperuserPermission,
    Todo,
    TodoAssignee,
    Subtask,
    SubtaskAssignee,
    Comment,
    Document,
    TodoDocument,
    Notification,
)
from schemas import (
    UserCreate,
    UserProfileUpdate,
    PasswordChange,
    CompanyCreate,
    CompanyUpdate,
    MemberAdd,
    SuperuserPermissionCreate,
    LabelsUpdate,
    TodoCreate,
    TodoUpdate,
    TodoStatusUpdate,
    SubtaskCreate,
    SubtaskUpdate,
    SubtaskStatusUpdate,
    CommentCreate,
)
from permissions import CompanyContext, Role
import permissions
import labels
import timeline
import config
import auth
import sessions
import logging

# Configure logging
logger = logging.getLogger(__name__)


def _not_found(detail: str):
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


def _bad_request(detail: str):
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


# ------------------------------------------------------------------
# USER CRUD OPERATIONS
# ------------------------------------------------------------------

def create_user(db: Session, user: UserCreate):
    """
    Create a new user with hashed password.
    Username must not equal password; username and e-mail must be unique.
    """
    username = (user.username or "").strip()
    if not username:
        raise _bad_request("Username must not be empty")

    # Prevent username equal to password (avoids confusion and weak accounts)
    if username.lower() == (user.password or "").strip().lower():
        raise _bad_request("Username must not be the same as password")

    if get_user_by_username(db, username):
        raise _bad_request("Username already exists")

    if user.email and get_user_by_email(db, user.email):
        raise _bad_request("E-mail address already in use")

    db_user = User(
        username=username,
        email=user.email,
        full_name=user.full_name,
        password=auth.hash_password(user.password),
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)

    logger.info(f"User created: {username} (ID: {db_user.id})")
    return db_user


def get_user_by_username(db: Session, username: str):
    """
    Fetch user by username.
    Used for login & validation.
    """
    return db.query(User).filter(User.username == username).first()


def get_user_by_email(db: Session, email: str):
    return db.query(User).filter(func.lower(User.email) == email.lower()).first()


def get_user_by_id(db: Session, user_id: int):
    return db.query(User).filter(User.id == user_id).first()


def find_user(db: Session, identifier: str):
    """
    Look a user up by username or e-mail address.
    """
    identifier = (identifier or "").strip()
    if not identifier:
        return None
    if "@" in identifier:
        return get_user_by_email(db, identifier)
    return get_user_by_username(db, identifier)


def update_user_profile(db: Session, user: User, payload: UserProfileUpdate):
    updates = payload.model_dump(exclude_unset=True)

    if updates.get("email"):
        existing = get_user_by_email(db, updates["email"])
        if existing and existing.id != user.id:
            raise _bad_request("E-mail address already in use")

    for field, value in updates.items():
        setattr(user, field, value)
    db.commit()
    db.refresh(user)

    logger.info(f"Profile updated for user {user.id}")
    return user


def change_password(db: Session, user: User, payload: PasswordChange):
    """
    Change the password and end every session of the user.
    """
    if not auth.verify_password(payload.current_password, user.password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Current password is incorrect")

    if payload.new_password.strip().lower() == (user.username or "").strip().lower():
        raise _bad_request("Password must not be the same as username")

    user.password = auth.hash_password(payload.new_password)
    db.commit()
    sessions.delete_user_sessions(user.id)

    logger.info(f"Password changed for user {user.id}")
    return {"detail": "Password updated successfully"}


# ------------------------------------------------------------------
# COMPANY CRUD OPERATIONS
# ------------------------------------------------------------------

def get_company_by_slug(db: Session, slug: str):
    return db.query(Company).filter(Company.slug == slug).first()


def is_slug_available(db: Session, slug: str) -> bool:
    return db.query(Company.id).filter(Company.slug == slug).first() is None


def company_to_dict(company: Company, role) -> dict:
    return {
        "id": company.id,
        "name": company.name,
        "slug": company.slug,
        "settings": company.settings or {},
        "created_at": company.created_at,
        "updated_at": company.updated_at,
        "role": role,
    }


def get_company_context(db: Session, user_id: int, company_id: int) -> Optional[CompanyContext]:
    """
    Build the active company context of a user.

    Membership role first; without membership a superuser grant for the
    company gives the superuser role; otherwise None.
    """
    membership = (
        db.query(CompanyMember)
        .filter(CompanyMember.company_id == company_id, CompanyMember.user_id == user_id)
        .first()
    )
    if membership:
        role = Role.parse(membership.role)
        if role is None:
            logger.warning(
                f"Unknown role '{membership.role}' for user {user_id} in company {company_id}; treating as user"
            )
            role = Role.USER
        return CompanyContext(company_id=company_id, role=role)

    if has_superuser_access_to_company(db, user_id, company_id):
        return CompanyContext(company_id=company_id, role=Role.SUPERUSER)

    return None


def get_user_companies(db: Session, user_id: int) -> List[dict]:
    """
    All companies of a user with the user's role, ordered by name.
    Includes companies granted to the user as superuser.
    """
    rows = (
        db.query(Company, CompanyMember.role)
        .join(CompanyMember, CompanyMember.company_id == Company.id)
        .filter(CompanyMember.user_id == user_id)
        .order_by(Company.name)
        .all()
    )
    companies = {company.id: company_to_dict(company, role) for company, role in rows}

    granted = (
        db.query(Company)
        .join(SuperuserPermission, SuperuserPermission.company_id == Company.id)
        .filter(SuperuserPermission.superuser_id == user_id)
        .order_by(Company.name)
        .all()
    )
    for company in granted:
        if company.id not in companies:
            companies[company.id] = company_to_dict(company, Role.SUPERUSER.value)

    return sorted(companies.values(), key=lambda c: c["name"])


def is_admin_anywhere(db: Session, user_id: int) -> bool:
    return (
        db.query(CompanyMember.id)
        .filter(CompanyMember.user_id == user_id, CompanyMember.role == Role.ADMIN.value)
        .first()
        is not None
    )


def can_create_company(db: Session, user_id: int) -> bool:
    """
    Feature flag, existing admins, or bootstrapping the very first company.
    """
    if config.ALLOW_USER_CREATE_COMPANY or is_admin_anywhere(db, user_id):
        return True
    return db.query(Company.id).first() is None


def create_company(db: Session, payload: CompanyCreate, user_id: int):
    """
    Create a new company.
    Creator is automatically added as company admin.
    """
    if not can_create_company(db, user_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only company admins can create companies",
        )

    name = (payload.name or "").strip()
    if not name:
        raise _bad_request("Company name must not be empty")

    slug = (payload.slug or "").strip()
    if not re.match(config.SLUG_PATTERN, slug):
        raise _bad_request("Slug may only contain lowercase letters, digits and single hyphens")
    if not is_slug_available(db, slug):
        raise _bad_request(f"Slug '{slug}' is already taken")

    company = Company(name=name, slug=slug, settings={})
    db.add(company)
    db.flush()

    db.add(CompanyMember(company_id=company.id, user_id=user_id, role=Role.ADMIN.value))
    db.commit()
    db.refresh(company)

    logger.info(f"Company created: {name} ({slug}, ID: {company.id}) by user {user_id}")
    return company


def update_company(db: Session, company: Company, payload: CompanyUpdate, context: Optional[CompanyContext], user_id: int):
    """
    Rename a company or merge new settings (admin / GL).
    Labels are not part of this update, see update_company_labels.
    """
    auth.require_admin_or_management(context, user_id)

    if payload.name is not None:
        name = payload.name.strip()
        if not name:
            raise _bad_request("Company name must not be empty")
        company.name = name

    if payload.settings is not None:
        if "labels" in payload.settings:
            raise _bad_request("Labels are changed through the labels endpoint")
        company.settings = {**(company.settings or {}), **payload.settings}

    db.commit()
    db.refresh(company)
    logger.info(f"Company {company.id} updated by user {user_id}")
    return company


def delete_company(db: Session, company: Company, context: Optional[CompanyContext], user_id: int):
    """
    Delete a company with its members, todos and documents (admin only).
    """
    auth.require(permissions.can_delete_company(context), "Only admins can delete a company", user_id)

    file_paths = [doc.file_path for doc in company.documents]
    company_id = company.id

    db.delete(company)
    db.commit()

    for path in file_paths:
        _remove_stored_file(path)

    logger.info(f"Company {company_id} deleted by admin {user_id}")
    return {"message": "Company deleted"}


# ------------------------------------------------------------------
# LABELS
# ------------------------------------------------------------------

def get_company_labels(company: Company) -> dict:
    return labels.labels_from_settings(company.settings)


def update_company_labels(db: Session, company: Company, payload: LabelsUpdate, context: Optional[CompanyContext], user_id: int):
    auth.require_company_admin(context, user_id)

    stored = (company.settings or {}).get("labels")
    custom = dict(stored) if isinstance(stored, dict) else {}
    if payload.company is not None:
        custom["company"] = payload.company.strip()
    if payload.roles is not None:
        unknown = [key for key in payload.roles if Role.parse(key) is None]
        if unknown:
            raise _bad_request(f"Unknown roles: {', '.join(unknown)}")
        stored_roles = custom.get("roles")
        custom["roles"] = {**(stored_roles if isinstance(stored_roles, dict) else {}), **payload.roles}

    company.settings = {**(company.settings or {}), "labels": custom}
    db.commit()
    db.refresh(company)

    logger.info(f"Labels of company {company.id} updated by user {user_id}")
    return get_company_labels(company)


# ------------------------------------------------------------------
# MEMBER OPERATIONS
# ------------------------------------------------------------------

def get_company_members(db: Session, company_id: int) -> List[dict]:
    """
    List company members with profile fields, ordered by username.
    """
    rows = (
        db.query(CompanyMember, User)
        .join(User, User.id == CompanyMember.user_id)
        .filter(CompanyMember.company_id == company_id)
        .order_by(User.username)
        .all()
    )
    return [
        {
            "user_id": user.id,
            "username": user.username,
            "email": user.email,
            "full_name": user.full_name,
            "role": membership.role,
            "created_at": membership.created_at,
        }
        for membership, user in rows
    ]


def get_membership(db: Session, company_id: int, user_id: int):
    return (
        db.query(CompanyMember)
        .filter(CompanyMember.company_id == company_id, CompanyMember.user_id == user_id)
        .first()
    )


def _count_admins(db: Session, company_id: int) -> int:
    return (
        db.query(func.count(CompanyMember.id))
        .filter(CompanyMember.company_id == company_id, CompanyMember.role == Role.ADMIN.value)
        .scalar()
        or 0
    )


def add_company_member(db: Session, company: Company, payload: MemberAdd, context: Optional[CompanyContext], user_id: int):
    """
    Add an existing user to a company (admin only).
    The user is looked up by id, username or e-mail.
    """
    auth.require_company_admin(context, user_id)

    if payload.user_id is not None:
        user = get_user_by_id(db, payload.user_id)
    else:
        user = find_user(db, payload.identifier)
    if not user:
        raise _not_found("User not found")

    if get_membership(db, company.id, user.id):
        raise _bad_request(f"User {user.username} is already a member of this company")

    membership = CompanyMember(company_id=company.id, user_id=user.id, role=payload.role.value)
    db.add(membership)
    db.commit()

    logger.info(f"User {user.id} added to company {company.id} as {payload.role.value} by user {user_id}")
    return {
        "user_id": user.id,
        "username": user.username,
        "email": user.email,
        "full_name": user.full_name,
        "role": membership.role,
        "created_at": membership.created_at,
    }


def update_member_role(db: Session, company: Company, member_id: int, role: Role, context: Optional[CompanyContext], user_id: int):
    """
    Change a member's role (admin only). The last admin cannot be demoted.
    """
    auth.require_company_admin(context, user_id)

    membership = get_membership(db, company.id, member_id)
    if not membership:
        raise _not_found("User is not a member of this company")

    if membership.role == Role.ADMIN.value and role is not Role.ADMIN and _count_admins(db, company.id) <= 1:
        raise _bad_request("Cannot demote the last admin of the company")

    membership.role = role.value
    db.commit()

    logger.info(f"Role of user {member_id} in company {company.id} set to {role.value} by user {user_id}")
    return {"message": "Role updated", "user_id": member_id, "role": role.value}


def remove_company_member(db: Session, company: Company, member_id: int, context: Optional[CompanyContext], user_id: int):
    """
    Remove a member (admin only) and unassign them from the company's todos and subtasks.
    """
    auth.require_company_admin(context, user_id)

    membership = get_membership(db, company.id, member_id)
    if not membership:
        raise _not_found("User is not a member of this company")

    if membership.role == Role.ADMIN.value and _count_admins(db, company.id) <= 1:
        raise _bad_request("Cannot remove the last admin of the company")

    company_todos = db.query(Todo.id).filter(Todo.company_id == company.id)
    company_subtasks = db.query(Subtask.id).join(Todo, Todo.id == Subtask.todo_id).filter(Todo.company_id == company.id)

    db.query(TodoAssignee).filter(
        TodoAssignee.user_id == member_id,
        TodoAssignee.todo_id.in_(company_todos),
    ).delete(synchronize_session=False)
    db.query(SubtaskAssignee).filter(
        SubtaskAssignee.user_id == member_id,
        SubtaskAssignee.subtask_id.in_(company_subtasks),
    ).delete(synchronize_session=False)

    db.delete(membership)
    db.commit()

    logger.info(f"User {member_id} removed from company {company.id} by user {user_id}")
    return {"message": "Member removed from company"}


# ------------------------------------------------------------------
# SUPERUSER PERMISSIONS
# ------------------------------------------------------------------

def has_superuser_access_to_company(db: Session, superuser_id: int, company_id: int) -> bool:
    return (
        db.query(SuperuserPermission.id)
        .filter(
            SuperuserPermission.superuser_id == superuser_id,
            SuperuserPermission.company_id == company_id,
        )
        .first()
        is not None
    )


def _company_permissions_query(db: Session, company_id: int):
    """Grants for the company itself or for one of its members."""
    member_ids = db.query(CompanyMember.user_id).filter(CompanyMember.company_id == company_id)
    return db.query(SuperuserPermission).filter(
        (SuperuserPermission.company_id == company_id)
        | (SuperuserPermission.target_user_id.in_(member_ids))
    )


def get_superuser_permissions(db: Session, company: Company, superuser_id: int, context: Optional[CompanyContext], user_id: int):
    auth.require_company_admin(context, user_id)
    return (
        _company_permissions_query(db, company.id)
        .filter(SuperuserPermission.superuser_id == superuser_id)
        .order_by(SuperuserPermission.id)
        .all()
    )


def add_superuser_permission(db: Session, company: Company, payload: SuperuserPermissionCreate, context: Optional[CompanyContext], user_id: int):
    """
    Grant a superuser access to this company, or to one of its members.
    """
    auth.require_company_admin(context, user_id)

    if not get_user_by_id(db, payload.superuser_id):
        raise _not_found("Superuser not found")

    if payload.target_user_id is None:
        if has_superuser_access_to_company(db, payload.superuser_id, company.id):
            raise _bad_request("Superuser already has access to this company")
        permission = SuperuserPermission(superuser_id=payload.superuser_id, company_id=company.id)
    else:
        if not get_membership(db, company.id, payload.target_user_id):
            raise _bad_request("Target user is not a member of this company")
        permission = SuperuserPermission(
            superuser_id=payload.superuser_id,
            target_user_id=payload.target_user_id,
        )

    db.add(permission)
    db.commit()
    db.refresh(permission)

    logger.info(
        f"Superuser permission {permission.id} granted to user {payload.superuser_id} "
        f"in company {company.id} by user {user_id}"
    )
    return permission


def remove_superuser_permission(db: Session, company: Company, permission_id: int, context: Optional[CompanyContext], user_id: int):
    auth.require_company_admin(context, user_id)

    permission = (
        _company_permissions_query(db, company.id)
        .filter(SuperuserPermission.id == permission_id)
        .first()
    )
    if not permission:
        raise _not_found("Superuser permission not found")

    db.delete(permission)
    db.commit()
    logger.info(f"Superuser permission {permission_id} removed by user {user_id}")
    return {"message": "Superuser permission removed"}


def clear_superuser_permissions(db: Session, company: Company, superuser_id: int, context: Optional[CompanyContext], user_id: int):
    auth.require_company_admin(context, user_id)

    grants = (
        _company_permissions_query(db, company.id)
        .filter(SuperuserPermission.superuser_id == superuser_id)
        .all()
    )
    for grant in grants:
        db.delete(grant)
    db.commit()

    logger.info(f"Cleared {len(grants)} superuser permissions of user {superuser_id} in company {company.id}")
    return {"message": "Superuser permissions cleared", "removed": len(grants)}


# ------------------------------------------------------------------
# TODO CRUD OPERATIONS
# ------------------------------------------------------------------

def _validate_status(value: str):
    if value not in config.TODO_STATUSES:
        raise _bad_request(f"Invalid status. Must be one of: {', '.join(config.TODO_STATUSES)}")


def _validate_priority(value: str):
    if value not in config.TODO_PRIORITIES:
        raise _bad_request(f"Invalid priority. Must be one of: {', '.join(config.TODO_PRIORITIES)}")


def _todo_query(db: Session):
    return db.query(Todo).options(
        joinedload(Todo.creator),
        selectinload(Todo.assignees).joinedload(TodoAssignee.user),
        selectinload(Todo.subtasks).selectinload(Subtask.assignees).joinedload(SubtaskAssignee.user),
    )


def get_todo_by_id(db: Session, todo_id: int):
    return _todo_query(db).filter(Todo.id == todo_id).first()


def _get_todo_or_404(db: Session, todo_id: int) -> Todo:
    todo = get_todo_by_id(db, todo_id)
    if not todo:
        raise _not_found("ToDo not found")
    return todo


def _assignee_dict(assignee) -> dict:
    user = assignee.user
    return {
        "user_id": assignee.user_id,
        "username": user.username if user else None,
        "email": user.email if user else None,
        "full_name": user.full_name if user else None,
    }


def subtask_to_dict(subtask: Subtask) -> dict:
    return {
        "id": subtask.id,
        "todo_id": subtask.todo_id,
        "title": subtask.title,
        "description": subtask.description,
        "status": subtask.status,
        "order_index": subtask.order_index,
        "created_by": subtask.created_by,
        "in_progress_note": subtask.in_progress_note,
        "question_note": subtask.question_note,
        "done_note": subtask.done_note,
        "assignees": [_assignee_dict(a) for a in subtask.assignees],
        "created_at": subtask.created_at,
        "updated_at": subtask.updated_at,
    }


def todo_to_dict(todo: Todo, user_id: int, context: Optional[CompanyContext]) -> dict:
    """
    Serialize a todo together with what the requesting user may do with it.
    """
    creator = todo.creator
    return {
        "id": todo.id,
        "company_id": todo.company_id,
        "title": todo.title,
        "description": todo.description,
        "status": todo.status,
        "priority": todo.priority,
        "priority_order": todo.priority_order or 0,
        "deadline": todo.deadline,
        "created_by": todo.created_by,
        "created_by_name": creator.display_name if creator else None,
        "in_progress_note": todo.in_progress_note,
        "question_note": todo.question_note,
        "done_note": todo.done_note,
        "archived": bool(todo.archived),
        "archived_at": todo.archived_at,
        "created_at": todo.created_at,
        "updated_at": todo.updated_at,
        "assignees": [_assignee_dict(a) for a in todo.assignees],
        "subtasks": [subtask_to_dict(s) for s in todo.subtasks],
        "can_edit": permissions.can_edit(todo, user_id, context),
        "can_change_status": permissions.can_change_status(todo, user_id, context),
        "can_delete": permissions.can_delete(todo, user_id, context),
    }


def get_company_todos(
    db: Session,
    company_id: int,
    user_id: int,
    context: Optional[CompanyContext],
    status_filter: str = None,
    include_archived: bool = False,
    assigned_to_me: bool = False,
) -> List[Todo]:
    """
    Todos of a company the user may see, newest first.
    """
    query = _todo_query(db).filter(Todo.company_id == company_id)

    if not include_archived:
        query = query.filter(Todo.archived.is_(False))

    if status_filter:
        _validate_status(status_filter)
        query = query.filter(Todo.status == status_filter)

    todos = query.order_by(Todo.created_at.desc(), Todo.id.desc()).all()

    if assigned_to_me:
        todos = [t for t in todos if user_id in t.assignee_ids]

    return permissions.filter_visible(todos, user_id, context)


def get_visible_todo(db: Session, todo_id: int, user_id: int, context: Optional[CompanyContext]) -> Todo:
    todo = _get_todo_or_404(db, todo_id)
    auth.require(permissions.can_view(todo, user_id, context), "You are not allowed to view this ToDo", user_id)
    return todo


def _require_members(db: Session, company_id: int, user_ids) -> List[int]:
    """
    Deduplicate user ids (keeping order) and make sure all belong to the company.
    """
    unique_ids = list(dict.fromkeys(user_ids or []))
    if not unique_ids:
        return []
    member_ids = {
        row[0] for row in
        db.query(CompanyMember.user_id)
        .filter(CompanyMember.company_id == company_id, CompanyMember.user_id.in_(unique_ids))
        .all()
    }
    missing = [str(uid) for uid in unique_ids if uid not in member_ids]
    if missing:
        raise _bad_request(f"Users are not members of this company: {', '.join(missing)}")
    return unique_ids


def create_todo(db: Session, payload: TodoCreate, user_id: int, context: Optional[CompanyContext]):
    """
    Create a todo in the active company and assign it.
    Every assignee except the creator is notified.
    """
    auth.require(context is not None, "Company access required", user_id)

    title = (payload.title or "").strip()
    if not title:
        raise _bad_request("Title must not be empty")
    _validate_status(payload.status)
    _validate_priority(payload.priority)

    assignee_ids = _require_members(db, context.company_id, payload.assignee_ids)

    todo = Todo(
        company_id=context.company_id,
        created_by=user_id,
        title=title,
        description=payload.description or None,
        status=payload.status,
        priority=payload.priority,
        deadline=payload.deadline,
    )
    todo.assignees = [TodoAssignee(user_id=uid) for uid in assignee_ids]
    db.add(todo)
    db.commit()

    _notify_assigned(db, todo, [uid for uid in assignee_ids if uid != user_id])

    logger.info(f"ToDo created: {title} (ID: {todo.id}) in company {context.company_id} by user {user_id}")
    return _get_todo_or_404(db, todo.id)


def update_todo(db: Session, todo_id: int, payload: TodoUpdate, user_id: int, context: Optional[CompanyContext]):
    todo = _get_todo_or_404(db, todo_id)
    auth.require(permissions.can_edit(todo, user_id, context), "You are not allowed to edit this ToDo", user_id)

    updates = payload.model_dump(exclude_unset=True)
    if "title" in updates:
        updates["title"] = (updates["title"] or "").strip()
        if not updates["title"]:
            raise _bad_request("Title must not be empty")
    if "priority" in updates:
        _validate_priority(updates["priority"])

    for field, value in updates.items():
        setattr(todo, field, value)
    db.commit()

    logger.info(f"ToDo {todo_id} updated by user {user_id}: {', '.join(updates) or 'no changes'}")
    return _get_todo_or_404(db, todo_id)


def _apply_status(item, new_status: str, note: Optional[str]):
    """
    Set the status and store the note in the column for that status.
    Returns the previous status.
    """
    _validate_status(new_status)
    old_status = item.status
    item.status = new_status

    note_field = config.STATUS_NOTE_FIELDS.get(new_status)
    if note and note_field:
        setattr(item, note_field, note)
    return old_status


def update_todo_status(db: Session, todo_id: int, payload: TodoStatusUpdate, user_id: int, context: Optional[CompanyContext]):
    """
    Change a todo's status, optionally with a note.
    Creator and assignees (except the acting user) are notified when the status really changes.
    """
    todo = _get_todo_or_404(db, todo_id)
    auth.require(
        permissions.can_change_status(todo, user_id, context),
        "You are not allowed to change the status of this ToDo",
        user_id,
    )

    old_status = _apply_status(todo, payload.status, payload.note)
    db.commit()

    if old_status != payload.status:
        _notify_status_change(db, todo, old_status, payload.status, user_id)

    logger.info(f"ToDo {todo_id} status {old_status} -> {payload.status} by user {user_id}")
    return _get_todo_or_404(db, todo_id)


def add_todo_assignees(db: Session, todo_id: int, user_ids: List[int], user_id: int, context: Optional[CompanyContext]):
    todo = _get_todo_or_404(db, todo_id)
    auth.require(permissions.can_edit(todo, user_id, context), "You are not allowed to assign this ToDo", user_id)

    wanted = _require_members(db, todo.company_id, user_ids)
    new_ids = [uid for uid in wanted if uid not in todo.assignee_ids]
    for uid in new_ids:
        todo.assignees.append(TodoAssignee(user_id=uid))
    db.commit()

    _notify_assigned(db, todo, [uid for uid in new_ids if uid != user_id])

    logger.info(f"ToDo {todo_id}: assignees {new_ids} added by user {user_id}")
    return _get_todo_or_404(db, todo_id)


def remove_todo_assignees(db: Session, todo_id: int, user_ids: List[int], user_id: int, context: Optional[CompanyContext]):
    todo = _get_todo_or_404(db, todo_id)
    auth.require(permissions.can_edit(todo, user_id, context), "You are not allowed to assign this ToDo", user_id)

    to_remove = set(user_ids or [])
    todo.assignees = [a for a in todo.assignees if a.user_id not in to_remove]
    db.commit()

    logger.info(f"ToDo {todo_id}: assignees {sorted(to_remove)} removed by user {user_id}")
    return _get_todo_or_404(db, todo_id)


def set_todo_archived(db: Session, todo_id: int, archived: bool, user_id: int, context: Optional[CompanyContext]):
    todo = _get_todo_or_404(db, todo_id)
    auth.require(permissions.can_edit(todo, user_id, context), "You are not allowed to archive this ToDo", user_id)

    todo.archived = archived
    todo.archived_at = datetime.now(timezone.utc) if archived else None
    db.commit()

    logger.info(f"ToDo {todo_id} {'archived' if archived else 'unarchived'} by user {user_id}")
    return _get_todo_or_404(db, todo_id)


def delete_todo(db: Session, todo_id: int, user_id: int, context: Optional[CompanyContext]):
    """
    Delete a todo with its assignees, subtasks, comments and document links.
    """
    todo = _get_todo_or_404(db, todo_id)
    auth.require(permissions.can_delete(todo, user_id, context), "You are not allowed to delete this ToDo", user_id)

    db.delete(todo)
    db.commit()
    logger.info(f"ToDo {todo_id} deleted by user {user_id}")
    return {"message": "ToDo deleted"}


def get_todo_activities(db: Session, todo_id: int, user_id: int, context: Optional[CompanyContext]) -> List[dict]:
    todo = get_visible_todo(db, todo_id, user_id, context)
    return timeline.build_activities(todo)


# ------------------------------------------------------------------
# SUBTASK OPERATIONS
# ------------------------------------------------------------------

def _get_subtask_or_404(db: Session, todo: Todo, subtask_id: int) -> Subtask:
    subtask = (
        db.query(Subtask)
        .filter(Subtask.id == subtask_id, Subtask.todo_id == todo.id)
        .first()
    )
    if not subtask:
        raise _not_found("Subtask not found")
    return subtask


def create_subtask(db: Session, todo_id: int, payload: SubtaskCreate, user_id: int, context: Optional[CompanyContext]):
    """
    Append a subtask to a todo (requires edit rights on the todo).
    """
    todo = _get_todo_or_404(db, todo_id)
    auth.require(permissions.can_edit(todo, user_id, context), "You are not allowed to edit this ToDo", user_id)

    title = (payload.title or "").strip()
    if not title:
        raise _bad_request("Title must not be empty")

    assignee_ids = _require_members(db, todo.company_id, payload.assignee_ids)
    last_index = (
        db.query(func.max(Subtask.order_index)).filter(Subtask.todo_id == todo.id).scalar()
    )

    subtask = Subtask(
        todo_id=todo.id,
        title=title,
        description=payload.description or None,
        status=config.TODO_STATUS_OPEN,
        order_index=0 if last_index is None else last_index + 1,
        created_by=user_id,
    )
    subtask.assignees = [SubtaskAssignee(user_id=uid) for uid in assignee_ids]
    db.add(subtask)
    db.commit()
    db.refresh(subtask)

    logger.info(f"Subtask {subtask.id} added to ToDo {todo_id} by user {user_id}")
    return subtask_to_dict(subtask)


def update_subtask(db: Session, todo_id: int, subtask_id: int, payload: SubtaskUpdate, user_id: int, context: Optional[CompanyContext]):
    todo = _get_todo_or_404(db, todo_id)
    auth.require(permissions.can_edit(todo, user_id, context), "You are not allowed to edit this ToDo", user_id)
    subtask = _get_subtask_or_404(db, todo, subtask_id)

    updates = payload.model_dump(exclude_unset=True)
    if "title" in updates:
        updates["title"] = (updates["title"] or "").strip()
        if not updates["title"]:
            raise _bad_request("Title must not be empty")
    for field, value in updates.items():
        setattr(subtask, field, value)
    db.commit()
    db.refresh(subtask)
    return subtask_to_dict(subtask)


def update_subtask_status(db: Session, todo_id: int, subtask_id: int, payload: SubtaskStatusUpdate, user_id: int, context: Optional[CompanyContext]):
    todo = _get_todo_or_404(db, todo_id)
    auth.require(
        permissions.can_change_status(todo, user_id, context),
        "You are not allowed to change the status of this ToDo",
        user_id,
    )
    subtask = _get_subtask_or_404(db, todo, subtask_id)

    old_status = _apply_status(subtask, payload.status, payload.note)
    db.commit()
    db.refresh(subtask)

    logger.info(f"Subtask {subtask_id} status {old_status} -> {payload.status} by user {user_id}")
    return subtask_to_dict(subtask)


def delete_subtask(db: Session, todo_id: int, subtask_id: int, user_id: int, context: Optional[CompanyContext]):
    todo = _get_todo_or_404(db, todo_id)
    auth.require(permissions.can_edit(todo, user_id, context), "You are not allowed to edit this ToDo", user_id)
    subtask = _get_subtask_or_404(db, todo, subtask_id)

    db.delete(subtask)
    db.commit()
    logger.info(f"Subtask {subtask_id} of ToDo {todo_id} deleted by user {user_id}")
    return {"message": "Subtask deleted"}


# ------------------------------------------------------------------
# COMMENT OPERATIONS
# ------------------------------------------------------------------

def _comment_dict(comment: Comment) -> dict:
    return {
        "id": comment.id,
        "todo_id": comment.todo_id,
        "user_id": comment.user_id,
        "username": comment.user.username if comment.user else None,
        "content": comment.content,
        "created_at": comment.created_at,
    }


def get_comments(db: Session, todo_id: int, user_id: int, context: Optional[CompanyContext]) -> List[dict]:
    get_visible_todo(db, todo_id, user_id, context)
    comments = (
        db.query(Comment)
        .options(joinedload(Comment.user))
        .filter(Comment.todo_id == todo_id)
        .order_by(Comment.created_at, Comment.id)
        .all()
    )
    return [_comment_dict(c) for c in comments]


def create_comment(db: Session, todo_id: int, payload: CommentCreate, user: User, context: Optional[CompanyContext]):
    todo = get_visible_todo(db, todo_id, user.id, context)

    content = (payload.content or "").strip()
    if not content:
        raise _bad_request("Comment must not be empty")

    comment = Comment(todo_id=todo.id, user_id=user.id, content=content)
    db.add(comment)
    db.commit()
    db.refresh(comment)

    _notify_comment(db, todo, user)

    logger.info(f"Comment {comment.id} added to ToDo {todo_id} by user {user.id}")
    return _comment_dict(comment)


def delete_comment(db: Session, todo_id: int, comment_id: int, user_id: int, context: Optional[CompanyContext]):
    """
    Authors delete their own comments; anyone who may edit the todo deletes any.
    """
    todo = get_visible_todo(db, todo_id, user_id, context)
    comment = db.query(Comment).filter(Comment.id == comment_id, Comment.todo_id == todo.id).first()
    if not comment:
        raise _not_found("Comment not found")

    auth.require(
        comment.user_id == user_id or permissions.can_edit(todo, user_id, context),
        "You can only delete your own comments",
        user_id,
    )
    db.delete(comment)
    db.commit()
    return {"message": "Comment deleted"}


# ------------------------------------------------------------------
# DOCUMENT OPERATIONS
# ------------------------------------------------------------------

def _stored_path(file_path: str) -> str:
    return os.path.join(str(config.UPLOAD_DIR), file_path)


def _remove_stored_file(file_path: str):
    path = _stored_path(file_path)
    try:
        if os.path.isfile(path):
            os.remove(path)
    except OSError as e:
        logger.error(f"Could not remove stored file {path}: {str(e)}")


def create_document(
    db: Session,
    company: Company,
    file_content: bytes,
    filename: str,
    content_type: Optional[str],
    user_id: int,
    context: Optional[CompanyContext],
):
    """
    Store an uploaded file in the company's document folder.
    """
    auth.require(context is not None, "Company access required", user_id)

    if not file_content:
        raise _bad_request("Uploaded file is empty")
    if len(file_content) > config.MAX_UPLOAD_SIZE:
        raise _bad_request("File too large. Maximum 10 MB.")

    filename = os.path.basename(filename or "") or "document"
    ext = os.path.splitext(filename)[1].lower()
    relative_path = os.path.join(str(company.id), f"{uuid.uuid4().hex}{ext}")

    target = _stored_path(relative_path)
    os.makedirs(os.path.dirname(target), exist_ok=True)
    with open(target, "wb") as f:
        f.write(file_content)

    mime_type = content_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"

    document = Document(
        company_id=company.id,
        name=filename,
        file_path=relative_path,
        file_size=len(file_content),
        mime_type=mime_type,
        uploaded_by=user_id,
    )
    try:
        db.add(document)
        db.commit()
        db.refresh(document)
    except Exception:
        db.rollback()
        _remove_stored_file(relative_path)
        raise

    logger.info(f"Document {document.id} ({filename}) uploaded to company {company.id} by user {user_id}")
    return document


def get_company_documents(db: Session, company: Company, user_id: int, context: Optional[CompanyContext]):
    auth.require(context is not None, "Company access required", user_id)
    return (
        db.query(Document)
        .filter(Document.company_id == company.id)
        .order_by(Document.created_at.desc(), Document.id.desc())
        .all()
    )


def get_document(db: Session, company: Company, document_id: int, user_id: int, context: Optional[CompanyContext]):
    auth.require(context is not None, "Company access required", user_id)
    document = (
        db.query(Document)
        .filter(Document.id == document_id, Document.company_id == company.id)
        .first()
    )
    if not document:
        raise _not_found("Document not found")
    return document


def get_document_file(db: Session, company: Company, document_id: int, user_id: int, context: Optional[CompanyContext]):
    """
    Returns (document, absolute path) for a download.
    """
    document = get_document(db, company, document_id, user_id, context)
    path = _stored_path(document.file_path)
    if not os.path.isfile(path):
        raise _not_found("Document file not found")
    return document, path


def delete_document(db: Session, company: Company, document_id: int, user_id: int, context: Optional[CompanyContext]):
    document = get_document(db, company, document_id, user_id, context)
    auth.require(
        document.uploaded_by == user_id or permissions.is_admin_or_management(context),
        "Only the uploader or admins can delete this document",
        user_id,
    )

    file_path = document.file_path
    db.delete(document)
    db.commit()
    _remove_stored_file(file_path)

    logger.info(f"Document {document_id} deleted from company {company.id} by user {user_id}")
    return {"message": "Document deleted"}


def link_document_to_todo(db: Session, todo_id: int, document_id: int, user_id: int, context: Optional[CompanyContext]):
    todo = _get_todo_or_404(db, todo_id)
    auth.require(permissions.can_edit(todo, user_id, context), "You are not allowed to edit this ToDo", user_id)

    document = db.query(Document).filter(Document.id == document_id).first()
    if not document or document.company_id != todo.company_id:
        raise _bad_request("Document does not belong to this company")

    exists = (
        db.query(TodoDocument.id)
        .filter(TodoDocument.todo_id == todo.id, TodoDocument.document_id == document.id)
        .first()
    )
    if exists:
        raise _bad_request("Document is already attached to this ToDo")

    db.add(TodoDocument(todo_id=todo.id, document_id=document.id))
    db.commit()
    logger.info(f"Document {document_id} attached to ToDo {todo_id} by user {user_id}")
    return get_todo_documents(db, todo_id, user_id, context)


def unlink_document_from_todo(db: Session, todo_id: int, document_id: int, user_id: int, context: Optional[CompanyContext]):
    todo = _get_todo_or_404(db, todo_id)
    auth.require(permissions.can_edit(todo, user_id, context), "You are not allowed to edit this ToDo", user_id)

    link = (
        db.query(TodoDocument)
        .filter(TodoDocument.todo_id == todo.id, TodoDocument.document_id == document_id)
        .first()
    )
    if not link:
        raise _not_found("Document is not attached to this ToDo")

    db.delete(link)
    db.commit()
    return {"message": "Document detached"}


def get_todo_documents(db: Session, todo_id: int, user_id: int, context: Optional[CompanyContext]):
    get_visible_todo(db, todo_id, user_id, context)
    return (
        db.query(Document)
        .join(TodoDocument, TodoDocument.document_id == Document.id)
        .filter(TodoDocument.todo_id == todo_id)
        .order_by(TodoDocument.created_at, TodoDocument.id)
        .all()
    )


# ------------------------------------------------------------------
# NOTIFICATIONS
# ------------------------------------------------------------------

def create_notification(db: Session, user_id: int, todo_id: Optional[int], type: str, title: str, message: str):
    if type not in config.NOTIFICATION_TYPES:
        raise ValueError(f"Unknown notification type: {type}")
    notification = Notification(user_id=user_id, todo_id=todo_id, type=type, title=title, message=message)
    db.add(notification)
    return notification


def _recipients(todo: Todo, actor_id: int) -> List[int]:
    """Creator and assignees without the acting user, creator first."""
    candidates = [todo.created_by] + [a.user_id for a in todo.assignees]
    return [uid for uid in dict.fromkeys(candidates) if uid is not None and uid != actor_id]


def _commit_notifications(db: Session, what: str, todo_id: int):
    """
    Notifications are best effort: a failure is logged and rolled back,
    the todo change itself is already committed.
    """
    try:
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Error creating {what} notifications for ToDo {todo_id}: {str(e)}")


def _notify_assigned(db: Session, todo: Todo, user_ids: List[int]):
    if not user_ids:
        return
    for uid in user_ids:
        create_notification(
            db, uid, todo.id,
            config.NOTIFICATION_TODO_ASSIGNED,
            "Neues ToDo zugewiesen",
            f'Sie wurden "{todo.title}" zugewiesen',
        )
    _commit_notifications(db, "assignment", todo.id)


def _notify_status_change(db: Session, todo: Todo, old_status: str, new_status: str, actor_id: int):
    message = (
        f'"{todo.title}" wurde von {labels.get_status_label(old_status)} '
        f'zu {labels.get_status_label(new_status)} geändert'
    )
    for uid in _recipients(todo, actor_id):
        create_notification(
            db, uid, todo.id,
            config.NOTIFICATION_TODO_STATUS_CHANGED,
            "Status geändert",
            message,
        )
    _commit_notifications(db, "status change", todo.id)


def _notify_comment(db: Session, todo: Todo, author: User):
    for uid in _recipients(todo, author.id):
        create_notification(
            db, uid, todo.id,
            config.NOTIFICATION_TODO_COMMENT,
            "Neuer Kommentar",
            f'{author.display_name} hat "{todo.title}" kommentiert',
        )
    _commit_notifications(db, "comment", todo.id)


def get_user_notifications(db: Session, user_id: int, limit: int = config.DEFAULT_NOTIFICATION_LIMIT):
    return (
        db.query(Notification)
        .filter(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
        .all()
    )


def get_unread_count(db: Session, user_id: int) -> int:
    return (
        db.query(func.count(Notification.id))
        .filter(Notification.user_id == user_id, Notification.read.is_(False))
        .scalar()
        or 0
    )


def _get_own_notification(db: Session, notification_id: int, user_id: int) -> Notification:
    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user_id)
        .first()
    )
    if not notification:
        raise _not_found("Notification not found")
    return notification


def mark_as_read(db: Session, notification_id: int, user_id: int):
    notification = _get_own_notification(db, notification_id, user_id)
    if not notification.read:
        notification.read = True
        notification.read_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(notification)
    return notification


def mark_all_as_read(db: Session, user_id: int) -> int:
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.read.is_(False))
        .update(
            {Notification.read: True, Notification.read_at: datetime.now(timezone.utc)},
            synchronize_session=False,
        )
    )
    db.commit()
    return updated


def delete_notification(db: Session, notification_id: int, user_id: int):
    notification = _get_own_notification(db, notification_id, user_id)
    db.delete(notification)
    db.commit()
    return {"message": "Notification deleted"}


def delete_all_notifications(db: Session, user_id: int) -> int:
    deleted = (
        db.query(Notification)
        .filter(Notification.user_id == user_id)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted
