from fastapi import FastAPI, Depends, HTTPException, UploadFile, File, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session
from typing import List, Optional
import logging
from logging.handlers import RotatingFileHandler
import os

import models
import schemas
import crud
import auth
import sessions
import config

from auth import CompanyScope
from database import engine, get_db
from models import User
from permissions import Role

# ---------------------------------------------------------
# LOGGING CONFIGURATION
# ---------------------------------------------------------

# Create logs directory if it doesn't exist
os.makedirs(config.LOG_DIR, exist_ok=True)

logging.basicConfig(
    level=logging.DEBUG if config.DEBUG else logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        # File handler with rotation (max 10MB per file, keep 5 backup files)
        RotatingFileHandler(
            os.path.join(config.LOG_DIR, "app.log"),
            maxBytes=10*1024*1024,
            backupCount=5
        ),
        # Console handler for development
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------
# CREATE DATABASE TABLES
# ---------------------------------------------------------
models.Base.metadata.create_all(bind=engine)
logger.info("Database tables created successfully")

# ---------------------------------------------------------
# FASTAPI APP INIT
# ---------------------------------------------------------
app = FastAPI(
    title=config.APP_NAME,
    description="Multi-company ToDo management with role based access",
    version=config.APP_VERSION
)

# CORS middleware for frontend integration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

logger.info("FastAPI application initialized")

# ---------------------------------------------------------
# AUTH ROUTES
# ---------------------------------------------------------

@app.post("/login")
def login(user_login: schemas.UserLogin, db: Session = Depends(get_db)):
    """
    User login with password verification.
    Returns session token, user info and the user's companies.
    """
    try:
        logger.info(f"Login attempt for user: {user_login.username}")
        result = auth.login_user(user_login, db)
        logger.info(f"Login successful for user: {user_login.username}")
        return result
    except HTTPException as e:
        logger.warning(f"Login failed for user: {user_login.username} - {e.detail}")
        raise
    except Exception as e:
        logger.error(f"Unexpected error during login: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error during login")


@app.post("/logout")
def logout(request: Request):
    """
    User logout. Invalidates the session token sent in the header.
    """
    try:
        return auth.logout_user(request.headers.get(config.SESSION_HEADER, ""))
    except HTTPException as e:
        logger.warning(f"Logout failed - {e.detail}")
        raise
    except Exception as e:
        logger.error(f"Unexpected error during logout: {str(e)}")
        raise HTTPException(status_code=500, detail="Internal server error during logout")


# ---------------------------------------------------------
# USER ROUTES
# ---------------------------------------------------------

@app.post("/users", response_model=schemas.UserResponse)
def create_user(
    user: schemas.UserCreate,
    current_user: Optional[User] = Depends(auth.get_optional_user),
    db: Session = Depends(get_db),
):
    """
    Create a new user account.
    Open to everyone only when public registration is enabled; otherwise company admins only.
    """
    try:
        if not config.ALLOW_PUBLIC_REGISTRATION:
            auth.require(
                current_user is not None and crud.is_admin_anywhere(db, current_user.id),
                "Public registration is disabled",
                current_user.id if current_user else None,
            )
        return crud.create_user(db, user)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating user: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to create user")


@app.get("/users/me", response_model=schemas.UserResponse)
def get_current_user_info(current_user: User = Depends(auth.get_current_user)):
    return current_user


@app.put("/users/me", response_model=schemas.UserResponse)
def update_profile(
    payload: schemas.UserProfileUpdate,
    current_user: User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return crud.update_user_profile(db, current_user, payload)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating profile of user {current_user.id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to update profile")


@app.put("/users/me/password")
def change_password(
    payload: schemas.PasswordChange,
    current_user: User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    """
    Change own password. All sessions of the user are ended.
    """
    try:
        return crud.change_password(db, current_user, payload)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error changing password of user {current_user.id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to change password")


@app.get("/users/me/companies", response_model=List[schemas.CompanyWithRoleResponse])
def list_my_companies(
    current_user: User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    """
    Companies the user can switch to, with the user's role in each.
    """
    try:
        return crud.get_user_companies(db, current_user.id)
    except Exception as e:
        logger.error(f"Error listing companies of user {current_user.id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to list companies")


# ---------------------------------------------------------
# COMPANY ROUTES
# ---------------------------------------------------------

@app.get("/companies/slug-available", response_model=schemas.SlugAvailabilityResponse)
def check_slug(
    slug: str,
    current_user: User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    return {"slug": slug, "available": crud.is_slug_available(db, slug)}


@app.post("/companies", response_model=schemas.CompanyWithRoleResponse)
def create_company(
    payload: schemas.CompanyCreate,
    current_user: User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    """
    Create a company. The creator becomes its admin.
    """
    try:
        company = crud.create_company(db, payload, current_user.id)
        return crud.company_to_dict(company, Role.ADMIN.value)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating company: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to create company")


@app.get("/companies/{company_slug}", response_model=schemas.CompanyWithRoleResponse)
def get_company(scope: CompanyScope = Depends(auth.get_company_scope)):
    auth.require_company_access(scope)
    return crud.company_to_dict(scope.company, scope.context.role.value)


@app.put("/companies/{company_slug}", response_model=schemas.CompanyResponse)
def update_company(
    payload: schemas.CompanyUpdate,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    try:
        return crud.update_company(db, scope.company, payload, scope.context, scope.user.id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating company {scope.company.slug}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to update company")


@app.delete("/companies/{company_slug}")
def delete_company(
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    """
    Delete a company and everything in it. Admins only.
    """
    try:
        return crud.delete_company(db, scope.company, scope.context, scope.user.id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting company {scope.company.slug}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to delete company")


@app.get("/companies/{company_slug}/labels", response_model=schemas.LabelsResponse)
def get_labels(scope: CompanyScope = Depends(auth.get_company_scope)):
    auth.require_company_access(scope)
    return crud.get_company_labels(scope.company)


@app.put("/companies/{company_slug}/labels", response_model=schemas.LabelsResponse)
def update_labels(
    payload: schemas.LabelsUpdate,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    try:
        return crud.update_company_labels(db, scope.company, payload, scope.context, scope.user.id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating labels of company {scope.company.slug}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to update labels")


# ---------------------------------------------------------
# MEMBER ROUTES
# ---------------------------------------------------------

@app.get("/companies/{company_slug}/members", response_model=List[schemas.MemberResponse])
def list_members(
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    auth.require_company_access(scope)
    return crud.get_company_members(db, scope.company.id)


@app.post("/companies/{company_slug}/members", response_model=schemas.MemberResponse)
def add_member(
    payload: schemas.MemberAdd,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    """
    Add an existing user to the company. Admins only.
    """
    try:
        return crud.add_company_member(db, scope.company, payload, scope.context, scope.user.id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error adding member to company {scope.company.slug}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to add member")


@app.put("/companies/{company_slug}/members/{user_id}/role")
def update_member_role(
    user_id: int,
    payload: schemas.MemberRoleUpdate,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    try:
        return crud.update_member_role(db, scope.company, user_id, payload.role, scope.context, scope.user.id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating role of user {user_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to update role")


@app.delete("/companies/{company_slug}/members/{user_id}")
def remove_member(
    user_id: int,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    try:
        return crud.remove_company_member(db, scope.company, user_id, scope.context, scope.user.id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error removing user {user_id} from company {scope.company.slug}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to remove member")


# ---------------------------------------------------------
# SUPERUSER PERMISSION ROUTES (admin)
# ---------------------------------------------------------

@app.get(
    "/companies/{company_slug}/superusers/{superuser_id}/permissions",
    response_model=List[schemas.SuperuserPermissionResponse],
)
def list_superuser_permissions(
    superuser_id: int,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    return crud.get_superuser_permissions(db, scope.company, superuser_id, scope.context, scope.user.id)


@app.delete("/companies/{company_slug}/superusers/{superuser_id}/permissions")
def clear_superuser_permissions(
    superuser_id: int,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    try:
        return crud.clear_superuser_permissions(db, scope.company, superuser_id, scope.context, scope.user.id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error clearing superuser permissions of user {superuser_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to clear superuser permissions")


@app.post("/companies/{company_slug}/superuser-permissions", response_model=schemas.SuperuserPermissionResponse)
def add_superuser_permission(
    payload: schemas.SuperuserPermissionCreate,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    try:
        return crud.add_superuser_permission(db, scope.company, payload, scope.context, scope.user.id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error granting superuser permission: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to grant superuser permission")


@app.delete("/companies/{company_slug}/superuser-permissions/{permission_id}")
def remove_superuser_permission(
    permission_id: int,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    try:
        return crud.remove_superuser_permission(db, scope.company, permission_id, scope.context, scope.user.id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error removing superuser permission {permission_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to remove superuser permission")


# ---------------------------------------------------------
# TODO ROUTES
# ---------------------------------------------------------

@app.get("/companies/{company_slug}/todos", response_model=List[schemas.TodoResponse])
def list_todos(
    status_filter: Optional[str] = Query(None, alias="status"),
    include_archived: bool = False,
    assigned_to_me: bool = False,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    """
    Todos of the company the current user may see.
    Admin / GL / superuser see all, everybody else own and assigned todos.
    """
    try:
        todos = crud.get_company_todos(
            db, scope.company.id, scope.user.id, scope.context,
            status_filter=status_filter,
            include_archived=include_archived,
            assigned_to_me=assigned_to_me,
        )
        logger.info(
            f"Retrieved {len(todos)} todos for user {scope.user.id} in company {scope.company.slug}"
        )
        return [crud.todo_to_dict(t, scope.user.id, scope.context) for t in todos]
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error retrieving todos: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to retrieve todos")


@app.post("/companies/{company_slug}/todos", response_model=schemas.TodoResponse)
def create_todo(
    payload: schemas.TodoCreate,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    try:
        todo = crud.create_todo(db, payload, scope.user.id, scope.context)
        return crud.todo_to_dict(todo, scope.user.id, scope.context)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating todo: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to create todo")


@app.get("/companies/{company_slug}/todos/{todo_id}", response_model=schemas.TodoResponse)
def get_todo(
    todo_id: int,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    todo = crud.get_visible_todo(db, todo_id, scope.user.id, scope.context)
    return crud.todo_to_dict(todo, scope.user.id, scope.context)


@app.put("/companies/{company_slug}/todos/{todo_id}", response_model=schemas.TodoResponse)
def update_todo(
    todo_id: int,
    payload: schemas.TodoUpdate,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    """
    Edit title, description, priority or deadline. Creator or admin / GL / superuser.
    """
    try:
        todo = crud.update_todo(db, todo_id, payload, scope.user.id, scope.context)
        return crud.todo_to_dict(todo, scope.user.id, scope.context)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating todo {todo_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to update todo")


@app.put("/companies/{company_slug}/todos/{todo_id}/status", response_model=schemas.TodoResponse)
def update_todo_status(
    todo_id: int,
    payload: schemas.TodoStatusUpdate,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    """
    Change status with an optional note. Assignees may do this too.
    """
    try:
        todo = crud.update_todo_status(db, todo_id, payload, scope.user.id, scope.context)
        return crud.todo_to_dict(todo, scope.user.id, scope.context)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating status of todo {todo_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to update todo status")


@app.post("/companies/{company_slug}/todos/{todo_id}/assignees", response_model=schemas.TodoResponse)
def add_assignees(
    todo_id: int,
    payload: schemas.TodoAssigneesUpdate,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    try:
        todo = crud.add_todo_assignees(db, todo_id, payload.user_ids, scope.user.id, scope.context)
        return crud.todo_to_dict(todo, scope.user.id, scope.context)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error assigning todo {todo_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to assign todo")


@app.delete("/companies/{company_slug}/todos/{todo_id}/assignees/{user_id}", response_model=schemas.TodoResponse)
def remove_assignee(
    todo_id: int,
    user_id: int,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    try:
        todo = crud.remove_todo_assignees(db, todo_id, [user_id], scope.user.id, scope.context)
        return crud.todo_to_dict(todo, scope.user.id, scope.context)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error unassigning user {user_id} from todo {todo_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to unassign todo")


@app.post("/companies/{company_slug}/todos/{todo_id}/archive", response_model=schemas.TodoResponse)
def archive_todo(
    todo_id: int,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    todo = crud.set_todo_archived(db, todo_id, True, scope.user.id, scope.context)
    return crud.todo_to_dict(todo, scope.user.id, scope.context)


@app.post("/companies/{company_slug}/todos/{todo_id}/unarchive", response_model=schemas.TodoResponse)
def unarchive_todo(
    todo_id: int,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    todo = crud.set_todo_archived(db, todo_id, False, scope.user.id, scope.context)
    return crud.todo_to_dict(todo, scope.user.id, scope.context)


@app.delete("/companies/{company_slug}/todos/{todo_id}")
def delete_todo(
    todo_id: int,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    """
    Delete a todo. Creator or admin / GL / superuser.
    """
    try:
        return crud.delete_todo(db, todo_id, scope.user.id, scope.context)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting todo {todo_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to delete todo")


@app.get(
    "/companies/{company_slug}/todos/{todo_id}/activities",
    response_model=List[schemas.ActivityEntryResponse],
)
def get_todo_activities(
    todo_id: int,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    return crud.get_todo_activities(db, todo_id, scope.user.id, scope.context)


# ---------------------------------------------------------
# SUBTASK ROUTES
# ---------------------------------------------------------

@app.post("/companies/{company_slug}/todos/{todo_id}/subtasks", response_model=schemas.SubtaskResponse)
def create_subtask(
    todo_id: int,
    payload: schemas.SubtaskCreate,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    try:
        return crud.create_subtask(db, todo_id, payload, scope.user.id, scope.context)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating subtask for todo {todo_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to create subtask")


@app.put("/companies/{company_slug}/todos/{todo_id}/subtasks/{subtask_id}", response_model=schemas.SubtaskResponse)
def update_subtask(
    todo_id: int,
    subtask_id: int,
    payload: schemas.SubtaskUpdate,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    try:
        return crud.update_subtask(db, todo_id, subtask_id, payload, scope.user.id, scope.context)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating subtask {subtask_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to update subtask")


@app.put(
    "/companies/{company_slug}/todos/{todo_id}/subtasks/{subtask_id}/status",
    response_model=schemas.SubtaskResponse,
)
def update_subtask_status(
    todo_id: int,
    subtask_id: int,
    payload: schemas.SubtaskStatusUpdate,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    try:
        return crud.update_subtask_status(db, todo_id, subtask_id, payload, scope.user.id, scope.context)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating status of subtask {subtask_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to update subtask status")


@app.delete("/companies/{company_slug}/todos/{todo_id}/subtasks/{subtask_id}")
def delete_subtask(
    todo_id: int,
    subtask_id: int,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    try:
        return crud.delete_subtask(db, todo_id, subtask_id, scope.user.id, scope.context)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting subtask {subtask_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to delete subtask")


# ---------------------------------------------------------
# COMMENT ROUTES
# ---------------------------------------------------------

@app.get("/companies/{company_slug}/todos/{todo_id}/comments", response_model=List[schemas.CommentResponse])
def list_comments(
    todo_id: int,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    return crud.get_comments(db, todo_id, scope.user.id, scope.context)


@app.post("/companies/{company_slug}/todos/{todo_id}/comments", response_model=schemas.CommentResponse)
def create_comment(
    todo_id: int,
    payload: schemas.CommentCreate,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    try:
        return crud.create_comment(db, todo_id, payload, scope.user, scope.context)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error adding comment to todo {todo_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to add comment")


@app.delete("/companies/{company_slug}/todos/{todo_id}/comments/{comment_id}")
def delete_comment(
    todo_id: int,
    comment_id: int,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    return crud.delete_comment(db, todo_id, comment_id, scope.user.id, scope.context)


# ---------------------------------------------------------
# DOCUMENT ROUTES
# ---------------------------------------------------------

@app.post("/companies/{company_slug}/documents", response_model=schemas.DocumentResponse)
def upload_document(
    file: UploadFile = File(...),
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    """
    Upload a file to the company's document store (max 10 MB).
    """
    try:
        content = file.file.read()
        return crud.create_document(
            db, scope.company, content, file.filename, file.content_type,
            scope.user.id, scope.context,
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error uploading document to company {scope.company.slug}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to upload document")


@app.get("/companies/{company_slug}/documents", response_model=List[schemas.DocumentResponse])
def list_documents(
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    return crud.get_company_documents(db, scope.company, scope.user.id, scope.context)


@app.get("/companies/{company_slug}/documents/{document_id}/download")
def download_document(
    document_id: int,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    document, path = crud.get_document_file(db, scope.company, document_id, scope.user.id, scope.context)
    return FileResponse(path, media_type=document.mime_type, filename=document.name)


@app.delete("/companies/{company_slug}/documents/{document_id}")
def delete_document(
    document_id: int,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    try:
        return crud.delete_document(db, scope.company, document_id, scope.user.id, scope.context)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting document {document_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to delete document")


@app.get("/companies/{company_slug}/todos/{todo_id}/documents", response_model=List[schemas.DocumentResponse])
def list_todo_documents(
    todo_id: int,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    return crud.get_todo_documents(db, todo_id, scope.user.id, scope.context)


@app.post("/companies/{company_slug}/todos/{todo_id}/documents", response_model=List[schemas.DocumentResponse])
def attach_document(
    todo_id: int,
    payload: schemas.TodoDocumentLink,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    return crud.link_document_to_todo(db, todo_id, payload.document_id, scope.user.id, scope.context)


@app.delete("/companies/{company_slug}/todos/{todo_id}/documents/{document_id}")
def detach_document(
    todo_id: int,
    document_id: int,
    scope: CompanyScope = Depends(auth.get_company_scope),
    db: Session = Depends(get_db),
):
    return crud.unlink_document_from_todo(db, todo_id, document_id, scope.user.id, scope.context)


# ---------------------------------------------------------
# NOTIFICATION ROUTES
# ---------------------------------------------------------

@app.get("/notifications", response_model=List[schemas.NotificationResponse])
def list_notifications(
    limit: int = Query(config.DEFAULT_NOTIFICATION_LIMIT, ge=1, le=500),
    current_user: User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    return crud.get_user_notifications(db, current_user.id, limit)


@app.get("/notifications/unread-count", response_model=schemas.UnreadCountResponse)
def unread_notifications(
    current_user: User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    return {"unread": crud.get_unread_count(db, current_user.id)}


@app.post("/notifications/read-all")
def mark_all_notifications_read(
    current_user: User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    updated = crud.mark_all_as_read(db, current_user.id)
    return {"message": "All notifications marked as read", "updated": updated}


@app.post("/notifications/{notification_id}/read", response_model=schemas.NotificationResponse)
def mark_notification_read(
    notification_id: int,
    current_user: User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    return crud.mark_as_read(db, notification_id, current_user.id)


@app.delete("/notifications/{notification_id}")
def delete_notification(
    notification_id: int,
    current_user: User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    return crud.delete_notification(db, notification_id, current_user.id)


@app.delete("/notifications")
def delete_all_notifications(
    current_user: User = Depends(auth.get_current_user),
    db: Session = Depends(get_db),
):
    deleted = crud.delete_all_notifications(db, current_user.id)
    return {"message": "All notifications deleted", "deleted": deleted}


# ---------------------------------------------------------
# ROOT CHECK
# ---------------------------------------------------------

@app.get("/")
def root():
    """
    Health check endpoint to verify the app is running.
    """
    return {
        "message": f"{config.APP_NAME} is running",
        "status": "operational",
        "version": config.APP_VERSION,
        "active_sessions": sessions.get_active_sessions_count()
    }


# ---------------------------------------------------------
# SESSION MAINTENANCE
# ---------------------------------------------------------

@app.get("/sessions/cleanup")
def cleanup_sessions():
    """
    Manually trigger cleanup of expired sessions.
    """
    try:
        count = sessions.cleanup_expired_sessions()
        logger.info(f"Session cleanup completed: {count} sessions removed")
        return {
            "message": "Session cleanup completed",
            "expired_sessions_removed": count,
            "active_sessions": sessions.get_active_sessions_count()
        }
    except Exception as e:
        logger.error(f"Error during session cleanup: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to cleanup sessions")
