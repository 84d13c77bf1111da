from typing import NamedTuple, Optional

from fastapi import Depends, HTTPException, status, Request
from sqlalchemy.orm import Session
from passlib.context import CryptContext

from database import get_db
from models import Company, User
from permissions import CompanyContext
import permissions
from schemas import UserLogin
import config
import crud
import sessions
import logging

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------
# PASSWORD HASHING CONFIGURATION
# ------------------------------------------------------------------

# Configure bcrypt for password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    """
    Hash a plain text password using bcrypt.
    """
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plain text password against a hashed password.
    """
    return pwd_context.verify(plain_password, hashed_password)


# ------------------------------------------------------------------
# AUTHENTICATION UTILITIES
# ------------------------------------------------------------------

def authenticate_user(db: Session, username: str, password: str):
    """
    Verify username and password.
    Returns the user or None.
    """
    user = crud.get_user_by_username(db, username)

    if not user:
        return None

    if not verify_password(password, user.password):
        return None

    return user


def login_user(user_login: UserLogin, db: Session):
    """
    Login logic.
    Returns session token, user info and the companies the user can switch to.
    """
    user = authenticate_user(db, user_login.username, user_login.password)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password"
        )

    session_token = sessions.create_session(user.id, user.username)

    companies = [
        {"id": c["id"], "slug": c["slug"], "name": c["name"], "role": c["role"]}
        for c in crud.get_user_companies(db, user.id)
    ]

    return {
        "message": "Login successful",
        "session_token": session_token,
        "user_id": user.id,
        "username": user.username,
        "companies": companies,
    }


def logout_user(session_token: str):
    """
    Logout user by deleting session.
    """
    if sessions.delete_session(session_token):
        return {"message": "Logout successful"}
    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail="Session not found"
    )


# ------------------------------------------------------------------
# SESSION-BASED AUTH GUARD
# ------------------------------------------------------------------

def get_current_user(request: Request, db: Session = Depends(get_db)):
    """
    Dependency to get current authenticated user from session.
    Use this to protect routes that require authentication.
    """
    session_data = sessions.verify_session(request)

    # Get user from database to ensure it still exists
    user = crud.get_user_by_id(db, session_data["user_id"])

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )

    return user


def get_optional_user(request: Request, db: Session = Depends(get_db)) -> Optional[User]:
    """
    Like get_current_user, but returns None for anonymous requests.
    """
    if not request.headers.get(config.SESSION_HEADER):
        return None
    return get_current_user(request, db)


# ------------------------------------------------------------------
# COMPANY SCOPE
# ------------------------------------------------------------------

class CompanyScope(NamedTuple):
    user: User
    company: Company
    context: Optional[CompanyContext]  # None: user has no role in this company


def get_company_scope(
    company_slug: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> CompanyScope:
    """
    Resolve the company named in the URL and the current user's role in it.
    """
    company = crud.get_company_by_slug(db, company_slug)
    if not company:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Company '{company_slug}' not found"
        )

    context = crud.get_company_context(db, current_user.id, company.id)
    return CompanyScope(user=current_user, company=company, context=context)


# ------------------------------------------------------------------
# PERMISSION CHECKING UTILITIES
# ------------------------------------------------------------------

def require(allowed: bool, detail: str, user_id: Optional[int] = None):
    """
    Turn a permission decision into a 403.
    """
    if allowed:
        return
    logger.warning(f"Permission denied for user {user_id}: {detail}")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


def require_company_access(scope: CompanyScope):
    """
    Any role in the company (membership or superuser grant).
    """
    require(scope.context is not None, f"No access to company '{scope.company.slug}'", scope.user.id)


def require_company_admin(context: Optional[CompanyContext], user_id: Optional[int] = None):
    require(permissions.is_admin(context), "Company admin access required", user_id)


def require_admin_or_management(context: Optional[CompanyContext], user_id: Optional[int] = None):
    require(
        permissions.is_admin_or_management(context),
        "Admin or management access required",
        user_id,
    )
