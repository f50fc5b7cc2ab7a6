from fastapi import APIRouter, Depends, HTTPException, status, Response
from sqlalchemy.orm import Session
from pydantic import BaseModel, EmailStr, Field
from typing import Optional
import logging

from mindreminder.core.auth import create_access_token, verify_password, get_password_hash
from mindreminder.core.deps import get_current_user, get_current_user_optional
from mindreminder.core.config import settings
from mindreminder.db.session import get_db
from mindreminder.models.user import User
from mindreminder.models.profile import Profile

logger = logging.getLogger(__name__)

router = APIRouter()


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserResponse(BaseModel):
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    created_at: str


def _user_response(user: User, profile: Optional[Profile]) -> UserResponse:
    return UserResponse(
        id=str(user.id),
        email=user.email,
        first_name=profile.first_name if profile else None,
        last_name=profile.last_name if profile else None,
        created_at=user.created_at.isoformat()
    )


def _set_session_cookie(response: Response, user: User) -> None:
    access_token = create_access_token(data={"sub": str(user.id)})

    # Prepare cookie parameters, avoid setting invalid empty domain
    cookie_kwargs = {
        "key": "access_token",
        "value": access_token,
        "secure": settings.cookie_secure,
        "httponly": True,
        "samesite": settings.cookie_samesite,
        "max_age": settings.jwt_expire_hours * 3600,
    }
    if settings.cookie_domain:
        cookie_kwargs["domain"] = settings.cookie_domain
    response.set_cookie(**cookie_kwargs)


@router.post("/signup", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def signup(user_data: UserCreate, response: Response, db: Session = Depends(get_db)):
    """Create a new user account and sign it in"""

    email = user_data.email.lower()
    existing_user = db.query(User).filter(User.email == email).first()
    if existing_user:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered"
        )

    user = User(
        email=email,
        password_hash=get_password_hash(user_data.password)
    )
    db.add(user)
    db.flush()

    profile = Profile(
        id=user.id,
        first_name=user_data.first_name,
        last_name=user_data.last_name
    )
    db.add(profile)
    db.commit()
    db.refresh(user)

    logger.info(f"Registered user {user.id}")
    _set_session_cookie(response, user)

    return _user_response(user, profile)


# Backward-compatible alias for frontend expecting /auth/register
@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(user_data: UserCreate, response: Response, db: Session = Depends(get_db)):
    return await signup(user_data, response, db)


@router.post("/login", response_model=UserResponse)
async def login(user_data: UserLogin, response: Response, db: Session = Depends(get_db)):
    """Authenticate user and set JWT cookie"""

    user = db.query(User).filter(User.email == user_data.email.lower()).first()
    if not user or not verify_password(user_data.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password"
        )

    _set_session_cookie(response, user)
    profile = db.query(Profile).filter(Profile.id == user.id).first()

    return _user_response(user, profile)


@router.post("/logout")
async def logout(response: Response):
    """Logout user by clearing JWT cookie"""

    # Mirror cookie deletion parameters; omit domain if unset/empty
    delete_kwargs = {
        "key": "access_token",
        "secure": settings.cookie_secure,
        "httponly": True,
        "samesite": settings.cookie_samesite,
    }
    if settings.cookie_domain:
        delete_kwargs["domain"] = settings.cookie_domain
    response.delete_cookie(**delete_kwargs)

    return {"message": "Successfully logged out"}


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get current user information"""

    profile = db.query(Profile).filter(Profile.id == current_user.id).first()
    return _user_response(current_user, profile)


@router.get("/check")
async def check_auth(current_user: User = Depends(get_current_user_optional)):
    """Check if user is authenticated"""

    if current_user:
        return {
            "authenticated": True,
            "user": {
                "id": str(current_user.id),
                "email": current_user.email
            }
        }
    else:
        return {"authenticated": False}
