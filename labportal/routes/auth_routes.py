import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from labportal.auth import jwt_handler
from labportal.auth.dependencies import get_current_user, get_token_claims, require_roles
from labportal.auth.jwt_handler import TokenClaims
from labportal.auth.passwords import hash_password, verify_password
from labportal.database import get_db
from labportal.models.user import ROLES, User
from labportal.records.form_parser import MAX_ID

router = APIRouter(tags=['auth'])

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = 'Invalid register number or password'

RecordId = Annotated[int, Field(gt=0, le=MAX_ID)]


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


class RegisterRequest(BaseModel):
    name: str | None = None
    email: str | None = None
    password: str | None = None
    rollno: RecordId | None = None
    rgno: RecordId | None = None
    role: str = 'student'
    department: str | None = None
    semester: RecordId | None = None

    @field_validator('name', 'email', 'department', 'rollno', 'rgno', 'semester', mode='before')
    @classmethod
    def blank_is_missing(cls, value):
        value = _blank_to_none(value)
        return value.strip() if isinstance(value, str) else value

    @field_validator('role', mode='before')
    @classmethod
    def validate_role(cls, value) -> str:
        normalized = str(value or 'student').strip().lower()
        if normalized not in ROLES:
            raise ValueError('Role must be one of student, faculty or admin.')
        return normalized


class LoginRequest(BaseModel):
    rgno: RecordId | None = None
    password: str | None = None

    @field_validator('rgno', mode='before')
    @classmethod
    def blank_is_missing(cls, value):
        return _blank_to_none(value)


class ChangePasswordRequest(BaseModel):
    current_password: str | None = Field(default=None, alias='currentPassword')
    new_password: str | None = Field(default=None, alias='newPassword')


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)

    id: int
    name: str
    email: str | None = None
    rollno: int | None = None
    rgno: int
    role: str
    department: str | None = None
    semester: int | None = None
    is_active: bool = True
    created_at: datetime | None = None


class AuthResponse(BaseModel):
    success: bool = True
    message: str
    token: str
    user: UserResponse


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class ClaimsResponse(BaseModel):
    success: bool = True
    user: TokenClaims


class UserEnvelope(BaseModel):
    success: bool = True
    user: UserResponse


class UserListResponse(BaseModel):
    success: bool = True
    users: list[UserResponse]


@router.post('/register', response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(data: RegisterRequest, db: Session = Depends(get_db)):
    if not data.name or not data.rgno or not data.password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Name, register number, and password are required',
        )

    existing_user = db.query(User).filter(User.rgno == data.rgno).first()
    if existing_user:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Register number already registered',
        )

    user = User(
        name=data.name,
        email=data.email,
        hashed_password=hash_password(data.password),
        rollno=data.rollno,
        rgno=data.rgno,
        role=data.role,
        department=data.department,
        semester=data.semester,
        is_active=True,
    )
    try:
        db.add(user)
        db.commit()
    except IntegrityError as exc:
        # Lost a race with a concurrent registration of the same number.
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Register number already registered',
        ) from exc
    db.refresh(user)

    logger.info('Registered %s user with register number %s', user.role, user.rgno)
    token = jwt_handler.create_access_token(user.id, user.rgno, user.role)
    return AuthResponse(
        message='Registration successful',
        token=token,
        user=UserResponse.model_validate(user),
    )


@router.post('/login', response_model=AuthResponse)
def login(data: LoginRequest, db: Session = Depends(get_db)):
    if not data.rgno or not data.password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Register number and password are required',
        )

    user = db.query(User).filter(User.rgno == data.rgno).first()
    if user is None:
        logger.info('Login failed: unknown register number %s', data.rgno)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=INVALID_CREDENTIALS)

    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Account is inactive')

    if not verify_password(data.password, user.hashed_password):
        logger.info('Login failed: wrong password for register number %s', data.rgno)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=INVALID_CREDENTIALS)

    token = jwt_handler.create_access_token(user.id, user.rgno, user.role)
    return AuthResponse(
        message='Login successful',
        token=token,
        user=UserResponse.model_validate(user),
    )


@router.post('/verify', response_model=ClaimsResponse)
def verify(claims: TokenClaims = Depends(get_token_claims)):
    return ClaimsResponse(user=claims)


@router.get('/profile', response_model=UserEnvelope)
def profile(current_user: User = Depends(get_current_user)):
    return UserEnvelope(user=UserResponse.model_validate(current_user))


@router.post('/change-password', response_model=MessageResponse)
def change_password(
    data: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not data.current_password or not data.new_password:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Current password and new password are required',
        )

    if not verify_password(data.current_password, current_user.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Current password is incorrect')

    current_user.hashed_password = hash_password(data.new_password)
    db.add(current_user)
    db.commit()

    logger.info('Password changed for register number %s', current_user.rgno)
    return MessageResponse(message='Password changed successfully')


@router.post('/logout', response_model=MessageResponse)
def logout():
    # Tokens are not tracked server side; the client discards its copy.
    return MessageResponse(message='Logout successful')


@router.get('/users', response_model=UserListResponse)
def list_users(
    claims: TokenClaims = Depends(require_roles('admin', detail='Access denied')),
    db: Session = Depends(get_db),
):
    users = db.query(User).order_by(User.id.asc()).all()
    return UserListResponse(users=[UserResponse.model_validate(user) for user in users])
