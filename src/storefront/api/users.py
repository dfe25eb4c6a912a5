"""FastAPI routes for registration, login, users and address books"""
from datetime import timedelta
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_user, get_page_request, require_admin
from storefront.config import settings
from storefront.db.database import get_db
from storefront.db.pagination import PageRequest
from storefront.models.schemas import (
    AddressCreate, AddressResponse, ApiResponse, LoginRequest, LoginResponse,
    Page, UserCreate, UserResponse
)
from storefront.models.user import User
from storefront.services.auth import create_access_token
from storefront.services.user_service import UserService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["users"])


@router.post("/auth/register", response_model=ApiResponse[UserResponse], status_code=201)
def register_user(user: UserCreate, db: Session = Depends(get_db)):
    """Register a new user"""
    created = UserService.create_user(db, user)
    return ApiResponse.ok(UserResponse.model_validate(created), "User registered successfully")


@router.post("/auth/login", response_model=ApiResponse[LoginResponse])
def login(credentials: LoginRequest, db: Session = Depends(get_db)):
    """Login user and return JWT token"""
    user = UserService.authenticate_user(db, credentials.email, credentials.password)

    expires = timedelta(minutes=settings.access_token_expire_minutes)
    access_token = create_access_token(
        data={"sub": str(user.id), "role": user.role.value},
        expires_delta=expires
    )

    return ApiResponse.ok(
        LoginResponse(
            access_token=access_token,
            expires_in=int(expires.total_seconds()),
            user=UserResponse.model_validate(user)
        ),
        "Login successful"
    )


@router.get("/users/me", response_model=ApiResponse[UserResponse])
def get_me(user: User = Depends(get_current_user)):
    return ApiResponse.ok(UserResponse.model_validate(user), "User retrieved successfully")


@router.get("/users", response_model=ApiResponse[Page[UserResponse]])
def list_users(
    is_active: Optional[bool] = Query(None),
    page_request: PageRequest = Depends(get_page_request),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """List all users"""
    users, total = UserService.get_users(db, page_request, is_active)
    return ApiResponse.ok(
        Page.build([UserResponse.model_validate(u) for u in users], total, page_request.page, page_request.size),
        "Users retrieved successfully"
    )


@router.get("/users/me/addresses", response_model=ApiResponse[List[AddressResponse]])
def list_addresses(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    addresses = UserService.list_addresses(db, user.id)
    return ApiResponse.ok([AddressResponse.model_validate(a) for a in addresses], "Addresses retrieved successfully")


@router.post("/users/me/addresses", response_model=ApiResponse[AddressResponse], status_code=201)
def add_address(
    address: AddressCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    created = UserService.add_address(db, user.id, address)
    return ApiResponse.ok(AddressResponse.model_validate(created), "Address added successfully")


@router.delete("/users/me/addresses/{address_id}", response_model=ApiResponse[None])
def delete_address(
    address_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user)
):
    UserService.delete_address(db, user.id, address_id)
    return ApiResponse.ok(message="Address deleted successfully")


@router.get("/users/{user_id}", response_model=ApiResponse[UserResponse])
def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin)
):
    """Get user by ID"""
    return ApiResponse.ok(UserResponse.model_validate(UserService.get_user(db, user_id)))
