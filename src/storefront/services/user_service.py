"""User and address book business logic"""
from typing import List, Optional, Tuple
import logging

from opentelemetry import trace
from sqlalchemy.orm import Session

from storefront.db.pagination import PageRequest, paginate
from storefront.errors import Conflict, NotFound, Unauthorized
from storefront.models.enums import Role
from storefront.models.schemas import AddressCreate, UserCreate
from storefront.models.user import Address, User
from storefront.services.auth import hash_password, verify_password

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

USER_SORT_FIELDS = ("created_at", "email", "full_name", "id")


class UserService:
    """User service for business logic"""

    @staticmethod
    def get_user(db: Session, user_id: int) -> User:
        """Get user by ID"""
        with tracer.start_as_current_span("user_service.get_user") as span:
            span.set_attribute("user.id", user_id)
            user = db.query(User).filter(User.id == user_id).first()
            if not user:
                raise NotFound("User", user_id)
            return user

    @staticmethod
    def get_user_by_email(db: Session, email: str) -> Optional[User]:
        """Get user by email (case-insensitive)"""
        return db.query(User).filter(User.email == email.strip().lower()).first()

    @staticmethod
    def get_users(
        db: Session,
        page_request: PageRequest,
        is_active: Optional[bool] = None
    ) -> Tuple[List[User], int]:
        """Get list of users"""
        query = db.query(User)

        if is_active is not None:
            query = query.filter(User.is_active == is_active)

        return paginate(query, User, page_request, USER_SORT_FIELDS)

    @staticmethod
    def create_user(db: Session, user_data: UserCreate, role: Role = Role.USER) -> User:
        """Create new user"""
        with tracer.start_as_current_span("user_service.create_user") as span:
            email = user_data.email.strip().lower()
            if UserService.get_user_by_email(db, email):
                raise Conflict(f"Email {email} is already registered")

            user = User(
                email=email,
                full_name=user_data.full_name,
                hashed_password=hash_password(user_data.password),
                role=role
            )

            db.add(user)
            db.commit()
            db.refresh(user)

            span.set_attribute("user.id", user.id)
            logger.info(f"Created user {user.id} with role {role.value}")

            return user

    @staticmethod
    def authenticate_user(db: Session, email: str, password: str) -> User:
        """Resolve credentials to an active user or raise Unauthorized"""
        with tracer.start_as_current_span("user_service.authenticate") as span:
            user = UserService.get_user_by_email(db, email)
            if not user:
                logger.warning("Login attempt for unknown email")
                raise Unauthorized("Invalid email or password")

            span.set_attribute("user.id", user.id)

            if not user.is_active:
                logger.warning(f"User {user.id} is inactive")
                raise Unauthorized("Account is disabled")

            if not verify_password(password, user.hashed_password):
                logger.warning(f"Invalid password for user {user.id}")
                raise Unauthorized("Invalid email or password")

            logger.info(f"User {user.id} authenticated successfully")
            return user

    @staticmethod
    def ensure_admin(db: Session, email: str, password: str) -> User:
        """Create the bootstrap admin account unless it already exists"""
        existing = UserService.get_user_by_email(db, email)
        if existing:
            return existing

        admin = UserService.create_user(
            db,
            UserCreate(email=email, full_name="Administrator", password=password),
            role=Role.ADMIN
        )
        logger.info(f"Bootstrap admin {admin.id} created")
        return admin

    # Address book

    @staticmethod
    def add_address(db: Session, user_id: int, address_data: AddressCreate) -> Address:
        with tracer.start_as_current_span("user_service.add_address") as span:
            span.set_attribute("user.id", user_id)

            has_addresses = db.query(Address).filter(Address.user_id == user_id).count() > 0
            is_default = address_data.is_default or not has_addresses
            if is_default:
                db.query(Address).filter(Address.user_id == user_id).update({"is_default": False})

            address = Address(user_id=user_id, **address_data.model_dump(exclude={"is_default"}))
            address.is_default = is_default
            db.add(address)
            db.commit()
            db.refresh(address)

            logger.info(f"Address {address.id} added for user {user_id}")
            return address

    @staticmethod
    def list_addresses(db: Session, user_id: int) -> List[Address]:
        return (
            db.query(Address)
            .filter(Address.user_id == user_id)
            .order_by(Address.is_default.desc(), Address.id.asc())
            .all()
        )

    @staticmethod
    def get_address(db: Session, user_id: int, address_id: int) -> Address:
        """Saved address owned by ``user_id``; someone else's reads as missing"""
        address = (
            db.query(Address)
            .filter(Address.id == address_id, Address.user_id == user_id)
            .first()
        )
        if not address:
            raise NotFound("Address", address_id)
        return address

    @staticmethod
    def delete_address(db: Session, user_id: int, address_id: int):
        address = UserService.get_address(db, user_id, address_id)
        db.delete(address)
        db.commit()
        logger.info(f"Address {address_id} deleted for user {user_id}")
