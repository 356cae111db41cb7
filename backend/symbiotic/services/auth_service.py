# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

WHY: Every order transition and payout request must be attributable to a
member. Uses bcrypt for password hashing and validates password strength.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, default 12)
- Minimum 8 characters, upper/lower/digit/special required
- Session tokens managed separately (see session_service.py)
"""

import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import User, SellerProfile
from ..models.auth import VALID_ROLES, ROLE_BUYER, ROLE_SELLER
from symbiotic.time_utils import utcnow


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt."""
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=rounds))
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() is timing-safe. A malformed stored hash counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    username: str,
    email: str,
    password: str,
    role: str = ROLE_BUYER,
    name: str | None = None,
) -> User:
    """
    Create a member account.

    Raises:
        ValueError: unknown role, or username/email already taken
        PasswordValidationError: password too weak
    """
    if role not in VALID_ROLES:
        raise ValueError(f"Invalid role: {role}. Must be one of {list(VALID_ROLES)}")

    username = username.strip()
    email = email.strip().lower()

    if db.session.query(User).filter_by(username=username).first():
        raise ValueError("Username already exists")
    if db.session.query(User).filter_by(email=email).first():
        raise ValueError("Email already exists")

    user = User(
        username=username,
        email=email,
        name=name,
        password_hash=hash_password(password),
        role=role,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def create_seller_profile(user_id: int, business_name: str, business_type: str = "individual") -> SellerProfile:
    """Attach a selling account to a user and promote buyers to the seller role."""
    user = db.session.query(User).filter_by(id=user_id).first()
    if not user:
        raise ValueError("User not found")
    if db.session.query(SellerProfile).filter_by(user_id=user_id).first():
        raise ValueError("Seller profile already exists")

    profile = SellerProfile(user_id=user_id, business_name=business_name, business_type=business_type)
    db.session.add(profile)
    if user.role == ROLE_BUYER:
        user.role = ROLE_SELLER
    db.session.commit()
    return profile


def link_payout_account(seller_id: int, stripe_account_id: str, onboarding_complete: bool = True) -> SellerProfile:
    """Record the outcome of the external Stripe Connect onboarding."""
    profile = db.session.query(SellerProfile).filter_by(id=seller_id).first()
    if not profile:
        raise ValueError("Seller profile not found")
    profile.stripe_account_id = stripe_account_id
    profile.stripe_onboarding_complete = onboarding_complete
    db.session.commit()
    return profile


def authenticate(identifier: str, password: str) -> User | None:
    """
    Authenticate by username or email.

    Returns None for unknown, inactive, or wrong-password accounts.
    """
    identifier = (identifier or "").strip()
    user = db.session.query(User).filter(
        db.or_(User.username == identifier, User.email == identifier.lower())
    ).first()

    if not user or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user
