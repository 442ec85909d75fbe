# Overview: Service-layer operations for auth; credential checks and account creation.

"""
Credential verification and account creation.

verify_credentials() is the "verify password, return identity or failure"
oracle the session guard delegates to. It never says WHY a login failed;
callers turn a None into a generic InvalidCredentialsError.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, upper, lower, digit and special char required
- Accounts are created out-of-band only (flask users create)
"""

import bcrypt
import re
from ..extensions import db
from ..models import User, Branch
from ..roles import Role


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
    """Validate strength, then hash with bcrypt (cost 12)."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    Returns True if password matches hash, False otherwise. A malformed
    stored hash counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def normalize_email(email: str) -> str:
    return email.strip().lower()


def get_user(user_id) -> User | None:
    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        return None
    return db.session.get(User, user_id)


def get_user_by_email(email: str) -> User | None:
    return db.session.query(User).filter_by(email=normalize_email(email)).first()


def verify_credentials(email: str, password: str) -> User | None:
    """
    Return the User if email/password match, None otherwise.

    Both "no such email" and "wrong password" give None.
    """
    user = get_user_by_email(email)
    if not user:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


def create_user(
    email: str,
    password: str,
    role: str,
    branch_code: str,
    full_name: str,
) -> User:
    """
    Create an account with a bcrypt-hashed password.

    Raises:
        ValueError: unknown role or branch, or email already taken
        PasswordValidationError: weak password
    """
    parsed_role = Role.parse(role)
    if parsed_role is None:
        raise ValueError(f"Unknown role {role!r}")

    branch = db.session.query(Branch).filter_by(code=branch_code.strip().upper()).first()
    if not branch:
        raise ValueError(f"Branch {branch_code!r} not found")

    if get_user_by_email(email):
        raise ValueError("Email already exists")

    user = User(
        email=normalize_email(email),
        password_hash=hash_password(password),
        role=parsed_role.value,
        branch_id=branch.id,
        full_name=full_name.strip(),
    )
    db.session.add(user)
    db.session.commit()
    return user
