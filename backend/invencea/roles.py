# Overview: Closed set of account roles and branch codes.

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Account roles. Fixed per account, stored lowercase."""
    ADMIN = "admin"
    FACULTY = "faculty"
    KIOSK = "kiosk"

    @classmethod
    def parse(cls, value) -> "Role | None":
        """Case-insensitive lookup; None for anything outside the enumeration."""
        if isinstance(value, cls):
            return value
        if value is None:
            return None
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


# Roles allowed to use the password-less scan-login path
SCAN_LOGIN_ROLES = frozenset({Role.KIOSK, Role.FACULTY})

# Roles allowed to file borrow requests
BORROW_REQUEST_ROLES = (Role.KIOSK, Role.FACULTY, Role.ADMIN)


class BranchCode:
    """Departmental branches. CPEIS tracks publication-like records (theses)."""
    ACEIS = "ACEIS"
    ECEIS = "ECEIS"
    CPEIS = "CPEIS"

    ALL = (ACEIS, ECEIS, CPEIS)
