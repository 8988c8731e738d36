"""
Password Policy Validation

Requirements:
- Minimum 8 characters
- Maximum 72 characters (bcrypt limit)
- At least 1 uppercase letter
- At least 1 lowercase letter
- At least 1 digit
"""
import re
from typing import Tuple, List


def validate_password(password: str) -> Tuple[bool, List[str]]:
    """
    Validate password against security policy.

    Returns:
        Tuple of (is_valid, list_of_error_messages)
    """
    errors = []

    if len(password) < 8:
        errors.append("Password must be at least 8 characters")

    if len(password.encode("utf-8")) > 72:
        errors.append("Password must not exceed 72 characters (bcrypt limit)")

    if not re.search(r'[A-Z]', password):
        errors.append("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        errors.append("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        errors.append("Password must contain at least one digit")

    return len(errors) == 0, errors
