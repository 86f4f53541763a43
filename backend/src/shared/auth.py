"""
Authentication utilities for extracting identity claims from Cognito tokens.
Identity issuance lives elsewhere; the core only consumes the claims.
"""
from typing import Optional

from .errors import PermissionDenied, Unauthenticated


def get_claims(event: dict) -> dict:
    try:
        return event['requestContext']['authorizer']['claims'] or {}
    except (KeyError, TypeError):
        return {}


def get_user_sub(event: dict) -> Optional[str]:
    """
    Extract user sub (unique ID) from Cognito authorizer claims.

    Args:
        event: API Gateway Lambda proxy event

    Returns:
        User sub string or None if not authenticated
    """
    return get_claims(event).get('sub') or None


def get_user_groups(event: dict) -> list:
    """Extract user groups (poster, helper, admin) from Cognito claims."""
    groups = get_claims(event).get('cognito:groups', '')
    if isinstance(groups, str):
        return groups.split(',') if groups else []
    return groups or []


def is_admin(event: dict) -> bool:
    """Check if user belongs to admin group or carries the admin role claim."""
    return 'admin' in get_user_groups(event) or get_claims(event).get('custom:role') == 'admin'


def require_user(event: dict) -> str:
    uid = get_user_sub(event)
    if not uid:
        raise Unauthenticated('Sign in required.')
    return uid


def require_admin(event: dict) -> str:
    uid = require_user(event)
    if not is_admin(event):
        raise PermissionDenied('Admin only')
    return uid
