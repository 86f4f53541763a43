"""
Recompute Allowed Categories Handler.
POST /users/{uid}/allowed-categories/recompute
"""
from shared.auth import is_admin, require_user
from shared.errors import PermissionDenied
from shared.logging import log_event
from shared.models import RecomputeRequest, parse_request
from shared.services import build_services
from shared.utils import error_response, format_response, request_data


def handler(event, context, store=None, bus=None):
    """Admins may recompute anyone; other users only themselves."""
    log_event(event)
    try:
        caller_id = require_user(event)
        req = parse_request(RecomputeRequest, request_data(event))
        uid = req.uid or caller_id
        if uid != caller_id and not is_admin(event):
            raise PermissionDenied('Admin only')

        services = build_services(store, bus)
        return format_response(200, services.eligibility.recompute(uid))

    except Exception as e:
        return error_response(e)
