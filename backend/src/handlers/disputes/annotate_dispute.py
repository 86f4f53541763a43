"""
Annotate Dispute Handler.
POST /admin/disputes/{disputeId}/notes
Body: { "notes": "..." }
"""
from shared.auth import require_admin
from shared.logging import log_event
from shared.models import AnnotateDisputeRequest, parse_request
from shared.services import build_services
from shared.utils import error_response, format_response, request_data


def handler(event, context, store=None, bus=None):
    """
    Admin adds a note to a dispute's audit trail, open or resolved.
    """
    log_event(event)
    try:
        admin_id = require_admin(event)
        req = parse_request(AnnotateDisputeRequest, request_data(event))

        services = build_services(store, bus)
        audit = services.disputes.annotate(req.dispute_id, admin_id, req.notes)
        return format_response(201, audit.to_item())

    except Exception as e:
        return error_response(e)
