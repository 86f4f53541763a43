"""
Resolve Dispute Handler.
POST /admin/disputes/{disputeId}/resolve
Body: { "resolution": "...", "posterDelta": 100, "helperDelta": -100, "notes": "..." }
"""
from shared.auth import require_admin
from shared.logging import log_event
from shared.models import ResolveDisputeRequest, parse_request
from shared.services import build_services
from shared.utils import error_response, format_response, request_data


def handler(event, context, store=None, bus=None):
    """
    Admin closes a dispute with signed coin adjustments for each party.
    Balances, dispute status and the audit record change together.
    """
    log_event(event)
    try:
        admin_id = require_admin(event)
        req = parse_request(ResolveDisputeRequest, request_data(event))

        services = build_services(store, bus)
        result = services.disputes.resolve(
            req.dispute_id, admin_id, req.resolution,
            poster_delta=req.poster_delta, helper_delta=req.helper_delta, notes=req.notes
        )
        return format_response(200, result)

    except Exception as e:
        return error_response(e)
