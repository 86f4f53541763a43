"""
Start Dispute Handler.
POST /tasks/{taskId}/disputes
Body: { "reason": "..." }
"""
from shared.auth import require_user
from shared.logging import log_event
from shared.models import StartDisputeRequest, parse_request
from shared.services import build_services
from shared.utils import error_response, format_response, request_data


def handler(event, context, store=None, bus=None):
    log_event(event)
    try:
        user_id = require_user(event)
        req = parse_request(StartDisputeRequest, request_data(event))

        services = build_services(store, bus)
        dispute = services.disputes.open_dispute(req.task_id, user_id, req.reason)
        return format_response(201, dispute.to_item())

    except Exception as e:
        return error_response(e)
