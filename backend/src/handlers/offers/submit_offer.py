"""
Submit Offer Handler.
POST /tasks/{taskId}/offers
Body: { "amount": 1500, "message": "..." }
"""
from shared.auth import require_user
from shared.logging import log_event
from shared.models import SubmitOfferRequest, parse_request
from shared.services import build_services
from shared.utils import error_response, format_response, request_data


def handler(event, context, store=None, bus=None):
    log_event(event)
    try:
        helper_id = require_user(event)
        req = parse_request(SubmitOfferRequest, request_data(event))

        services = build_services(store, bus)
        offer = services.offers.submit_offer(req.task_id, helper_id, req.amount, req.message)
        return format_response(201, offer.to_item())

    except Exception as e:
        return error_response(e)
