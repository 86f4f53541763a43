"""
Reject Offer Handler.
POST /offers/{offerId}/reject
Body: { "reason": "..." }
"""
from shared.auth import require_user
from shared.logging import log_event
from shared.models import RejectOfferRequest, parse_request
from shared.services import build_services
from shared.utils import error_response, format_response, request_data


def handler(event, context, store=None, bus=None):
    log_event(event)
    try:
        poster_id = require_user(event)
        req = parse_request(RejectOfferRequest, request_data(event))

        services = build_services(store, bus)
        offer = services.offers.reject_offer(req.offer_id, poster_id, req.reason)
        return format_response(200, offer.to_item())

    except Exception as e:
        return error_response(e)
