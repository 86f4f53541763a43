"""
Helper Counter Handler.
POST /offers/{offerId}/helper-counter
Body: { "price": 1200 }
"""
from shared.auth import require_user
from shared.logging import log_event
from shared.models import CounterRequest, parse_request
from shared.services import build_services
from shared.utils import error_response, format_response, request_data


def handler(event, context, store=None, bus=None):
    log_event(event)
    try:
        helper_id = require_user(event)
        req = parse_request(CounterRequest, request_data(event))

        services = build_services(store, bus)
        offer = services.offers.helper_counter(req.offer_id, helper_id, req.price)
        return format_response(200, offer.to_item())

    except Exception as e:
        return error_response(e)
