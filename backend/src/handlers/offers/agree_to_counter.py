"""
Agree To Counter Handler.
POST /offers/{offerId}/agree
"""
from shared.auth import require_user
from shared.logging import log_event
from shared.models import OfferActionRequest, parse_request
from shared.services import build_services
from shared.utils import error_response, format_response, request_data


def handler(event, context, store=None, bus=None):
    """Helper agrees to the poster's counter price. The poster still has to accept."""
    log_event(event)
    try:
        helper_id = require_user(event)
        req = parse_request(OfferActionRequest, request_data(event))

        services = build_services(store, bus)
        offer = services.offers.agree_to_counter(req.offer_id, helper_id)
        return format_response(200, offer.to_item())

    except Exception as e:
        return error_response(e)
