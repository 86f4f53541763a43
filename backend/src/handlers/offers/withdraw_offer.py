"""
Withdraw Offer Handler.
POST /offers/{offerId}/withdraw
"""
from shared.auth import require_user
from shared.logging import log_event
from shared.models import OfferActionRequest, parse_request
from shared.services import build_services
from shared.utils import error_response, format_response, request_data


def handler(event, context, store=None, bus=None):
    log_event(event)
    try:
        helper_id = require_user(event)
        req = parse_request(OfferActionRequest, request_data(event))

        services = build_services(store, bus)
        offer = services.offers.withdraw_offer(req.offer_id, helper_id)
        return format_response(200, offer.to_item())

    except Exception as e:
        return error_response(e)
