"""
Accept Offer Handler.
POST /tasks/{taskId}/offers/{offerId}/accept
Body: { "holdForTopUp": false }
"""
from shared.auth import require_user
from shared.logging import log_event
from shared.models import AcceptOfferRequest, parse_request
from shared.services import build_services
from shared.utils import error_response, format_response, request_data


def handler(event, context, store=None, bus=None):
    """
    Poster accepts an offer. Charges the helper's accept fee and assigns the
    task in one transaction; only one offer per task can win.
    """
    log_event(event)
    try:
        poster_id = require_user(event)
        req = parse_request(AcceptOfferRequest, request_data(event))

        services = build_services(store, bus)
        result = services.offers.accept_offer(
            req.offer_id, poster_id, task_id=req.task_id, hold_for_top_up=req.hold_for_top_up
        )
        return format_response(200, result)

    except Exception as e:
        return error_response(e)
