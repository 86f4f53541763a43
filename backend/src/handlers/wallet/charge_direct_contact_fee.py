"""
Direct Contact Handler.
POST /helpers/{helperId}/contact
Body: { "categoryId": "...", "taskId": "..." }
"""
from shared.auth import require_user
from shared.logging import log_event
from shared.models import DirectContactRequest, parse_request
from shared.services import build_services
from shared.utils import error_response, format_response, request_data


def handler(event, context, store=None, bus=None):
    """Poster pays once to invite a specific eligible helper."""
    log_event(event)
    try:
        poster_id = require_user(event)
        req = parse_request(DirectContactRequest, request_data(event))

        services = build_services(store, bus)
        result = services.contacts.charge_direct_contact_fee(
            poster_id, req.helper_id, req.category_id, task_id=req.task_id
        )
        return format_response(200, result)

    except Exception as e:
        return error_response(e)
