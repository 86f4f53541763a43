"""
Get Wallet Handler.
GET /wallet
"""
from shared.auth import require_user
from shared.logging import log_event
from shared.services import build_services
from shared.utils import error_response, format_response


def handler(event, context, store=None, bus=None):
    """Current user's coin balance and most recent ledger entries."""
    log_event(event)
    try:
        user_id = require_user(event)

        services = build_services(store, bus)
        balance = services.ledger.balance(user_id)
        history = services.ledger.history(user_id, limit=20)

        return format_response(200, {
            "uid": user_id,
            "balance": balance,
            "currency": "COINS",
            "entries": [entry.to_item() for entry in history],
        })

    except Exception as e:
        return error_response(e)
