"""
Top Up Coins Handler.
POST /wallet/top-up
Body: { "amount": 100, "idempotencyKey": "..." }

Payment capture happens upstream; this credits the purchased coins.
"""
from shared.auth import require_user
from shared.config import config
from shared.logging import log_event
from shared.models import TopUpRequest, parse_request
from shared.services import build_services
from shared.utils import error_response, format_response, request_data


def handler(event, context, store=None, bus=None):
    log_event(event)
    try:
        user_id = require_user(event)
        req = parse_request(TopUpRequest, request_data(event))

        services = build_services(store, bus)
        result = services.ledger.top_up(user_id, req.amount, config.MAX_TOPUP_COINS, req.idempotency_key)

        return format_response(200, {
            'message': 'Top-up successful' if result.applied else 'Top-up already applied',
            'transactionId': result.entry.entry_id,
            'coins': result.entry.amount,
            'newBalance': result.balance,
        })

    except Exception as e:
        return error_response(e)
