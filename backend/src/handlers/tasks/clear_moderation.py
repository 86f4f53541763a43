"""
Clear Moderation Handler.
POST /admin/tasks/{taskId}/moderation/clear
Body: { "outcome": "open" | "cancelled" }
"""
from shared.auth import require_admin
from shared.logging import log_event, logger
from shared.models import ClearModerationRequest, parse_request
from shared.services import build_services
from shared.utils import error_response, format_response, request_data


def handler(event, context, store=None, bus=None):
    log_event(event)
    try:
        admin_id = require_admin(event)
        req = parse_request(ClearModerationRequest, request_data(event))

        services = build_services(store, bus)
        result = services.tasks.clear_moderation(req.task_id, req.outcome)
        logger.info(f"Moderation on task {req.task_id} cleared by {admin_id}: {req.outcome}")
        return format_response(200, result)

    except Exception as e:
        return error_response(e)
