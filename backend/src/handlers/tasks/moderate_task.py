"""
Moderate Task Handler.
POST /admin/tasks/{taskId}/moderation
Body: { "verdict": "safe" | "unsafe", "reason": "..." }

Called by the content classifier with its verdict on the task's title and description.
"""
from shared.auth import require_admin
from shared.logging import log_event
from shared.models import ModerationRequest, parse_request
from shared.services import build_services
from shared.utils import error_response, format_response, request_data


def handler(event, context, store=None, bus=None):
    log_event(event)
    try:
        require_admin(event)
        req = parse_request(ModerationRequest, request_data(event))

        services = build_services(store, bus)
        return format_response(200, services.tasks.moderate(req.task_id, req.verdict, req.reason))

    except Exception as e:
        return error_response(e)
