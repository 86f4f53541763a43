"""
Publish Task Handler.
POST /tasks/{taskId}/publish
Body: { "taskPayload": { "title": "...", "description": "...", "categoryId": "..." } }
"""
from shared.auth import require_user
from shared.logging import log_event
from shared.models import PublishTaskRequest, parse_request
from shared.services import build_services
from shared.utils import error_response, format_response, request_data


def handler(event, context, store=None, bus=None):
    """
    Creates or merges the task as listed and charges the posting fee once.
    The poster must hold at least the minimum balance plus the fee.
    """
    log_event(event)
    try:
        poster_id = require_user(event)
        req = parse_request(PublishTaskRequest, request_data(event))

        services = build_services(store, bus)
        result = services.tasks.publish(req.task_id, poster_id, req.task_payload)
        return format_response(200, result)

    except Exception as e:
        return error_response(e)
