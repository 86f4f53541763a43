"""
Update Task Status Handler.
POST /tasks/{taskId}/{action}   action: start | complete | cancel
"""
from shared.auth import require_user
from shared.errors import InvalidArgument
from shared.logging import log_event
from shared.models import TaskActionRequest, parse_request
from shared.services import build_services
from shared.utils import error_response, format_response, get_path_param, request_data

ACTIONS = ('start', 'complete', 'cancel')


def handler(event, context, store=None, bus=None):
    log_event(event)
    try:
        actor_id = require_user(event)
        data = request_data(event)
        action = get_path_param(event, 'action') or data.get('action')
        if action not in ACTIONS:
            raise InvalidArgument(f'action must be one of {", ".join(ACTIONS)}')
        req = parse_request(TaskActionRequest, data)

        services = build_services(store, bus)
        operation = getattr(services.tasks, action)
        return format_response(200, operation(req.task_id, actor_id))

    except Exception as e:
        return error_response(e)
