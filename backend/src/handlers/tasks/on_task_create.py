"""
Task Create Trigger.
Triggered by DynamoDB Streams on TasksTable.
Charges the posting fee for tasks that were written without going through publish.
"""
import traceback

from shared.logging import logger
from shared.services import build_services
from shared.store import stream_images


def handler(event, context, store=None, bus=None):
    """
    Handler triggered by DynamoDB Stream on Tasks Table.
    Listens for INSERT events only; the safety net itself is idempotent, so a
    failure is raised and the whole batch is redelivered.
    """
    if 'Records' not in event:
        return {'message': 'No records to process'}

    services = build_services(store, bus)
    outcomes = {}
    for record in event['Records']:
        if record.get('eventName') != 'INSERT':
            continue
        _, task = stream_images(record)
        task_id = (task or {}).get('taskId')
        if not task_id:
            logger.warning("Task stream record without taskId")
            continue
        try:
            outcomes[task_id] = services.tasks.charge_posting_fee(task_id)
        except Exception as e:
            logger.error(f"Error processing task {task_id}: {e}\n{traceback.format_exc()}")
            raise

    return {'message': f'Processed {len(outcomes)} records', 'outcomes': outcomes}
