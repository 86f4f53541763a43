"""
Offer Write Trigger.
Triggered by DynamoDB Streams on OffersTable.
Derives notification events from each offer change and hands them to the dispatcher queue.
"""
import traceback

from shared.logging import logger
from shared.notifications import offer_change_events
from shared.services import build_services
from shared.store import stream_images


def handler(event, context, store=None, bus=None):
    """
    Handler triggered by DynamoDB Stream on Offers Table.
    Event ids are derived from the offer version, so a redelivered record or the
    same change already published by the callable path is deduplicated downstream.
    """
    if 'Records' not in event:
        return {'message': 'No records to process'}

    services = build_services(store, bus)
    published = 0
    for record in event['Records']:
        if record.get('eventName') not in ('INSERT', 'MODIFY'):
            continue
        try:
            published += process_record(services, record)
        except Exception as e:
            logger.error(f"Error processing offer record: {e}\n{traceback.format_exc()}")

    return {'message': f'Published {published} events'}


def process_record(services, record) -> int:
    before, after = stream_images(record)
    if not after:
        return 0

    task = services.store.get('tasks', after.get('taskId')) if after.get('taskId') else None
    events = offer_change_events(before, after, (task or {}).get('title'))
    services.bus.publish_all(events)
    return len(events)
