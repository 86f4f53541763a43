"""
Notification events derived from domain state changes.

Pure functions: they look at before/after documents and decide who should
hear about what. Delivery (channels, devices, retries) belongs to the
dispatcher behind the event queue.
"""
from typing import Any, Dict, List, Optional

from .events import make_event
from .models import DomainEvent, OfferStatus


def _became(before: Dict[str, Any], after: Dict[str, Any], status: str) -> bool:
    return before.get('status') != status and after.get('status') == status


def offer_change_events(
    before: Optional[Dict[str, Any]],
    after: Optional[Dict[str, Any]],
    task_title: Optional[str] = None
) -> List[DomainEvent]:
    """
    Events for one offer write, given the offer document before and after it.

    Poster actions notify the helper; helper actions notify the poster.
    """
    if not after:
        return []

    before = before or {}
    offer_id = after.get('offerId')
    task_id = after.get('taskId')
    poster_id = after.get('posterId') or before.get('posterId')
    helper_id = after.get('helperId') or before.get('helperId')
    if not poster_id or not helper_id:
        return []

    title = task_title or f'Task {task_id}'
    version = str(after.get('updatedAt') or after.get('createdAt') or '')
    ids = {'offerId': offer_id, 'taskId': task_id}
    events = []

    def add(event_type, target, heading, body):
        events.append(make_event(event_type, target, heading, body, version=version, **ids))

    if not before:
        add('offer.created', poster_id, 'New offer',
            f'New offer of {after.get("amount")} on “{title}”.')
        return events

    if _became(before, after, OfferStatus.COUNTER) or (
            after.get('status') == OfferStatus.COUNTER
            and after.get('counterPrice') != before.get('counterPrice')):
        add('offer.countered', helper_id, 'Counter offer',
            f'Poster countered on “{title}” at {after.get("counterPrice")}.')
    if _became(before, after, OfferStatus.REJECTED):
        add('offer.rejected', helper_id, 'Offer rejected',
            f'Your offer was rejected on “{title}”.')
    if _became(before, after, OfferStatus.ACCEPTED):
        add('offer.accepted', helper_id, 'Offer approved',
            f'Your offer on “{title}” was accepted and the task is assigned to you.')
        add('task.assigned', poster_id, 'Helper assigned',
            f'Your task “{title}” has been assigned successfully.')
    if _became(before, after, OfferStatus.AWAITING_TOPUP):
        add('offer.top_up_needed', helper_id, 'Top up needed',
            f'Add coins to secure the approval on “{title}”.')

    if not before.get('helperAgreed') and after.get('helperAgreed') is True:
        add('offer.helper_agreed', poster_id, 'Helper accepted your counter',
            f'They agreed to your price on “{title}”. Tap to accept.')
    if after.get('helperCounterPrice') is not None and \
            after.get('helperCounterPrice') != before.get('helperCounterPrice'):
        add('offer.helper_countered', poster_id, 'New counter from helper',
            f'Helper countered on “{title}” at {after.get("helperCounterPrice")}.')
    if _became(before, after, OfferStatus.WITHDRAWN):
        add('offer.withdrawn', poster_id, 'Offer withdrawn',
            f'Helper withdrew their offer on “{title}”.')

    return events


def task_under_review_event(task: Dict[str, Any]) -> DomainEvent:
    title = task.get('title') or f'Task {task.get("taskId")}'
    return make_event(
        'task.under_review', task['posterId'], 'Task under review',
        f'“{title}” was flagged and is hidden while we review it.',
        version=task.get('updatedAt'), taskId=task.get('taskId')
    )


def dispute_resolved_events(dispute: Dict[str, Any]) -> List[DomainEvent]:
    events = []
    for party, delta_field in (('posterId', 'posterDelta'), ('helperId', 'helperDelta')):
        uid = dispute.get(party)
        if not uid:
            continue
        delta = dispute.get(delta_field) or 0
        body = f'Resolution: {dispute.get("resolution")}.'
        if delta:
            body += f' Your balance changed by {delta:+d} coins.'
        events.append(make_event(
            'dispute.resolved', uid, 'Dispute resolved', body,
            version=dispute.get('resolvedAt'),
            disputeId=dispute.get('disputeId'), taskId=dispute.get('taskId')
        ))
    return events
