"""
Tests for notification event derivation and the event bus.
"""
from unittest.mock import MagicMock

from shared.events import EventBus, SqsEventSink, make_event
from shared.notifications import offer_change_events

BASE = {'offerId': 'o1', 'taskId': 't1', 'posterId': 'p1', 'helperId': 'h1', 'amount': 100,
        'status': 'pending', 'updatedAt': '2026-01-01T00:00:00+00:00'}


def changed(**fields):
    after = dict(BASE, updatedAt='2026-01-01T00:01:00+00:00')
    after.update(fields)
    return after


def kinds(events):
    return [(e.type, e.target_user_id) for e in events]


class TestOfferChangeEvents:

    def test_new_offer_notifies_poster(self):
        assert kinds(offer_change_events(None, BASE, 'Clean')) == [('offer.created', 'p1')]

    def test_acceptance_notifies_both(self):
        events = offer_change_events(BASE, changed(status='accepted'))
        assert kinds(events) == [('offer.accepted', 'h1'), ('task.assigned', 'p1')]

    def test_helper_counter_notifies_poster(self):
        events = offer_change_events(BASE, changed(status='negotiating', helperCounterPrice=90))
        assert kinds(events) == [('offer.helper_countered', 'p1')]

    def test_withdrawn_notifies_poster(self):
        assert kinds(offer_change_events(BASE, changed(status='withdrawn'))) == [('offer.withdrawn', 'p1')]

    def test_touch_without_change_is_silent(self):
        assert offer_change_events(BASE, changed()) == []

    def test_deleted_offer_is_silent(self):
        assert offer_change_events(BASE, None) == []

    def test_event_ids_are_stable_per_version(self):
        after = changed(status='rejected')
        first = offer_change_events(BASE, after)[0]
        again = offer_change_events(BASE, after, 'Different title')[0]
        later = offer_change_events(BASE, dict(after, updatedAt='2026-01-02T00:00:00+00:00'))[0]

        assert first.event_id == again.event_id
        assert first.event_id != later.event_id


class TestEventBus:

    def test_failing_subscriber_does_not_stop_others(self):
        received = []
        bus = EventBus([MagicMock(side_effect=RuntimeError('down')), received.append])
        event = make_event('offer.created', 'p1', 'New offer', 'body', offerId='o1')

        bus.publish(event)

        assert received == [event]

    def test_fifo_sink_deduplicates_on_event_id(self):
        client = MagicMock()
        sink = SqsEventSink('https://sqs.example/notifications.fifo', client=client)
        event = make_event('offer.created', 'p1', 'New offer', 'body', offerId='o1')

        sink(event)

        kwargs = client.send_message.call_args.kwargs
        assert kwargs['MessageDeduplicationId'] == event.event_id
        assert kwargs['MessageGroupId'] == 'p1'

    def test_standard_queue_uses_send_message(self):
        client = MagicMock()
        SqsEventSink('https://sqs.example/notifications', client=client)(
            make_event('offer.created', 'p1', 'New offer', 'body')
        )
        client.send_message.assert_called_once()

    def test_sink_without_queue_drops_events(self):
        client = MagicMock()
        SqsEventSink('', client=client)(make_event('offer.created', 'p1', 'New offer', 'body'))
        client.send_message.assert_not_called()
