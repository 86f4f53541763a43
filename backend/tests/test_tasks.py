"""
Tests for the Task Lifecycle Manager: publishing, the posting-fee safety net,
moderation and progress transitions.
"""
import pytest

from shared.errors import InsufficientFunds, InvalidTransition, NotFound, PermissionDenied
from shared.models import TaskStatus
from shared.tasks import can_transition, post_fee_key


def balance(store, uid):
    return store.get('users', uid)['walletBalance']


class TestPublish:

    def test_publish_charges_fee_and_lists(self, services, store, users):
        result = services.tasks.publish('t1', 'poster', {'title': 'Clean', 'categoryId': 'cleaning'})

        assert result == {'published': True, 'taskId': 't1', 'status': 'listed', 'balance': 980}
        task = store.get('tasks', 't1')
        assert task['status'] == TaskStatus.LISTED
        assert task['posterId'] == 'poster'
        assert task['postingFeeTxnId'] == post_fee_key('t1')
        assert balance(store, 'poster') == 980

    def test_republish_is_a_no_op(self, services, store, listed_task):
        result = services.tasks.publish(listed_task, 'poster', {'title': 'Changed'})

        assert result['published'] is False
        assert balance(store, 'poster') == 980

    def test_protected_fields_are_ignored(self, services, store, users):
        services.tasks.publish('t1', 'poster', {'title': 'x', 'status': 'assigned', 'posterId': 'stranger'})

        task = store.get('tasks', 't1')
        assert task['status'] == TaskStatus.LISTED
        assert task['posterId'] == 'poster'

    def test_snake_case_protected_fields_are_ignored(self, services, store, users):
        services.tasks.publish('t1', 'poster', {
            'title': 'x', 'final_amount': 7, 'moderation_verdict': 'safe', 'poster_id': 'victim',
            'assigned_offer_id': 'o9', 'created_at': '2000-01-01T00:00:00+00:00',
        })

        task = store.get('tasks', 't1')
        assert task['posterId'] == 'poster'
        assert task['createdAt'] != '2000-01-01T00:00:00+00:00'
        for key in ('finalAmount', 'moderationVerdict', 'assignedOfferId',
                    'final_amount', 'moderation_verdict', 'poster_id', 'assigned_offer_id', 'created_at'):
            assert key not in task

    def test_below_minimum_balance_is_rejected(self, services, store, seed):
        seed('users', 'poor', {'uid': 'poor', 'walletBalance': 519})

        with pytest.raises(InsufficientFunds):
            services.tasks.publish('t1', 'poor', {'title': 'x'})
        assert store.get('tasks', 't1') is None
        assert balance(store, 'poor') == 519

    def test_settings_raise_minimum_but_not_lower_it(self, services, store, seed, users):
        seed('settings', 'platform', {'posting': {'minBalanceCoins': 100, 'postFeeCoins': 30}})
        services.tasks.publish('t1', 'poster', {'title': 'x'})
        assert balance(store, 'poster') == 970

        seed('users', 'mid', {'uid': 'mid', 'walletBalance': 600})
        store.run_transaction(lambda txn: txn.update('settings', 'platform', {'posting': {'minBalanceCoins': 900}}))
        with pytest.raises(InsufficientFunds):
            services.tasks.publish('t2', 'mid', {'title': 'x'})

    def test_someone_elses_task(self, services, listed_task, seed):
        seed('users', 'other', {'uid': 'other', 'walletBalance': 1000})
        with pytest.raises(PermissionDenied):
            services.tasks.publish(listed_task, 'other', {})


class TestPostingFeeSafetyNet:

    def test_charges_task_written_directly(self, services, store, seed, users):
        seed('tasks', 't9', {'taskId': 't9', 'posterId': 'poster', 'status': 'listed'})

        assert services.tasks.charge_posting_fee('t9') == 'charged'
        assert services.tasks.charge_posting_fee('t9') == 'already_charged'
        assert balance(store, 'poster') == 980
        assert store.get('tasks', 't9')['postingFeeTxnId'] == post_fee_key('t9')

    def test_published_task_is_not_charged_twice(self, services, store, listed_task):
        assert services.tasks.charge_posting_fee(listed_task) == 'already_charged'
        assert balance(store, 'poster') == 980

    def test_poster_who_cannot_pay_loses_task(self, services, store, seed):
        seed('users', 'broke', {'uid': 'broke', 'walletBalance': 5})
        seed('tasks', 't9', {'taskId': 't9', 'posterId': 'broke', 'status': 'listed'})

        assert services.tasks.charge_posting_fee('t9') == 'deleted'
        assert store.get('tasks', 't9') is None
        assert balance(store, 'broke') == 5

    def test_missing_task(self, services):
        assert services.tasks.charge_posting_fee('nope') == 'missing'


class TestModeration:

    def test_unsafe_moves_to_review_with_report(self, services, store, listed_task, published):
        result = services.tasks.moderate(listed_task, 'UNSAFE', 'spam')

        assert result['status'] == TaskStatus.UNDER_REVIEW
        assert store.get('reports', f'moderation:{listed_task}')['reason'] == 'spam'
        assert [e.type for e in published] == ['task.under_review']
        assert published[0].target_user_id == 'poster'

    def test_safe_records_verdict_only(self, services, store, listed_task):
        services.tasks.moderate(listed_task, 'safe')

        task = store.get('tasks', listed_task)
        assert task['status'] == TaskStatus.LISTED
        assert task['moderationVerdict'] == 'safe'

    def test_clear_moderation_reopens(self, services, store, listed_task):
        services.tasks.moderate(listed_task, 'unsafe')
        services.tasks.clear_moderation(listed_task, TaskStatus.OPEN)
        assert store.get('tasks', listed_task)['status'] == TaskStatus.OPEN

    def test_clear_requires_review(self, services, listed_task):
        with pytest.raises(InvalidTransition):
            services.tasks.clear_moderation(listed_task, TaskStatus.OPEN)

    def test_unknown_task(self, services):
        with pytest.raises(NotFound):
            services.tasks.moderate('nope', 'unsafe')


class TestProgress:

    @pytest.fixture
    def assigned_task(self, services, listed_task):
        offer = services.offers.submit_offer(listed_task, 'helper', 100)
        services.offers.accept_offer(offer.offer_id, 'poster')
        return listed_task

    def test_start_complete(self, services, store, assigned_task, published):
        services.tasks.start(assigned_task, 'helper')
        services.tasks.complete(assigned_task, 'poster')

        task = store.get('tasks', assigned_task)
        assert task['status'] == TaskStatus.COMPLETED
        assert task['assignedHelperId'] == 'helper'
        assert 'task.completed' in [e.type for e in published]

    def test_only_poster_completes(self, services, assigned_task):
        services.tasks.start(assigned_task, 'poster')
        with pytest.raises(PermissionDenied):
            services.tasks.complete(assigned_task, 'helper')

    def test_complete_requires_in_progress(self, services, assigned_task):
        with pytest.raises(InvalidTransition):
            services.tasks.complete(assigned_task, 'poster')

    def test_cancel_clears_helper(self, services, store, assigned_task, published):
        services.tasks.cancel(assigned_task, 'poster')

        task = store.get('tasks', assigned_task)
        assert task['status'] == TaskStatus.CANCELLED
        assert 'assignedHelperId' not in task
        assert published[-1].type == 'task.cancelled'
        assert published[-1].target_user_id == 'helper'

    def test_stranger_cannot_start(self, services, assigned_task):
        with pytest.raises(PermissionDenied):
            services.tasks.start(assigned_task, 'stranger')


@pytest.mark.parametrize('current,target,allowed', [
    ('listed', 'assigned', True),
    ('open', 'under_review', True),
    ('under_review', 'assigned', False),
    ('completed', 'cancelled', False),
    ('cancelled', 'open', False),
])
def test_transition_table(current, target, allowed):
    assert can_transition(current, target) is allowed
