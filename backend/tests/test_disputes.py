"""
Tests for the Dispute Resolver.
"""
import pytest

from shared.errors import InsufficientFunds, InvalidTransition, NotFound, PermissionDenied
from shared.models import DisputeStatus


def balance(store, uid):
    return store.get('users', uid)['walletBalance']


@pytest.fixture
def assigned_task(services, listed_task):
    offer = services.offers.submit_offer(listed_task, 'helper', 100)
    services.offers.accept_offer(offer.offer_id, 'poster')
    return listed_task


@pytest.fixture
def dispute_id(services, assigned_task):
    return services.disputes.open_dispute(assigned_task, 'poster', 'never showed up').dispute_id


class TestOpenDispute:

    def test_parties_can_open(self, services, store, assigned_task):
        dispute = services.disputes.open_dispute(assigned_task, 'helper', 'not paid')

        stored = store.get('disputes', dispute.dispute_id)
        assert stored['status'] == DisputeStatus.OPEN
        assert stored['posterId'] == 'poster'
        assert stored['helperId'] == 'helper'

    def test_outsider_cannot_open(self, services, assigned_task):
        with pytest.raises(PermissionDenied):
            services.disputes.open_dispute(assigned_task, 'stranger', 'hmm')

    def test_listed_task_cannot_be_disputed(self, services, listed_task):
        with pytest.raises(PermissionDenied):
            services.disputes.open_dispute(listed_task, 'helper', 'hmm')
        with pytest.raises(InvalidTransition):
            services.disputes.open_dispute(listed_task, 'poster', 'hmm')


class TestResolve:

    def test_resolution_moves_coins_and_audits(self, services, store, dispute_id, published):
        # poster 980, helper 5 after acceptance
        result = services.disputes.resolve(dispute_id, 'admin', 'refund', poster_delta=5, helper_delta=-5,
                                           notes='partial refund')

        assert result['applied'] is True
        assert balance(store, 'poster') == 985
        assert balance(store, 'helper') == 0

        dispute = store.get('disputes', dispute_id)
        assert dispute['status'] == DisputeStatus.RESOLVED
        assert dispute['resolvedBy'] == 'admin'

        audit = store.get('audit', f'resolve_dispute:{dispute_id}')
        assert audit['posterDelta'] == 5
        assert audit['helperDelta'] == -5
        assert audit['notes'] == 'partial refund'

        assert store.get('ledger', f'dispute:{dispute_id}:helper')['amount'] == -5
        assert sorted(e.target_user_id for e in published if e.type == 'dispute.resolved') == ['helper', 'poster']

    def test_repeat_is_idempotent(self, services, store, dispute_id):
        services.disputes.resolve(dispute_id, 'admin', 'refund', poster_delta=5)
        again = services.disputes.resolve(dispute_id, 'admin', 'refund', poster_delta=5)

        assert again['applied'] is False
        assert balance(store, 'poster') == 985

    def test_resolved_dispute_is_immutable(self, services, dispute_id):
        services.disputes.resolve(dispute_id, 'admin', 'refund', poster_delta=5)

        with pytest.raises(InvalidTransition):
            services.disputes.resolve(dispute_id, 'admin', 'no refund')

    def test_overdraw_fails_everything(self, services, store, dispute_id):
        with pytest.raises(InsufficientFunds):
            services.disputes.resolve(dispute_id, 'admin', 'penalty', poster_delta=100, helper_delta=-100)

        assert balance(store, 'poster') == 980
        assert balance(store, 'helper') == 5
        assert store.get('disputes', dispute_id)['status'] == DisputeStatus.OPEN
        assert store.get('audit', f'resolve_dispute:{dispute_id}') is None

    def test_annotate_leaves_dispute_untouched(self, services, store, dispute_id):
        services.disputes.resolve(dispute_id, 'admin', 'refund')
        before = store.get('disputes', dispute_id)

        audit = services.disputes.annotate(dispute_id, 'admin', 'called both parties')

        assert store.get('disputes', dispute_id) == before
        assert store.get('audit', audit.audit_id)['action'] == 'annotate_dispute'

    def test_unknown_dispute(self, services):
        with pytest.raises(NotFound):
            services.disputes.resolve('nope', 'admin', 'refund')
