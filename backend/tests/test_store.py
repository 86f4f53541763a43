"""
Tests for the optimistic transaction primitive.
"""
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from shared.config import config
from shared.errors import Internal, NotFound
from shared.store import DocumentStore, serialize_item, stream_images


def cancelled(*codes):
    return ClientError({
        'Error': {'Code': 'TransactionCanceledException', 'Message': 'cancelled'},
        'CancellationReasons': [{'Code': code} for code in codes],
    }, 'TransactWriteItems')


@pytest.fixture
def mock_client():
    client = MagicMock()
    client.get_item.return_value = {}
    return client


class TestRunTransaction:

    def test_conflict_retries_then_gives_up(self, mock_client):
        mock_client.transact_write_items.side_effect = cancelled('ConditionalCheckFailed')
        store = DocumentStore(mock_client, config)

        with pytest.raises(Internal) as exc:
            store.run_transaction(lambda txn: txn.set('users', 'u1', {'walletBalance': 1}))

        assert exc.value.reason == 'transaction_contention'
        assert mock_client.transact_write_items.call_count == config.MAX_TRANSACTION_ATTEMPTS

    def test_conflict_then_success_reruns_body(self, mock_client):
        mock_client.transact_write_items.side_effect = [cancelled('None', 'TransactionConflict'), {}]
        store = DocumentStore(mock_client, config)
        body = MagicMock(side_effect=lambda txn: txn.set('users', 'u1', {'walletBalance': 1}))

        store.run_transaction(body)

        assert body.call_count == 2

    def test_validation_failure_is_not_retried(self, mock_client):
        mock_client.transact_write_items.side_effect = cancelled('ValidationError')
        store = DocumentStore(mock_client, config)

        with pytest.raises(Internal):
            store.run_transaction(lambda txn: txn.set('users', 'u1', {'walletBalance': 1}))
        assert mock_client.transact_write_items.call_count == 1

    def test_domain_error_aborts_without_writing(self, mock_client):
        store = DocumentStore(mock_client, config)

        def body(txn):
            txn.set('users', 'u1', {'walletBalance': 1})
            raise NotFound('nope')

        with pytest.raises(NotFound):
            store.run_transaction(body)
        mock_client.transact_write_items.assert_not_called()

    def test_oversized_transaction_fails_fast(self, mock_client):
        store = DocumentStore(mock_client, config)

        def body(txn):
            for i in range(101):
                txn.set('users', f'u{i}', {'walletBalance': 1})

        with pytest.raises(Internal) as exc:
            store.run_transaction(body)

        assert exc.value.reason == 'transaction_too_large'
        mock_client.transact_write_items.assert_not_called()

    def test_after_commit_runs_once_on_success_only(self, mock_client):
        mock_client.transact_write_items.side_effect = [cancelled('ConditionalCheckFailed'), {}]
        store = DocumentStore(mock_client, config)
        hook = MagicMock()

        def body(txn):
            txn.set('users', 'u1', {'walletBalance': 1})
            txn.after_commit(hook)

        store.run_transaction(body)
        hook.assert_called_once()

    def test_failing_hook_does_not_reach_caller(self, mock_client):
        store = DocumentStore(mock_client, config)

        def body(txn):
            txn.set('users', 'u1', {'walletBalance': 1})
            txn.after_commit(MagicMock(side_effect=RuntimeError('push down')))
            return 'done'

        assert store.run_transaction(body) == 'done'


class TestConditions:

    def test_create_and_update_conditions(self, mock_client):
        mock_client.get_item.side_effect = lambda **kw: (
            {'Item': serialize_item({'uid': 'u1', 'walletBalance': 5, 'docVersion': 3})}
            if kw['TableName'] == config.USERS_TABLE else {}
        )
        store = DocumentStore(mock_client, config)

        def body(txn):
            txn.update('users', 'u1', {'walletBalance': 4})
            txn.set('ledger', 'k1', {'uid': 'u1', 'amount': -1})
            txn.get('tasks', 't1')

        store.run_transaction(body)
        items = mock_client.transact_write_items.call_args.kwargs['TransactItems']
        user_put, ledger_put, task_check = items

        assert user_put['Put']['ConditionExpression'] == '#v = :v'
        assert user_put['Put']['ExpressionAttributeValues'] == {':v': {'N': '3'}}
        assert user_put['Put']['Item']['docVersion'] == {'N': '4'}
        assert ledger_put['Put']['ConditionExpression'] == 'attribute_not_exists(#k)'
        assert task_check['ConditionCheck']['Key'] == {'taskId': {'S': 't1'}}

    def test_read_your_writes(self, mock_client):
        store = DocumentStore(mock_client, config)

        def body(txn):
            txn.set('tasks', 't1', {'status': 'listed'})
            seen = txn.get('tasks', 't1')
            txn.delete('tasks', 't1')
            return seen, txn.get('tasks', 't1')

        seen, after_delete = store.run_transaction(body)
        assert seen['status'] == 'listed'
        assert after_delete is None
        # created then deleted in one attempt: nothing to write
        mock_client.transact_write_items.assert_not_called()


def test_stream_images_drop_version():
    record = {'dynamodb': {
        'NewImage': serialize_item({'offerId': 'o1', 'amount': 10, 'docVersion': 2}),
    }}
    old, new = stream_images(record)
    assert old is None
    assert new == {'offerId': 'o1', 'amount': 10}
