"""
Shared fixtures: an in-memory stand-in for the DynamoDB low-level client that
honours transaction conditions, plus store, bus and API event builders.
"""
import copy
import json
import os
import sys
import threading

import pytest
from botocore.exceptions import ClientError

# Add src to path for import
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from shared.config import config  # noqa: E402
from shared.events import EventBus  # noqa: E402
from shared.services import build_services  # noqa: E402
from shared.store import COLLECTIONS, VERSION_ATTR, DocumentStore  # noqa: E402


class FakeDynamoClient:
    """
    Just enough of ``boto3.client('dynamodb')`` for the document store:
    get_item, index query on a single attribute, and transact_write_items
    with the two condition forms the store emits.

    ``freeze_index(table)`` pins the index of a table to its current contents
    so later writes are invisible to queries until ``thaw_index``.
    """

    def __init__(self, cfg=config):
        self._lock = threading.Lock()
        self.tables = {}
        self.key_attrs = {getattr(cfg, table_attr): key_attr for table_attr, key_attr in COLLECTIONS.values()}
        self.transact_calls = 0
        self.frozen_indexes = {}

    def freeze_index(self, table_name):
        with self._lock:
            self.frozen_indexes[table_name] = copy.deepcopy(self._table(table_name))

    def thaw_index(self, table_name):
        self.frozen_indexes.pop(table_name, None)

    def _table(self, name):
        return self.tables.setdefault(name, {})

    @staticmethod
    def _key_value(key):
        (attr_value,) = key.values()
        return attr_value['S']

    def get_item(self, TableName, Key, ConsistentRead=False):
        with self._lock:
            item = self._table(TableName).get(self._key_value(Key))
            return {'Item': copy.deepcopy(item)} if item else {}

    def query(self, TableName, IndexName, KeyConditionExpression, ExpressionAttributeNames,
              ExpressionAttributeValues, ScanIndexForward=True, Limit=None, ExclusiveStartKey=None):
        attr = ExpressionAttributeNames['#a']
        value = ExpressionAttributeValues[':a']
        with self._lock:
            source = self.frozen_indexes.get(TableName, self._table(TableName))
            items = [copy.deepcopy(item) for item in source.values() if item.get(attr) == value]
        items.sort(key=lambda item: item.get('createdAt', {}).get('S', ''), reverse=not ScanIndexForward)
        if Limit:
            items = items[:Limit]
        return {'Items': items}

    def _passes(self, table, key_value, op):
        current = table.get(key_value)
        condition = op.get('ConditionExpression')
        if condition is None:
            return True
        if condition.startswith('attribute_not_exists'):
            return current is None
        if condition == '#v = :v':
            expected = op['ExpressionAttributeValues'][':v']['N']
            return current is not None and current.get(VERSION_ATTR, {}).get('N') == expected
        raise AssertionError(f'Unsupported condition {condition}')

    def transact_write_items(self, TransactItems):
        if len(TransactItems) > 100:
            raise ClientError({
                'Error': {'Code': 'ValidationException',
                          'Message': 'Member must have length less than or equal to 100'},
            }, 'TransactWriteItems')
        with self._lock:
            self.transact_calls += 1
            reasons = []
            planned = []
            for entry in TransactItems:
                (kind, op), = entry.items()
                table = self._table(op['TableName'])
                if kind == 'Put':
                    key_value = op['Item'][self.key_attrs[op['TableName']]]['S']
                else:
                    key_value = self._key_value(op['Key'])
                ok = self._passes(table, key_value, op)
                reasons.append({'Code': 'None' if ok else 'ConditionalCheckFailed'})
                planned.append((kind, table, key_value, op))

            if any(r['Code'] != 'None' for r in reasons):
                raise ClientError({
                    'Error': {'Code': 'TransactionCanceledException', 'Message': 'Transaction cancelled'},
                    'CancellationReasons': reasons,
                }, 'TransactWriteItems')

            for kind, table, key_value, op in planned:
                if kind == 'Put':
                    table[key_value] = copy.deepcopy(op['Item'])
                elif kind == 'Delete':
                    table.pop(key_value, None)
            return {}


@pytest.fixture
def dynamo():
    return FakeDynamoClient()


@pytest.fixture
def store(dynamo):
    return DocumentStore(dynamo, config)


@pytest.fixture
def published():
    return []


@pytest.fixture
def bus(published):
    return EventBus([published.append])


@pytest.fixture
def services(store, bus):
    return build_services(store, bus)


@pytest.fixture
def seed(store):
    """Write documents straight into the store: seed('users', 'u1', {...})."""
    def put(collection, key, doc):
        store.run_transaction(lambda txn: txn.set(collection, key, doc))
        return doc
    return put


@pytest.fixture
def users(seed):
    """Poster with 1000 coins and helpers verified for the cleaning category."""
    seed('users', 'poster', {'uid': 'poster', 'walletBalance': 1000})
    seed('users', 'helper', {'uid': 'helper', 'walletBalance': 30, 'allowedCategoryIds': ['cleaning']})
    seed('users', 'helper2', {'uid': 'helper2', 'walletBalance': 100, 'allowedCategoryIds': ['cleaning']})
    seed('users', 'stranger', {'uid': 'stranger', 'walletBalance': 0})


@pytest.fixture
def listed_task(services, users):
    services.tasks.publish('t1', 'poster', {'title': 'Clean my flat', 'categoryId': 'cleaning'})
    return 't1'


@pytest.fixture
def api_event():
    """API Gateway proxy event with Cognito claims."""
    def build(sub=None, body=None, path=None, groups=None):
        claims = {}
        if sub:
            claims['sub'] = sub
        if groups:
            claims['cognito:groups'] = groups
        return {
            'httpMethod': 'POST',
            'body': json.dumps(body or {}),
            'pathParameters': path or {},
            'requestContext': {'authorizer': {'claims': claims}},
        }
    return build
