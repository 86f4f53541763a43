"""
DynamoDB document store with optimistic multi-document transactions.

Every stored item carries a ``docVersion`` counter. A transaction records the
version of everything it reads, buffers its writes, and commits them with a
single ``transact_write_items`` call in which each written item is conditioned
on the version that was read (``attribute_not_exists`` for creates) and each
read-only item becomes a ``ConditionCheck``. If anything in the read set moved
underneath us, DynamoDB cancels the whole call and the transaction body is run
again from scratch against fresh reads.
"""
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

import boto3
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import ClientError

from .config import config as default_config
from .errors import Internal
from .logging import logger

VERSION_ATTR = 'docVersion'

# collection -> (config attribute holding the table name, hash key attribute)
COLLECTIONS = {
    'users': ('USERS_TABLE', 'uid'),
    'tasks': ('TASKS_TABLE', 'taskId'),
    'offers': ('OFFERS_TABLE', 'offerId'),
    'ledger': ('LEDGER_TABLE', 'entryId'),
    'category_proofs': ('CATEGORY_PROOFS_TABLE', 'proofId'),
    'basic_docs': ('BASIC_DOCS_TABLE', 'uid'),
    'disputes': ('DISPUTES_TABLE', 'disputeId'),
    'audit': ('AUDIT_TABLE', 'auditId'),
    'reports': ('REPORTS_TABLE', 'reportId'),
    'invites': ('INVITES_TABLE', 'inviteId'),
    'settings': ('SETTINGS_TABLE', 'settingId'),
}

# Cancellation reasons that mean "somebody else wrote first"
RETRYABLE_REASONS = ('ConditionalCheckFailed', 'TransactionConflict')

# TransactWriteItems accepts at most this many actions per call
MAX_TRANSACT_ITEMS = 100

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()
_DELETED = object()

T = TypeVar('T')


def to_dynamo(value: Any) -> Any:
    """Convert Python values into types TypeSerializer accepts (no floats)."""
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_dynamo(v) for v in value]
    return value


def from_dynamo(value: Any) -> Any:
    """Convert Decimals coming back from DynamoDB into int or float."""
    if isinstance(value, Decimal):
        # Convert to int if it's a whole number, otherwise float
        if value % 1 == 0:
            return int(value)
        return float(value)
    if isinstance(value, dict):
        return {k: from_dynamo(v) for k, v in value.items()}
    if isinstance(value, (list, set)):
        return [from_dynamo(v) for v in value]
    return value


def serialize_item(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {k: _serializer.serialize(to_dynamo(v)) for k, v in doc.items() if v is not None}


def deserialize_item(item: Dict[str, Any]) -> Dict[str, Any]:
    return {k: from_dynamo(_deserializer.deserialize(v)) for k, v in item.items()}


def stream_images(record: Dict[str, Any]) -> Tuple[Optional[Dict[str, Any]], Optional[Dict[str, Any]]]:
    """(old, new) documents from a DynamoDB Stream record, without the version counter."""
    images = []
    for name in ('OldImage', 'NewImage'):
        raw = (record.get('dynamodb') or {}).get(name)
        if not raw:
            images.append(None)
            continue
        doc = deserialize_item(raw)
        doc.pop(VERSION_ATTR, None)
        images.append(doc)
    return images[0], images[1]


class DocumentStore:
    """Keyed documents over DynamoDB tables plus the ``run_transaction`` primitive."""

    def __init__(self, client, cfg=default_config):
        self.client = client
        self.config = cfg
        self.max_attempts = cfg.MAX_TRANSACTION_ATTEMPTS

    @classmethod
    def from_config(cls, cfg=default_config) -> 'DocumentStore':
        return cls(boto3.client('dynamodb', region_name=cfg.AWS_REGION), cfg)

    def table(self, collection: str) -> Tuple[str, str]:
        """Return (table name, hash key attribute) for a collection."""
        try:
            table_attr, key_attr = COLLECTIONS[collection]
        except KeyError:
            raise Internal(f'Unknown collection {collection!r}')
        return getattr(self.config, table_attr), key_attr

    def key(self, collection: str, key: str) -> Dict[str, Any]:
        _, key_attr = self.table(collection)
        return {key_attr: {'S': str(key)}}

    def read(self, collection: str, key: str) -> Tuple[Optional[Dict[str, Any]], int]:
        """Strongly consistent read. Returns (document, version); version 0 means absent."""
        table_name, _ = self.table(collection)
        try:
            response = self.client.get_item(
                TableName=table_name,
                Key=self.key(collection, key),
                ConsistentRead=True
            )
        except ClientError as e:
            logger.error(f"Error getting {collection}/{key}: {e}")
            raise Internal(f'Store read failed for {collection}')
        item = response.get('Item')
        if not item:
            return None, 0
        doc = deserialize_item(item)
        version = int(doc.pop(VERSION_ATTR, 0) or 0)
        return doc, version

    def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        """Read a single document outside any transaction."""
        doc, _ = self.read(collection, key)
        return doc

    def query_versions(
        self,
        collection: str,
        index_name: str,
        attr: str,
        value: str,
        limit: Optional[int] = None,
        scan_forward: bool = True
    ) -> List[Tuple[Dict[str, Any], int]]:
        """Query a secondary index on ``attr = value``, following pagination."""
        table_name, _ = self.table(collection)
        params = {
            'TableName': table_name,
            'IndexName': index_name,
            'KeyConditionExpression': '#a = :a',
            'ExpressionAttributeNames': {'#a': attr},
            'ExpressionAttributeValues': {':a': {'S': str(value)}},
            'ScanIndexForward': scan_forward,
        }
        if limit:
            params['Limit'] = limit

        results = []
        try:
            while True:
                response = self.client.query(**params)
                for item in response.get('Items', []):
                    doc = deserialize_item(item)
                    version = int(doc.pop(VERSION_ATTR, 0) or 0)
                    results.append((doc, version))
                last_key = response.get('LastEvaluatedKey')
                if not last_key or (limit and len(results) >= limit):
                    break
                params['ExclusiveStartKey'] = last_key
        except ClientError as e:
            logger.error(f"Error querying {collection} on {index_name}: {e}")
            raise Internal(f'Store query failed for {collection}')
        return results

    def query(self, collection: str, index_name: str, attr: str, value: str, **kwargs) -> List[Dict[str, Any]]:
        return [doc for doc, _ in self.query_versions(collection, index_name, attr, value, **kwargs)]

    def run_transaction(self, fn: Callable[['Transaction'], T]) -> T:
        """
        Run ``fn(txn)`` atomically.

        The body may be executed several times, so it must not call anything
        with external side effects; use ``txn.after_commit`` for those.
        Exceptions raised by the body abort the attempt without writing.
        """
        for attempt in range(1, self.max_attempts + 1):
            txn = Transaction(self)
            result = fn(txn)
            if txn.commit():
                txn.run_after_commit()
                return result
            logger.warning(f"Transaction conflict, retrying (attempt {attempt}/{self.max_attempts})")

        logger.error(f"Transaction gave up after {self.max_attempts} attempts")
        raise Internal('Too much contention, please retry', reason='transaction_contention')


class Transaction:
    """Read set, buffered write set and post-commit hooks for one attempt."""

    def __init__(self, store: DocumentStore):
        self.store = store
        self._versions: Dict[Tuple[str, str], int] = {}
        self._docs: Dict[Tuple[str, str], Optional[Dict[str, Any]]] = {}
        self._writes: Dict[Tuple[str, str], Any] = {}
        self._after_commit: List[Callable[[], None]] = []

    def _track(self, collection: str, key: str):
        ref = (collection, str(key))
        if ref not in self._versions:
            doc, version = self.store.read(collection, key)
            self._versions[ref] = version
            self._docs[ref] = doc
        return ref

    def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        """Read a document, seeing this transaction's own buffered writes."""
        ref = self._track(collection, key)
        if ref in self._writes:
            pending = self._writes[ref]
            return None if pending is _DELETED else dict(pending)
        doc = self._docs[ref]
        return dict(doc) if doc is not None else None

    def exists(self, collection: str, key: str) -> bool:
        return self.get(collection, key) is not None

    def set(self, collection: str, key: str, doc: Dict[str, Any]) -> None:
        """Replace (or create) a whole document."""
        ref = self._track(collection, key)
        _, key_attr = self.store.table(collection)
        item = dict(doc)
        item[key_attr] = str(key)
        self._writes[ref] = item

    def update(self, collection: str, key: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Merge fields into the current document, creating it if absent."""
        current = self.get(collection, key) or {}
        current.update(fields)
        self.set(collection, key, current)
        return current

    def delete(self, collection: str, key: str) -> None:
        ref = self._track(collection, key)
        self._writes[ref] = _DELETED

    def after_commit(self, callback: Callable[[], None]) -> None:
        """Register a side effect to run once, only if this attempt commits."""
        self._after_commit.append(callback)

    def _condition(self, ref, version: int) -> Dict[str, Any]:
        _, key_attr = self.store.table(ref[0])
        if version == 0:
            return {
                'ConditionExpression': 'attribute_not_exists(#k)',
                'ExpressionAttributeNames': {'#k': key_attr},
            }
        return {
            'ConditionExpression': '#v = :v',
            'ExpressionAttributeNames': {'#v': VERSION_ATTR},
            'ExpressionAttributeValues': {':v': {'N': str(version)}},
        }

    def _transact_items(self) -> List[Dict[str, Any]]:
        items = []
        for ref, pending in self._writes.items():
            table_name, _ = self.store.table(ref[0])
            version = self._versions[ref]
            if pending is _DELETED:
                if version == 0:
                    continue
                items.append({'Delete': {
                    'TableName': table_name,
                    'Key': self.store.key(*ref),
                    **self._condition(ref, version),
                }})
            else:
                doc = dict(pending)
                doc[VERSION_ATTR] = version + 1
                items.append({'Put': {
                    'TableName': table_name,
                    'Item': serialize_item(doc),
                    **self._condition(ref, version),
                }})

        for ref, version in self._versions.items():
            if ref in self._writes:
                continue
            table_name, _ = self.store.table(ref[0])
            items.append({'ConditionCheck': {
                'TableName': table_name,
                'Key': self.store.key(*ref),
                **self._condition(ref, version),
            }})
        return items

    def commit(self) -> bool:
        """Write everything or nothing. Returns False when a retry is needed."""
        if not self._writes:
            return True

        items = self._transact_items()
        if not any('ConditionCheck' not in item for item in items):
            return True
        if len(items) > MAX_TRANSACT_ITEMS:
            logger.error(f"Transaction touches {len(items)} items, limit is {MAX_TRANSACT_ITEMS}")
            raise Internal('Transaction too large', reason='transaction_too_large')

        try:
            self.store.client.transact_write_items(TransactItems=items)
            return True
        except ClientError as e:
            error_code = e.response['Error']['Code']
            if error_code == 'TransactionConflictException':
                return False
            if error_code == 'TransactionCanceledException':
                # Cancellation reasons correspond to the TransactItems list order
                reasons = [r.get('Code') for r in e.response.get('CancellationReasons', [])]
                if any(code in RETRYABLE_REASONS for code in reasons):
                    return False
            logger.error(f"Transaction commit failed: {e}")
            raise Internal('Store write failed')

    def run_after_commit(self) -> None:
        for callback in self._after_commit:
            try:
                callback()
            except Exception as e:
                logger.error(f"Post-commit side effect failed: {e}")
