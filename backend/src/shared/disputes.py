"""
Dispute Resolver.

Administrative compensating transaction: applies signed coin deltas to the
poster and helper through the ledger, closes the dispute and appends an
audit record, all in one transaction.
"""
import uuid
from typing import Any, Dict, Optional

from .errors import InvalidTransition, NotFound, PermissionDenied
from .events import EventBus
from .ledger import WalletLedger
from .logging import logger
from .models import AuditRecord, Dispute, DisputeStatus, LedgerKind, Task, TaskStatus, load
from .notifications import dispute_resolved_events
from .store import DocumentStore, Transaction
from .utils import now_iso

DISPUTABLE_TASK_STATES = (TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED)


def dispute_entry_key(dispute_id: str, uid: str) -> str:
    return f'dispute:{dispute_id}:{uid}'


class DisputeResolver:

    def __init__(self, store: DocumentStore, ledger: Optional[WalletLedger] = None,
                 bus: Optional[EventBus] = None):
        self.store = store
        self.ledger = ledger or WalletLedger(store)
        self.bus = bus or EventBus()

    def _require_dispute(self, txn: Transaction, dispute_id: str) -> Dispute:
        dispute = load(Dispute, txn.get('disputes', dispute_id))
        if dispute is None:
            raise NotFound(f'Dispute {dispute_id} not found.')
        return dispute

    def open_dispute(self, task_id: str, actor_id: str, reason: str) -> Dispute:
        """Poster or assigned helper raises a dispute over an assigned task."""
        dispute_id = str(uuid.uuid4())

        def body(txn: Transaction):
            task = load(Task, txn.get('tasks', task_id))
            if task is None:
                raise NotFound(f'Task {task_id} not found.')
            if actor_id not in (task.poster_id, task.assigned_helper_id):
                raise PermissionDenied('Only the poster or the assigned helper can open a dispute.')
            if task.status not in DISPUTABLE_TASK_STATES:
                raise InvalidTransition(f'Cannot dispute a task that is {task.status}.')

            dispute = Dispute(
                dispute_id=dispute_id,
                task_id=task_id,
                poster_id=task.poster_id,
                helper_id=task.assigned_helper_id,
                reason=reason,
                opened_by=actor_id,
                created_at=now_iso(),
            )
            txn.set('disputes', dispute_id, dispute.to_item())
            return dispute

        dispute = self.store.run_transaction(body)
        logger.info(f"Dispute {dispute_id} opened on task {task_id} by {actor_id}")
        return dispute

    def resolve(self, dispute_id: str, admin_id: str, resolution: str, poster_delta: int = 0,
                helper_delta: int = 0, notes: str = '') -> Dict[str, Any]:
        """
        Close a dispute and move coins. Each party's delta is its own ledger
        entry keyed ``dispute:<disputeId>:<uid>``, so a retried resolution
        never applies twice. A negative delta larger than the balance fails
        the whole resolution.
        """
        def body(txn: Transaction):
            dispute = self._require_dispute(txn, dispute_id)
            if dispute.status == DisputeStatus.RESOLVED:
                same = (dispute.resolution == resolution and (dispute.poster_delta or 0) == poster_delta
                        and (dispute.helper_delta or 0) == helper_delta)
                if not same:
                    raise InvalidTransition('Dispute is already resolved.')
                return {'disputeId': dispute_id, 'resolution': resolution, 'applied': False}

            for uid, delta in ((dispute.poster_id, poster_delta), (dispute.helper_id, helper_delta)):
                if uid and delta:
                    self.ledger.apply_in(
                        txn, uid, delta, LedgerKind.DISPUTE_ADJUSTMENT, dispute_entry_key(dispute_id, uid),
                        task_id=dispute.task_id, dispute_id=dispute_id, note=notes or None
                    )

            timestamp = now_iso()
            data = dispute.to_item()
            data.update({
                'status': DisputeStatus.RESOLVED,
                'resolution': resolution,
                'posterDelta': poster_delta,
                'helperDelta': helper_delta,
                'notes': notes,
                'resolvedBy': admin_id,
                'resolvedAt': timestamp,
            })
            txn.set('disputes', dispute_id, data)

            audit = AuditRecord(
                audit_id=f'resolve_dispute:{dispute_id}',
                actor=admin_id,
                action='resolve_dispute',
                dispute_id=dispute_id,
                resolution=resolution,
                poster_delta=poster_delta,
                helper_delta=helper_delta,
                notes=notes,
                created_at=timestamp,
            )
            txn.set('audit', audit.audit_id, audit.to_item())
            txn.after_commit(lambda: self.bus.publish_all(dispute_resolved_events(data)))
            return {'disputeId': dispute_id, 'resolution': resolution, 'applied': True}

        result = self.store.run_transaction(body)
        logger.info(f"Dispute {dispute_id} resolved by {admin_id}: {result}")
        return result

    def annotate(self, dispute_id: str, admin_id: str, notes: str) -> AuditRecord:
        """Append an audit note. The dispute itself is left untouched."""
        audit_id = str(uuid.uuid4())

        def body(txn: Transaction):
            self._require_dispute(txn, dispute_id)
            audit = AuditRecord(
                audit_id=audit_id,
                actor=admin_id,
                action='annotate_dispute',
                dispute_id=dispute_id,
                notes=notes,
                created_at=now_iso(),
            )
            txn.set('audit', audit_id, audit.to_item())
            return audit

        return self.store.run_transaction(body)
