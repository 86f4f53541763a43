"""
Task Lifecycle Manager.

Owns the task status field and the posting fee. Lifecycle:
draft → listed/open → assigned → in_progress → completed | cancelled,
with listed/open → under_review (moderation) → open | cancelled.
"""
from typing import Any, Dict, Optional, Tuple

from .config import config as default_config
from .errors import (
    InsufficientFunds, InvalidTransition, NotFound, PermissionDenied, UserNotFound
)
from .events import EventBus, make_event
from .ledger import WalletLedger
from .logging import logger
from .models import LedgerKind, Report, Task, TaskStatus, User, Verdict, load, parse_request
from .notifications import task_under_review_event
from .store import VERSION_ATTR, DocumentStore, Transaction
from .utils import now_iso

# Allowed status edges
TASK_TRANSITIONS = {
    TaskStatus.DRAFT: (TaskStatus.LISTED, TaskStatus.CANCELLED),
    TaskStatus.LISTED: (TaskStatus.ASSIGNED, TaskStatus.UNDER_REVIEW, TaskStatus.CANCELLED),
    TaskStatus.OPEN: (TaskStatus.ASSIGNED, TaskStatus.UNDER_REVIEW, TaskStatus.CANCELLED),
    TaskStatus.UNDER_REVIEW: (TaskStatus.OPEN, TaskStatus.CANCELLED),
    TaskStatus.ASSIGNED: (TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED),
    TaskStatus.IN_PROGRESS: (TaskStatus.COMPLETED, TaskStatus.CANCELLED),
}

# Fields a poster may not set through the publish payload
PROTECTED_FIELDS = (
    'task_id', 'poster_id', 'status', 'assigned_helper_id', 'assigned_offer_id', 'final_amount',
    'posting_fee_txn_id', 'moderation_verdict', 'created_at', 'updated_at',
)

# Task accepts both field names and aliases, so both spellings are dropped
PROTECTED_KEYS = frozenset(
    list(PROTECTED_FIELDS)
    + [Task.model_fields[name].alias or name for name in PROTECTED_FIELDS]
    + [VERSION_ATTR, 'assignedAt', 'startedAt', 'completedAt', 'cancelledAt']
)

PLATFORM_SETTINGS_KEY = 'platform'


def post_fee_key(task_id: str) -> str:
    return f'post_fee:{task_id}'


def can_transition(current: str, target: str) -> bool:
    return target in TASK_TRANSITIONS.get(current, ())


class TaskLifecycle:
    """Publish, moderation and progress transitions for tasks."""

    def __init__(self, store: DocumentStore, ledger: Optional[WalletLedger] = None,
                 bus: Optional[EventBus] = None, cfg=default_config):
        self.store = store
        self.ledger = ledger or WalletLedger(store)
        self.bus = bus or EventBus()
        self.config = cfg

    # ------------------------------------------------------------------
    # helpers shared with the offer state machine
    # ------------------------------------------------------------------

    def require_task(self, txn: Transaction, task_id: str) -> Task:
        task = load(Task, txn.get('tasks', task_id))
        if task is None:
            raise NotFound(f'Task {task_id} not found.')
        return task

    def posting_terms(self, txn: Transaction) -> Tuple[int, int]:
        """
        (minimum balance, posting fee). Platform settings may raise the minimum
        balance but never below the configured hard floor.
        """
        settings = txn.get('settings', PLATFORM_SETTINGS_KEY) or {}
        posting = settings.get('posting') or {}
        min_balance = max(int(posting.get('minBalanceCoins', self.config.POST_MIN_BALANCE)),
                          self.config.POST_MIN_BALANCE)
        post_fee = max(int(posting.get('postFeeCoins', self.config.POST_FEE)), 0)
        return min_balance, post_fee

    def transition_in(self, txn: Transaction, task: Task, target: str, **fields) -> Task:
        if not can_transition(task.status, target):
            raise InvalidTransition(f'Task cannot move from {task.status} to {target}.')
        data = task.to_item()
        data.update({k: v for k, v in fields.items()})
        data['status'] = target
        data['updatedAt'] = now_iso()
        if target not in TaskStatus.WITH_HELPER:
            data.pop('assignedHelperId', None)
        updated = load(Task, data)
        txn.set('tasks', task.task_id, updated.to_item())
        return updated

    def assign_in(self, txn: Transaction, task: Task, helper_id: str, offer_id: str, amount: int) -> Task:
        """Move an open task to assigned. Only called from inside an acceptance."""
        return self.transition_in(
            txn, task, TaskStatus.ASSIGNED,
            assignedHelperId=helper_id,
            assignedOfferId=offer_id,
            finalAmount=amount,
            assignedAt=now_iso(),
        )

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------

    def publish(self, task_id: str, poster_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create or merge the task as listed and charge the posting fee once.

        Re-publishing an already listed and charged task is a no-op.
        """
        fee_key = post_fee_key(task_id)

        def body(txn: Transaction):
            existing = load(Task, txn.get('tasks', task_id))
            if existing and existing.poster_id != poster_id:
                raise PermissionDenied('Not your task')

            charged = self.ledger.already_applied(txn, fee_key)
            if existing and existing.status in TaskStatus.OPEN_FOR_OFFERS and charged:
                return {'published': False, 'taskId': task_id, 'status': existing.status,
                        'balance': charged.balance_after}
            if existing and existing.status not in (TaskStatus.DRAFT,) + TaskStatus.OPEN_FOR_OFFERS:
                raise InvalidTransition(f'Task is {existing.status} and cannot be published.')

            poster = load(User, txn.get('users', poster_id))
            if poster is None:
                raise UserNotFound(f'User {poster_id} not found')

            min_balance, post_fee = self.posting_terms(txn)
            if not charged and poster.wallet_balance < min_balance + post_fee:
                raise InsufficientFunds('Insufficient funds to post the task and pay the fee.')

            timestamp = now_iso()
            data = existing.to_item() if existing else {'createdAt': timestamp}
            data.update({k: v for k, v in (payload or {}).items() if k not in PROTECTED_KEYS})
            data.update({
                'taskId': task_id,
                'posterId': poster_id,
                'status': TaskStatus.LISTED,
                'updatedAt': timestamp,
            })
            if post_fee > 0 or charged:
                data['postingFeeTxnId'] = fee_key
            task = parse_request(Task, data)
            txn.set('tasks', task_id, task.to_item())

            balance = poster.wallet_balance
            if post_fee > 0 and not charged:
                balance = self.ledger.charge_in(
                    txn, poster_id, post_fee, LedgerKind.POST_FEE, fee_key, task_id=task_id
                ).balance
            return {'published': True, 'taskId': task_id, 'status': task.status, 'balance': balance}

        result = self.store.run_transaction(body)
        logger.info(f"Task {task_id} publish by {poster_id}: {result}")
        return result

    def charge_posting_fee(self, task_id: str) -> str:
        """
        Safety net for tasks created without going through ``publish``.

        Charges the posting fee if it was never charged; a poster who cannot
        pay loses the task rather than leaving it listed for free.
        """
        fee_key = post_fee_key(task_id)

        def body(txn: Transaction) -> str:
            task = load(Task, txn.get('tasks', task_id))
            if task is None:
                return 'missing'
            if self.ledger.already_applied(txn, fee_key):
                return 'already_charged'
            _, post_fee = self.posting_terms(txn)
            if post_fee <= 0:
                return 'no_fee'

            poster = load(User, txn.get('users', task.poster_id))
            if poster is None or poster.wallet_balance < post_fee:
                txn.delete('tasks', task_id)
                return 'deleted'

            self.ledger.charge_in(txn, task.poster_id, post_fee, LedgerKind.POST_FEE, fee_key,
                                  task_id=task_id)
            txn.update('tasks', task_id, {'postingFeeTxnId': fee_key})
            return 'charged'

        outcome = self.store.run_transaction(body)
        logger.info(f"Posting fee safety net for task {task_id}: {outcome}")
        return outcome

    def moderate(self, task_id: str, verdict: str, reason: Optional[str] = None) -> Dict[str, Any]:
        """Record a classifier verdict. Unsafe listed tasks go under review with a report."""
        verdict = str(verdict).lower()

        def body(txn: Transaction):
            task = self.require_task(txn, task_id)
            if verdict != Verdict.UNSAFE:
                txn.update('tasks', task_id, {'moderationVerdict': verdict})
                return {'taskId': task_id, 'status': task.status, 'verdict': verdict}

            report = Report(report_id=f'moderation:{task_id}', task_id=task_id,
                            reason=reason or 'unsafe content', created_at=now_iso())
            if not txn.exists('reports', report.report_id):
                txn.set('reports', report.report_id, report.to_item())

            if task.status in TaskStatus.OPEN_FOR_OFFERS:
                task = self.transition_in(txn, task, TaskStatus.UNDER_REVIEW, moderationVerdict=verdict)
                item = task.to_item()
                txn.after_commit(lambda: self.bus.publish(task_under_review_event(item)))
            else:
                txn.update('tasks', task_id, {'moderationVerdict': verdict})
            return {'taskId': task_id, 'status': task.status, 'verdict': verdict}

        return self.store.run_transaction(body)

    def clear_moderation(self, task_id: str, outcome: str) -> Dict[str, Any]:
        """Admin decision on a task under review: reopen it or cancel it."""
        def body(txn: Transaction):
            task = self.require_task(txn, task_id)
            if task.status != TaskStatus.UNDER_REVIEW:
                raise InvalidTransition(f'Task is {task.status}, not under review.')
            task = self.transition_in(txn, task, outcome)
            return {'taskId': task_id, 'status': task.status}

        return self.store.run_transaction(body)

    def start(self, task_id: str, actor_id: str) -> Dict[str, Any]:
        """assigned → in_progress, by the poster or the assigned helper."""
        def body(txn: Transaction):
            task = self.require_task(txn, task_id)
            if actor_id not in (task.poster_id, task.assigned_helper_id):
                raise PermissionDenied('Only the poster or the assigned helper can start this task.')
            task = self.transition_in(txn, task, TaskStatus.IN_PROGRESS, startedAt=now_iso())
            return {'taskId': task_id, 'status': task.status}

        return self.store.run_transaction(body)

    def complete(self, task_id: str, actor_id: str) -> Dict[str, Any]:
        """in_progress → completed, by the poster."""
        def body(txn: Transaction):
            task = self.require_task(txn, task_id)
            if actor_id != task.poster_id:
                raise PermissionDenied('Not your task')
            task = self.transition_in(txn, task, TaskStatus.COMPLETED, completedAt=now_iso())
            helper_id = task.assigned_helper_id
            txn.after_commit(lambda: self.bus.publish(make_event(
                'task.completed', helper_id, 'Task completed',
                f'The poster marked “{task.title or task_id}” as completed.',
                version=task.updated_at, taskId=task_id
            )))
            return {'taskId': task_id, 'status': task.status}

        return self.store.run_transaction(body)

    def cancel(self, task_id: str, actor_id: str) -> Dict[str, Any]:
        """Poster cancels the task from any non-final state."""
        def body(txn: Transaction):
            task = self.require_task(txn, task_id)
            if actor_id != task.poster_id:
                raise PermissionDenied('Not your task')
            helper_id = task.assigned_helper_id
            task = self.transition_in(txn, task, TaskStatus.CANCELLED, cancelledAt=now_iso())
            if helper_id:
                txn.after_commit(lambda: self.bus.publish(make_event(
                    'task.cancelled', helper_id, 'Task cancelled',
                    f'The poster cancelled “{task.title or task_id}”.',
                    version=task.updated_at, taskId=task_id
                )))
            return {'taskId': task_id, 'status': task.status}

        return self.store.run_transaction(body)
