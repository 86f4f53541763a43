"""
Direct contact: a poster invites a specific helper instead of waiting for
public offers. The poster pays the contact fee once per (task, poster,
helper, category); offers that later arise from the invite are ``direct``
and skip the helper's accept fee.
"""
from typing import Any, Dict, Optional

from .config import config as default_config
from .errors import NotEligible, NotFound, PermissionDenied, UserNotFound
from .events import EventBus, make_event
from .ledger import WalletLedger
from .models import Invite, LedgerKind, OfferOrigin, Task, User, load
from .store import DocumentStore, Transaction
from .utils import now_iso


def invite_key(task_id: Optional[str], poster_id: str, helper_id: str, category_id: str) -> str:
    return f'dm:{task_id or "none"}:{poster_id}:{helper_id}:{category_id}'


class DirectContacts:

    def __init__(self, store: DocumentStore, ledger: Optional[WalletLedger] = None,
                 bus: Optional[EventBus] = None, cfg=default_config):
        self.store = store
        self.ledger = ledger or WalletLedger(store)
        self.bus = bus or EventBus()
        self.config = cfg

    def charge_direct_contact_fee(self, poster_id: str, helper_id: str, category_id: str,
                                  task_id: Optional[str] = None) -> Dict[str, Any]:
        key = invite_key(task_id, poster_id, helper_id, category_id)
        fee = self.config.DIRECT_CONTACT_FEE

        def body(txn: Transaction):
            poster = load(User, txn.get('users', poster_id))
            if poster is None:
                raise UserNotFound('Poster profile not found.')
            helper = load(User, txn.get('users', helper_id))
            if helper is None:
                raise UserNotFound('Helper profile not found.')

            if txn.exists('invites', key):
                return {'charged': False, 'inviteId': key, 'balance': poster.wallet_balance}

            if category_id not in helper.allowed_category_ids:
                raise NotEligible('Helper is not eligible for this category.')

            if task_id:
                task = load(Task, txn.get('tasks', task_id))
                if task is None:
                    raise NotFound(f'Task {task_id} not found.')
                if task.poster_id != poster_id:
                    raise PermissionDenied('Not your task')

            balance = poster.wallet_balance
            if fee > 0:
                balance = self.ledger.charge_in(
                    txn, poster_id, fee, LedgerKind.DIRECT_CONTACT_FEE, key,
                    task_id=task_id, note=f'helper:{helper_id}'
                ).balance

            invite = Invite(
                invite_id=key,
                poster_id=poster_id,
                helper_id=helper_id,
                category_id=category_id,
                task_id=task_id,
                origin=OfferOrigin.DIRECT,
                created_at=now_iso(),
            )
            txn.set('invites', key, invite.to_item())
            txn.after_commit(lambda: self.bus.publish(make_event(
                'invite.received', helper_id, 'New invitation',
                'A poster wants to work with you directly.',
                inviteId=key, taskId=task_id
            )))
            return {'charged': fee > 0, 'inviteId': key, 'balance': balance}

        return self.store.run_transaction(body)
