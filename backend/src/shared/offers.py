"""
Offer Negotiation State Machine.

    pending     --helper_counter-->   negotiating
    pending     --propose_counter-->  counter
    negotiating --propose_counter-->  counter
    counter     --propose_counter-->  counter        (resets helperAgreed)
    counter     --agree_to_counter--> counter        (helperAgreed = true)
    pending     --withdraw-->         withdrawn
    counter     --reject-->           rejected
    negotiating --reject-->           rejected
    pending | negotiating | counter(agreed) | awaiting_topup --accept--> accepted
    any accept source --accept, helper short of coins, held--> awaiting_topup

Every transition is one store transaction that re-reads the offer and its
task. The task is the authority on who the poster is; the offer's own
``posterId`` is a cache that each transition refreshes from the task.
"""
import uuid
from datetime import timedelta
from typing import Any, Callable, Dict, NamedTuple, Optional, Tuple

from .config import config as default_config
from .contacts import invite_key
from .errors import (
    FailedPrecondition, InsufficientFunds, InvalidArgument, InvalidTransition,
    NotEligible, NotFound, PermissionDenied, TaskNotOpen, UserNotFound
)
from .events import EventBus
from .ledger import WalletLedger
from .logging import logger
from .models import LedgerKind, Offer, OfferOrigin, OfferStatus, Task, TaskStatus, User, load, parse_request
from .notifications import offer_change_events
from .store import DocumentStore, Transaction
from .tasks import TaskLifecycle
from .utils import now_iso, parse_iso, utc_now

POSTER = 'poster'
HELPER = 'helper'


class Edge(NamedTuple):
    actor: str
    sources: Tuple[str, ...]


OFFER_TRANSITIONS = {
    'helper_counter': Edge(HELPER, (OfferStatus.PENDING, OfferStatus.NEGOTIATING)),
    'propose_counter': Edge(POSTER, (OfferStatus.PENDING, OfferStatus.NEGOTIATING, OfferStatus.COUNTER)),
    'agree_to_counter': Edge(HELPER, (OfferStatus.COUNTER,)),
    'withdraw': Edge(HELPER, (OfferStatus.PENDING,)),
    'reject': Edge(POSTER, (OfferStatus.COUNTER, OfferStatus.NEGOTIATING)),
    'accept': Edge(POSTER, (OfferStatus.PENDING, OfferStatus.NEGOTIATING, OfferStatus.COUNTER,
                            OfferStatus.AWAITING_TOPUP)),
}

# Outcomes of an accept attempt
ACCEPTED = 'accepted'
AWAITING_TOPUP = 'awaiting_topup'
TOPUP_EXPIRED = 'awaiting_topup_expired'


def accept_fee_key(offer_id: str) -> str:
    return f'accept:{offer_id}'


def agreed_price(offer: Offer, status: Optional[str] = None) -> int:
    """The price both sides have settled on when the poster accepts."""
    status = status or offer.status
    if status == OfferStatus.COUNTER and offer.counter_price:
        return offer.counter_price
    if status == OfferStatus.NEGOTIATING and offer.helper_counter_price:
        return offer.helper_counter_price
    return offer.amount


class OfferStateMachine:
    """Bilateral negotiation over one offer, and acceptance of it."""

    def __init__(self, store: DocumentStore, ledger: Optional[WalletLedger] = None,
                 tasks: Optional[TaskLifecycle] = None, bus: Optional[EventBus] = None,
                 cfg=default_config):
        self.store = store
        self.config = cfg
        self.bus = bus or EventBus()
        self.ledger = ledger or WalletLedger(store)
        self.tasks = tasks or TaskLifecycle(store, self.ledger, self.bus, cfg)

    def _require_offer(self, txn: Transaction, offer_id: str) -> Offer:
        offer = load(Offer, txn.get('offers', offer_id))
        if offer is None:
            raise NotFound(f'Offer {offer_id} not found.')
        return offer

    def _transition(
        self,
        action: str,
        offer_id: str,
        actor_id: str,
        apply: Callable[[Transaction, Offer, Task, Dict[str, Any]], Any],
        task_id: Optional[str] = None
    ):
        edge = OFFER_TRANSITIONS[action]

        def body(txn: Transaction):
            offer = self._require_offer(txn, offer_id)
            if task_id and offer.task_id != task_id:
                raise NotFound(f'Offer {offer_id} does not belong to task {task_id}.')
            task = self.tasks.require_task(txn, offer.task_id)

            # Terminal offers never move, whoever asks
            if offer.is_terminal:
                raise InvalidTransition(f'Offer is already {offer.status}.')

            if edge.actor == POSTER and actor_id != task.poster_id:
                raise PermissionDenied('Not your task')
            if edge.actor == HELPER and actor_id != offer.helper_id:
                raise PermissionDenied('Not your offer')

            if offer.status not in edge.sources:
                raise InvalidTransition(f'Cannot {action.replace("_", " ")} an offer that is {offer.status}.')

            before = offer.to_item()
            data = dict(before)
            data['posterId'] = task.poster_id
            outcome = apply(txn, offer, task, data)
            data['updatedAt'] = now_iso()

            updated = parse_request(Offer, data)
            after = updated.to_item()
            txn.set('offers', offer_id, after)
            txn.after_commit(lambda: self.bus.publish_all(offer_change_events(before, after, task.title)))
            return outcome, updated

        outcome, offer = self.store.run_transaction(body)
        logger.info(f"Offer {offer_id} {action} by {actor_id}: {offer.status}")
        return outcome, offer

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------

    def submit_offer(self, task_id: str, helper_id: str, amount: int, message: Optional[str] = None,
                     offer_id: Optional[str] = None) -> Offer:
        """Helper makes an offer on an open task."""
        offer_id = offer_id or str(uuid.uuid4())

        def body(txn: Transaction):
            existing = load(Offer, txn.get('offers', offer_id))
            if existing:
                if existing.helper_id != helper_id or existing.task_id != task_id:
                    raise InvalidArgument(f'Offer id {offer_id} is already in use.')
                return existing

            task = self.tasks.require_task(txn, task_id)
            if task.status not in TaskStatus.OPEN_FOR_OFFERS:
                raise TaskNotOpen('This task is no longer open for offers.')
            if helper_id == task.poster_id:
                raise PermissionDenied('You cannot make an offer on your own task.')
            if load(User, txn.get('users', helper_id)) is None:
                raise UserNotFound(f'User {helper_id} not found')

            origin = OfferOrigin.PUBLIC
            if task.category_id and txn.exists('invites', invite_key(task_id, task.poster_id, helper_id,
                                                                     task.category_id)):
                origin = OfferOrigin.DIRECT

            timestamp = now_iso()
            offer = Offer(
                offer_id=offer_id,
                task_id=task_id,
                helper_id=helper_id,
                poster_id=task.poster_id,
                amount=amount,
                message=message,
                origin=origin,
                status=OfferStatus.PENDING,
                created_at=timestamp,
                updated_at=timestamp,
            )
            after = offer.to_item()
            txn.set('offers', offer_id, after)
            txn.after_commit(lambda: self.bus.publish_all(offer_change_events(None, after, task.title)))
            return offer

        offer = self.store.run_transaction(body)
        logger.info(f"Offer {offer_id} on task {task_id} by {helper_id}: {offer.status}")
        return offer

    def helper_counter(self, offer_id: str, helper_id: str, price: int) -> Offer:
        def apply(txn, offer, task, data):
            data['status'] = OfferStatus.NEGOTIATING
            data['helperCounterPrice'] = price

        return self._transition('helper_counter', offer_id, helper_id, apply)[1]

    def propose_counter(self, offer_id: str, poster_id: str, price: int, note: str = '') -> Offer:
        def apply(txn, offer, task, data):
            data['status'] = OfferStatus.COUNTER
            data['counterPrice'] = price
            data['counterNote'] = note
            data['counterBy'] = poster_id
            data['helperAgreed'] = False

        return self._transition('propose_counter', offer_id, poster_id, apply)[1]

    def agree_to_counter(self, offer_id: str, helper_id: str) -> Offer:
        def apply(txn, offer, task, data):
            data['helperAgreed'] = True
            data['agreedAt'] = now_iso()

        return self._transition('agree_to_counter', offer_id, helper_id, apply)[1]

    def reject_offer(self, offer_id: str, poster_id: str, reason: str = '') -> Offer:
        def apply(txn, offer, task, data):
            data['status'] = OfferStatus.REJECTED
            data['rejectReason'] = reason
            data['rejectedBy'] = poster_id

        return self._transition('reject', offer_id, poster_id, apply)[1]

    def withdraw_offer(self, offer_id: str, helper_id: str) -> Offer:
        def apply(txn, offer, task, data):
            data['status'] = OfferStatus.WITHDRAWN

        return self._transition('withdraw', offer_id, helper_id, apply)[1]

    def accept_offer(self, offer_id: str, poster_id: str, task_id: Optional[str] = None,
                     hold_for_top_up: bool = False) -> Dict[str, Any]:
        """
        Accept an offer: eligibility check, helper accept fee and task
        assignment commit together or not at all.

        A helper short of coins fails the call with insufficient_funds, or,
        with ``hold_for_top_up``, parks the offer in awaiting_topup until the
        grace deadline.
        """
        def apply(txn, offer, task, data):
            if offer.status == OfferStatus.COUNTER and not offer.helper_agreed:
                raise InvalidTransition('Helper has not agreed to the counter yet.')

            if offer.status == OfferStatus.AWAITING_TOPUP and offer.top_up_deadline:
                if parse_iso(offer.top_up_deadline) <= utc_now():
                    data['status'] = data.pop('heldStatus', None) or OfferStatus.PENDING
                    data.pop('topUpDeadline', None)
                    return TOPUP_EXPIRED

            if task.status not in TaskStatus.OPEN_FOR_OFFERS:
                raise TaskNotOpen('This task is no longer open for offers.')

            helper = load(User, txn.get('users', offer.helper_id))
            if helper is None:
                raise UserNotFound(f'Helper {offer.helper_id} not found.')
            if not task.category_id or task.category_id not in helper.allowed_category_ids:
                raise NotEligible('Helper is not verified for this task category.')

            fee = self.config.HELPER_ACCEPT_FEE
            if offer.origin != OfferOrigin.DIRECT and fee > 0:
                try:
                    self.ledger.charge_in(
                        txn, offer.helper_id, fee, LedgerKind.ACCEPT_FEE, accept_fee_key(offer.offer_id),
                        task_id=task.task_id, offer_id=offer.offer_id
                    )
                except InsufficientFunds:
                    if not hold_for_top_up:
                        raise
                    if offer.status != OfferStatus.AWAITING_TOPUP:
                        deadline = utc_now() + timedelta(minutes=self.config.TOPUP_GRACE_MINUTES)
                        data['status'] = OfferStatus.AWAITING_TOPUP
                        data['topUpDeadline'] = deadline.isoformat()
                        data['heldStatus'] = offer.status
                    return AWAITING_TOPUP

            price = agreed_price(offer, data.get('heldStatus'))
            self.tasks.assign_in(txn, task, offer.helper_id, offer.offer_id, price)
            data['status'] = OfferStatus.ACCEPTED
            data['acceptedAt'] = now_iso()
            data['finalAmount'] = price
            data.pop('topUpDeadline', None)
            data.pop('heldStatus', None)
            return ACCEPTED

        outcome, offer = self._transition('accept', offer_id, poster_id, apply, task_id=task_id)
        if outcome == TOPUP_EXPIRED:
            raise FailedPrecondition('The top-up window has expired, please accept again.',
                                     reason=TOPUP_EXPIRED)
        return {
            'outcome': outcome,
            'offerId': offer.offer_id,
            'taskId': offer.task_id,
            'helperId': offer.helper_id,
            'status': offer.status,
            'topUpDeadline': offer.top_up_deadline,
        }
