"""
Wiring for Lambda handlers: one set of components per invocation, sharing a
store, a ledger and an event bus.
"""
from typing import NamedTuple, Optional

from .config import config as default_config
from .contacts import DirectContacts
from .disputes import DisputeResolver
from .eligibility import CategoryEligibility
from .events import EventBus, default_bus
from .ledger import WalletLedger
from .offers import OfferStateMachine
from .store import DocumentStore
from .tasks import TaskLifecycle


class Services(NamedTuple):
    store: DocumentStore
    bus: EventBus
    ledger: WalletLedger
    tasks: TaskLifecycle
    offers: OfferStateMachine
    contacts: DirectContacts
    eligibility: CategoryEligibility
    disputes: DisputeResolver


def build_services(store: Optional[DocumentStore] = None, bus: Optional[EventBus] = None,
                   cfg=default_config) -> Services:
    store = store or DocumentStore.from_config(cfg)
    bus = bus if bus is not None else default_bus(cfg)
    ledger = WalletLedger(store)
    tasks = TaskLifecycle(store, ledger, bus, cfg)
    return Services(
        store=store,
        bus=bus,
        ledger=ledger,
        tasks=tasks,
        offers=OfferStateMachine(store, ledger, tasks, bus, cfg),
        contacts=DirectContacts(store, ledger, bus, cfg),
        eligibility=CategoryEligibility(store, cfg),
        disputes=DisputeResolver(store, ledger, bus),
    )
