"""
Data models and status constants for the marketplace core.
Task lifecycle: draft → listed/open → assigned → in_progress → completed | cancelled
Offer negotiation: pending → negotiating | counter → accepted | rejected | withdrawn

Stored documents are validated with pydantic at every transaction boundary.
Attribute names on the wire and in DynamoDB are camelCase.
"""
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .errors import Internal, InvalidArgument


class TaskStatus:
    """Task lifecycle statuses."""
    DRAFT = 'draft'
    LISTED = 'listed'
    OPEN = 'open'
    ASSIGNED = 'assigned'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    UNDER_REVIEW = 'under_review'

    ALL = (DRAFT, LISTED, OPEN, ASSIGNED, IN_PROGRESS, COMPLETED, CANCELLED, UNDER_REVIEW)
    OPEN_FOR_OFFERS = (LISTED, OPEN)
    WITH_HELPER = (ASSIGNED, IN_PROGRESS, COMPLETED)


class OfferStatus:
    """Offer negotiation statuses."""
    PENDING = 'pending'
    NEGOTIATING = 'negotiating'
    COUNTER = 'counter'
    ACCEPTED = 'accepted'
    REJECTED = 'rejected'
    WITHDRAWN = 'withdrawn'
    AWAITING_TOPUP = 'awaiting_topup'

    ALL = (PENDING, NEGOTIATING, COUNTER, ACCEPTED, REJECTED, WITHDRAWN, AWAITING_TOPUP)
    TERMINAL = (ACCEPTED, REJECTED, WITHDRAWN)


class OfferOrigin:
    """Where an offer came from; direct offers had their fee collected at first contact."""
    PUBLIC = 'public'
    DIRECT = 'direct'


class DisputeStatus:
    """Dispute resolution statuses."""
    OPEN = 'open'
    RESOLVED = 'resolved'


class ProofStatus:
    """Category proof review statuses."""
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'

    ALIASES = {'verified': APPROVED}


class ProofMode:
    ONLINE = 'online'
    PHYSICAL = 'physical'


class LedgerKind:
    """Kinds of balance mutation recorded in the wallet ledger."""
    POST_FEE = 'post_fee'
    COMMISSION = 'commission'
    ACCEPT_FEE = 'accept_fee'
    DIRECT_CONTACT_FEE = 'direct_contact_fee'
    TOPUP = 'topup'
    DISPUTE_ADJUSTMENT = 'dispute_adjustment'

    ALL = (POST_FEE, COMMISSION, ACCEPT_FEE, DIRECT_CONTACT_FEE, TOPUP, DISPUTE_ADJUSTMENT)


class Verdict:
    """Moderation verdicts from the content classifier."""
    SAFE = 'safe'
    UNSAFE = 'unsafe'


# =============================================================================
# Stored records
# =============================================================================

class Record(BaseModel):
    """Base for stored documents. Unknown attributes are carried through untouched."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='allow')

    def to_item(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class User(Record):
    uid: str
    wallet_balance: int = Field(default=0, ge=0)
    allowed_category_ids: List[str] = []
    basic_approved: bool = False
    allowed_updated_at: Optional[str] = None
    updated_at: Optional[str] = None


class Task(Record):
    task_id: str
    poster_id: str
    status: str = TaskStatus.DRAFT
    title: Optional[str] = None
    description: Optional[str] = None
    category_id: Optional[str] = None
    assigned_helper_id: Optional[str] = None
    assigned_offer_id: Optional[str] = None
    final_amount: Optional[int] = None
    posting_fee_txn_id: Optional[str] = None
    moderation_verdict: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @field_validator('status')
    @classmethod
    def _known_status(cls, value):
        if value not in TaskStatus.ALL:
            raise ValueError(f'unknown task status {value!r}')
        return value

    @model_validator(mode='after')
    def _helper_matches_status(self):
        has_helper = self.assigned_helper_id is not None
        if has_helper != (self.status in TaskStatus.WITH_HELPER):
            raise ValueError(f'assignedHelperId inconsistent with status {self.status!r}')
        return self


class Offer(Record):
    offer_id: str
    task_id: str
    helper_id: str
    poster_id: str
    amount: int = Field(gt=0)
    counter_price: Optional[int] = Field(default=None, gt=0)
    helper_counter_price: Optional[int] = Field(default=None, gt=0)
    helper_agreed: bool = False
    status: str = OfferStatus.PENDING
    origin: str = OfferOrigin.PUBLIC
    message: Optional[str] = None
    top_up_deadline: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @field_validator('status')
    @classmethod
    def _known_status(cls, value):
        if value not in OfferStatus.ALL:
            raise ValueError(f'unknown offer status {value!r}')
        return value

    @field_validator('origin')
    @classmethod
    def _known_origin(cls, value):
        if value not in (OfferOrigin.PUBLIC, OfferOrigin.DIRECT):
            raise ValueError(f'unknown offer origin {value!r}')
        return value

    @property
    def is_terminal(self) -> bool:
        return self.status in OfferStatus.TERMINAL


class LedgerEntry(Record):
    entry_id: str  # the idempotency key
    uid: str
    kind: str
    amount: int
    balance_after: int = Field(ge=0)
    task_id: Optional[str] = None
    offer_id: Optional[str] = None
    dispute_id: Optional[str] = None
    note: Optional[str] = None
    created_at: Optional[str] = None

    @field_validator('kind')
    @classmethod
    def _known_kind(cls, value):
        if value not in LedgerKind.ALL:
            raise ValueError(f'unknown ledger kind {value!r}')
        return value

    @field_validator('amount')
    @classmethod
    def _non_zero(cls, value):
        if value == 0:
            raise ValueError('ledger amount must be non-zero')
        return value


class CategoryProof(Record):
    proof_id: str
    uid: str
    category_id: str
    status: str = ProofStatus.PENDING
    mode: str = ProofMode.ONLINE


class BasicDoc(Record):
    uid: str
    status: str = ProofStatus.PENDING


class Dispute(Record):
    dispute_id: str
    task_id: str
    poster_id: str
    helper_id: str
    status: str = DisputeStatus.OPEN
    reason: Optional[str] = None
    opened_by: Optional[str] = None
    resolution: Optional[str] = None
    poster_delta: Optional[int] = None
    helper_delta: Optional[int] = None
    notes: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[str] = None
    created_at: Optional[str] = None


class AuditRecord(Record):
    audit_id: str
    actor: str
    action: str
    dispute_id: Optional[str] = None
    resolution: Optional[str] = None
    poster_delta: int = 0
    helper_delta: int = 0
    notes: str = ''
    created_at: Optional[str] = None


class Report(Record):
    report_id: str
    task_id: str
    reason: Optional[str] = None
    status: str = 'open'
    created_at: Optional[str] = None


class Invite(Record):
    invite_id: str
    poster_id: str
    helper_id: str
    category_id: str
    task_id: Optional[str] = None
    origin: str = OfferOrigin.DIRECT
    status: str = 'sent'
    created_at: Optional[str] = None


class DomainEvent(Record):
    """Immutable record published once per committed domain transaction."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    event_id: str
    type: str
    target_user_id: str
    title: str
    body: str
    correlation_ids: Dict[str, str] = {}
    created_at: Optional[str] = None


# =============================================================================
# Request payloads
# =============================================================================

class Request(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='ignore')


class PublishTaskRequest(Request):
    task_id: str = Field(min_length=1)
    task_payload: Dict[str, Any]


class SubmitOfferRequest(Request):
    task_id: str = Field(min_length=1)
    amount: int = Field(gt=0)
    message: Optional[str] = None


class OfferActionRequest(Request):
    offer_id: str = Field(min_length=1)


class AcceptOfferRequest(OfferActionRequest):
    task_id: Optional[str] = None
    hold_for_top_up: bool = False


class CounterRequest(OfferActionRequest):
    price: int = Field(gt=0)
    note: str = ''


class RejectOfferRequest(OfferActionRequest):
    reason: str = ''


class TopUpRequest(Request):
    amount: float = Field(gt=0, allow_inf_nan=False)
    idempotency_key: Optional[str] = None


class DirectContactRequest(Request):
    helper_id: str = Field(min_length=1)
    category_id: str = Field(min_length=1)
    task_id: Optional[str] = None


class TaskActionRequest(Request):
    task_id: str = Field(min_length=1)


class ModerationRequest(TaskActionRequest):
    verdict: str
    reason: Optional[str] = None

    @field_validator('verdict')
    @classmethod
    def _known_verdict(cls, value):
        value = str(value).lower()
        if value not in (Verdict.SAFE, Verdict.UNSAFE):
            raise ValueError('verdict must be safe or unsafe')
        return value


class ClearModerationRequest(TaskActionRequest):
    outcome: str

    @field_validator('outcome')
    @classmethod
    def _known_outcome(cls, value):
        if value not in (TaskStatus.OPEN, TaskStatus.CANCELLED):
            raise ValueError('outcome must be open or cancelled')
        return value


class StartDisputeRequest(TaskActionRequest):
    reason: str = Field(min_length=1)


class ResolveDisputeRequest(Request):
    dispute_id: str = Field(min_length=1)
    resolution: str = Field(min_length=1)
    poster_delta: int = 0
    helper_delta: int = 0
    notes: str = ''


class AnnotateDisputeRequest(Request):
    dispute_id: str = Field(min_length=1)
    notes: str = Field(min_length=1)


class RecomputeRequest(Request):
    uid: Optional[str] = None


RecordT = TypeVar('RecordT', bound=BaseModel)


def load(model: Type[RecordT], doc: Optional[Dict[str, Any]]) -> Optional[RecordT]:
    """Validate a stored document. A corrupted document is an internal failure."""
    if doc is None:
        return None
    try:
        return model.model_validate(doc)
    except ValidationError as e:
        raise Internal(f'Stored {model.__name__} failed validation: {e.errors()[0]["msg"]}')


def parse_request(model: Type[RecordT], data: Any) -> RecordT:
    """Validate a caller payload. Missing or malformed fields are the caller's fault."""
    try:
        return model.model_validate(data or {})
    except ValidationError as e:
        first = e.errors()[0]
        field = '.'.join(str(p) for p in first.get('loc', ()))
        raise InvalidArgument(f'{field}: {first["msg"]}' if field else first['msg'])
