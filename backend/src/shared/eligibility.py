"""
Category Eligibility Engine.

A user's ``allowedCategoryIds`` is a pure function of their approved category
proofs and whether their basic documents are approved (physical categories
need both). Recomputing always derives from current state and never
accumulates, so duplicate or out-of-order triggers converge.
"""
from typing import Any, Dict, Iterable, List, Optional

from .config import config as default_config
from .errors import UserNotFound
from .logging import logger
from .models import ProofMode, ProofStatus, User, load
from .store import DocumentStore, Transaction
from .utils import now_iso


def normalize_status(raw: Optional[str]) -> str:
    """Case-insensitive status with ``verified`` read as ``approved``."""
    status = str(raw or '').strip().lower()
    return ProofStatus.ALIASES.get(status, status)


def compute_allowed(proofs: Iterable[Dict[str, Any]], basic_approved: bool) -> List[str]:
    allowed = set()
    for proof in proofs:
        if normalize_status(proof.get('status')) != ProofStatus.APPROVED:
            continue
        category_id = proof.get('categoryId')
        if not category_id:
            continue
        mode = str(proof.get('mode') or ProofMode.ONLINE).lower()
        if mode == ProofMode.PHYSICAL and not basic_approved:
            # Physical categories require basic docs approved
            continue
        allowed.add(str(category_id))
    return sorted(allowed)


class CategoryEligibility:

    def __init__(self, store: DocumentStore, cfg=default_config):
        self.store = store
        self.config = cfg

    def recompute_in(self, txn: Transaction, uid: str,
                     proof_changes: Optional[Dict[str, Optional[Dict[str, Any]]]] = None) -> Dict[str, Any]:
        """
        Derive and store ``uid``'s allowed categories.

        Proofs come from the uid index, which is eventually consistent and is
        not part of the read set. ``proof_changes`` maps proofId to the newest
        known image (``None`` for a deleted proof) and overrides the index, so a
        stream trigger sees the write that fired it.
        """
        user = load(User, txn.get('users', uid))
        if user is None:
            raise UserNotFound(f'User {uid} not found')

        basic = txn.get('basic_docs', uid)
        if basic is not None:
            basic_approved = normalize_status(basic.get('status')) == ProofStatus.APPROVED
        else:
            basic_approved = user.basic_approved

        proofs = {
            proof.get('proofId'): proof
            for proof in self.store.query('category_proofs', self.config.PROOFS_USER_INDEX, 'uid', uid)
        }
        for proof_id, image in (proof_changes or {}).items():
            if image is None:
                proofs.pop(proof_id, None)
            else:
                proofs[proof_id] = image
        allowed = compute_allowed(proofs.values(), basic_approved)

        changed = allowed != sorted(user.allowed_category_ids) or basic_approved != user.basic_approved
        if changed:
            user.allowed_category_ids = allowed
            user.basic_approved = basic_approved
            user.allowed_updated_at = now_iso()
            txn.set('users', uid, user.to_item())
        return {'uid': uid, 'allowed': allowed, 'basicApproved': basic_approved, 'changed': changed}

    def recompute(self, uid: str, proof_changes=None) -> Dict[str, Any]:
        result = self.store.run_transaction(lambda txn: self.recompute_in(txn, uid, proof_changes))
        logger.info(f"Recomputed allowed categories for {uid}: {len(result['allowed'])} "
                    f"({'changed' if result['changed'] else 'unchanged'})")
        return result
