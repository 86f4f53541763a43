"""
Category Proof Trigger.
Triggered by DynamoDB Streams on CategoryProofsTable and BasicDocsTable.
Recomputes allowed categories for every user touched by the batch.
"""
import traceback
from typing import Optional

from shared.errors import UserNotFound
from shared.logging import logger
from shared.services import build_services
from shared.store import stream_images


def affected_uid(record) -> Optional[str]:
    before, after = stream_images(record)
    for doc in (after, before):
        if doc:
            uid = doc.get('uid') or doc.get('userId')
            if uid:
                return str(uid)
    return None


def proof_change(record):
    """(proofId, newest image or None) for a proof record, None for basic docs."""
    before, after = stream_images(record)
    proof_id = (after or before or {}).get('proofId')
    if not proof_id:
        return None
    return str(proof_id), after


def handler(event, context, store=None, bus=None):
    """
    Handler triggered by proof and basic-doc writes, deletes included.
    Each user is recomputed once per batch, with the batch's proof images
    layered over the uid index since the index may not show them yet.
    Failures other than an unknown user are raised so the batch is retried.
    """
    if 'Records' not in event:
        return {'message': 'No records to process'}

    changes = {}
    for record in event['Records']:
        uid = affected_uid(record)
        if not uid:
            logger.warning("Proof stream record without uid")
            continue
        user_changes = changes.setdefault(uid, {})
        change = proof_change(record)
        if change:
            # Records arrive in write order, so the last image wins
            proof_id, image = change
            user_changes[proof_id] = image

    services = build_services(store, bus)
    recomputed = 0
    for uid, proof_changes in changes.items():
        try:
            services.eligibility.recompute(uid, proof_changes)
            recomputed += 1
        except UserNotFound:
            logger.warning(f"Skipping recompute for unknown user {uid}")
        except Exception as e:
            logger.error(f"Error recomputing {uid}: {e}\n{traceback.format_exc()}")
            raise

    return {'message': f'Recomputed {recomputed} users'}
