"""
SQS utility functions for message operations.
"""
import boto3
import json
from typing import Any, Dict

from .config import config
from .logging import logger


def build_client(cfg=config):
    return boto3.client('sqs', region_name=cfg.AWS_REGION)


def send_message(sqs, queue_url: str, message_body: Dict[str, Any]) -> bool:
    """
    Send a single message to SQS queue.

    Args:
        sqs: boto3 SQS client
        queue_url: SQS queue URL
        message_body: Message body as dict (will be JSON serialized)

    Returns:
        True if sent successfully, False otherwise
    """
    try:
        sqs.send_message(
            QueueUrl=queue_url,
            MessageBody=json.dumps(message_body, default=str)
        )
        logger.info(f"Message sent to {queue_url}")
        return True
    except Exception as e:
        logger.error(f"Error sending message to SQS: {e}")
        return False
