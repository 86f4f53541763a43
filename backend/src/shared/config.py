"""
Configuration module for Lambda handlers.
Loads all environment variables needed by the marketplace core.
"""
import os


class Config:
    """Centralized configuration from environment variables."""

    # AWS Region
    AWS_REGION = os.environ.get('AWS_REGION', 'us-east-1')

    # DynamoDB Tables
    USERS_TABLE = os.environ.get('USERS_TABLE', 'users')
    TASKS_TABLE = os.environ.get('TASKS_TABLE', 'tasks')
    OFFERS_TABLE = os.environ.get('OFFERS_TABLE', 'offers')
    LEDGER_TABLE = os.environ.get('LEDGER_TABLE', 'wallet_ledger')
    CATEGORY_PROOFS_TABLE = os.environ.get('CATEGORY_PROOFS_TABLE', 'category_proofs')
    BASIC_DOCS_TABLE = os.environ.get('BASIC_DOCS_TABLE', 'basic_docs')
    DISPUTES_TABLE = os.environ.get('DISPUTES_TABLE', 'disputes')
    AUDIT_TABLE = os.environ.get('AUDIT_TABLE', 'admin_audit')
    REPORTS_TABLE = os.environ.get('REPORTS_TABLE', 'reports')
    INVITES_TABLE = os.environ.get('INVITES_TABLE', 'invites')
    SETTINGS_TABLE = os.environ.get('SETTINGS_TABLE', 'settings')

    # Secondary indexes
    LEDGER_USER_INDEX = os.environ.get('LEDGER_USER_INDEX', 'uid-index')
    PROOFS_USER_INDEX = os.environ.get('PROOFS_USER_INDEX', 'uid-index')

    # SQS Queues
    NOTIFICATION_QUEUE_URL = os.environ.get('NOTIFICATION_QUEUE_URL', '')

    # Coin economy
    POST_FEE = int(os.environ.get('POST_FEE', '20'))
    POST_MIN_BALANCE = int(os.environ.get('POST_MIN_BALANCE', '500'))  # Hard floor, settings may only raise it
    HELPER_ACCEPT_FEE = int(os.environ.get('HELPER_ACCEPT_FEE', '25'))
    DIRECT_CONTACT_FEE = int(os.environ.get('DIRECT_CONTACT_FEE', '50'))
    MAX_TOPUP_COINS = int(os.environ.get('MAX_TOPUP_COINS', '100000'))
    TOPUP_GRACE_MINUTES = int(os.environ.get('TOPUP_GRACE_MINUTES', '15'))

    # Optimistic transactions
    MAX_TRANSACTION_ATTEMPTS = int(os.environ.get('MAX_TRANSACTION_ATTEMPTS', '5'))


config = Config()
