"""Database models for the ledger cache, checkpoint and side-effect tables."""

import json
from datetime import datetime

from peewee import (
    BooleanField,
    CharField,
    DatabaseProxy,
    DateTimeField,
    IntegerField,
    BigIntegerField,
    AutoField,
    Model,
    TextField,
)

# Database instance will be initialized in DatabaseHandler
db = DatabaseProxy()

# uint256 fits in 78 decimal digits
WEI_DIGITS = 78


class JSONField(TextField):
    """
    Text column holding a JSON document.

    Works unchanged on SQLite and PostgreSQL; playhouse only ships
    backend-specific JSON fields.
    """

    def db_value(self, value):
        if value is None:
            return None
        return json.dumps(value)

    def python_value(self, value):
        if value is None:
            return None
        return json.loads(value)


class BaseModel(Model):
    class Meta:
        database = db


class SystemSetting(BaseModel):
    """Key/value settings; holds the ``last_synced_block`` checkpoint."""
    setting_key = CharField(primary_key=True, max_length=100)
    setting_value = TextField(null=True)
    updated_at = DateTimeField(default=datetime.now)

    class Meta:
        table_name = 'system_settings'


class ListingCache(BaseModel):
    """Listing row derived from ``ListingCreated``."""
    listing_id = BigIntegerField(primary_key=True)
    owner_wallet = CharField(max_length=42, index=True)
    category = CharField(max_length=100, index=True)
    price_wei = CharField(max_length=WEI_DIGITS)
    deposit_wei = CharField(max_length=WEI_DIGITS, default='0')
    ipfs_hash = CharField(max_length=255)
    is_for_rent = BooleanField(default=False)
    is_active = BooleanField(default=True, index=True)
    views = IntegerField(default=0)
    favorites = IntegerField(default=0)
    title = CharField(max_length=255, default='Untitled')
    description = TextField(default='')
    location = CharField(max_length=255, default='Global')
    tags = JSONField(default=list)
    images = JSONField(default=list)
    blockchain_created_at = DateTimeField(null=True)
    blockchain_updated_at = DateTimeField(null=True)
    last_synced = DateTimeField(default=datetime.now)

    class Meta:
        table_name = 'listings_cache'


class TransactionCache(BaseModel):
    """Sale or rental transaction row."""
    transaction_id = BigIntegerField(primary_key=True)
    listing_id = BigIntegerField(index=True)
    buyer_wallet = CharField(max_length=42, index=True)
    seller_wallet = CharField(max_length=42, index=True)
    price_wei = CharField(max_length=WEI_DIGITS)
    status = CharField(max_length=20, default='PENDING', index=True)
    buyer_confirmed = BooleanField(default=False)
    seller_confirmed = BooleanField(default=False)
    tx_hash = CharField(max_length=66, null=True)
    tx_type = CharField(max_length=10)
    blockchain_created_at = DateTimeField(null=True)
    blockchain_completed_at = DateTimeField(null=True)
    last_synced = DateTimeField(default=datetime.now)

    class Meta:
        table_name = 'transactions_cache'


class DisputeCache(BaseModel):
    """Dispute opened against a transaction."""
    dispute_id = BigIntegerField(primary_key=True)
    transaction_id = BigIntegerField(index=True)
    initiator_wallet = CharField(max_length=42)
    defendant_wallet = CharField(max_length=42)
    reason = TextField(default='')
    status = CharField(max_length=20, default='OPEN', index=True)
    winner_wallet = CharField(max_length=42, null=True)
    blockchain_created_at = DateTimeField(null=True)
    blockchain_resolved_at = DateTimeField(null=True)
    last_synced = DateTimeField(default=datetime.now)

    class Meta:
        table_name = 'disputes_cache'


class ReviewCache(BaseModel):
    """Review left by one transaction party for the other."""
    review_id = BigIntegerField(primary_key=True)
    transaction_id = BigIntegerField(index=True)
    reviewer_wallet = CharField(max_length=42)
    reviewee_wallet = CharField(max_length=42, index=True)
    rating = IntegerField()
    ipfs_hash = CharField(max_length=255, default='')
    blockchain_timestamp = DateTimeField(null=True)
    last_synced = DateTimeField(default=datetime.now)

    class Meta:
        table_name = 'reviews_cache'


class Notification(BaseModel):
    """Per-wallet notification, retrievable by polling."""
    id = AutoField()
    wallet_address = CharField(max_length=42, index=True)
    type = CharField(max_length=50)
    title = CharField(max_length=255)
    message = TextField()
    data = JSONField(default=dict)
    # "<tx hash>:<log index>:<recipient>:<type>" for ledger-derived notifications
    dedup_key = CharField(max_length=200, null=True, unique=True)
    is_read = BooleanField(default=False, index=True)
    read_at = DateTimeField(null=True)
    created_at = DateTimeField(default=datetime.now, index=True)

    class Meta:
        table_name = 'notifications'


class ActivityLog(BaseModel):
    """Write-only audit trail of wallet actions."""
    id = AutoField()
    wallet_address = CharField(max_length=42, null=True, index=True)
    action = CharField(max_length=50)
    entity_type = CharField(max_length=50, null=True)
    entity_id = CharField(max_length=100, null=True)
    metadata = JSONField(default=dict)
    created_at = DateTimeField(default=datetime.now, index=True)

    class Meta:
        table_name = 'activity_log'


class DeadLetterEvent(BaseModel):
    """Ledger event whose reconciliation failed after every retry."""
    id = AutoField()
    event_name = CharField(max_length=50)
    args = JSONField(default=dict)
    block_number = BigIntegerField(index=True)
    tx_hash = CharField(max_length=66)
    log_index = IntegerField(default=0)
    error = TextField(default='')
    attempts = IntegerField(default=0)
    resolved = BooleanField(default=False, index=True)
    created_at = DateTimeField(default=datetime.now)
    resolved_at = DateTimeField(null=True)

    class Meta:
        table_name = 'dead_letter_events'
        indexes = (
            (('tx_hash', 'log_index'), True),
        )


ALL_MODELS = [
    SystemSetting,
    ListingCache,
    TransactionCache,
    DisputeCache,
    ReviewCache,
    Notification,
    ActivityLog,
    DeadLetterEvent,
]
