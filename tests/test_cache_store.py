"""Tests for idempotent cache upserts and forward-only status changes."""

import unittest
from datetime import datetime
from unittest import mock

from fakes import ALICE, BOB, ONE_ETHER, SqliteTestCase

from blockrent_sync.core.cache_store import (
    CacheStore,
    DisputeStatus,
    TransactionStatus,
    TRANSACTION_STATUS_RANK,
    TERMINAL_TRANSACTION_STATUSES,
    allowed_sources,
    can_transition,
)
from blockrent_sync.core.models import ListingCache, TransactionCache


def listing_row(listing_id=1, **overrides):
    row = {
        'listing_id': listing_id,
        'owner_wallet': ALICE,
        'category': 'Tools',
        'price_wei': str(ONE_ETHER),
        'ipfs_hash': 'QmHash',
        'title': 'Drill',
    }
    row.update(overrides)
    return row


def transaction_row(transaction_id=7, **overrides):
    row = {
        'transaction_id': transaction_id,
        'listing_id': 1,
        'buyer_wallet': BOB,
        'seller_wallet': ALICE,
        'price_wei': str(ONE_ETHER),
        'status': TransactionStatus.ACTIVE,
        'tx_type': 'SALE',
    }
    row.update(overrides)
    return row


class CanTransitionTests(unittest.TestCase):
    def check(self, current, new):
        return can_transition(current, new, TRANSACTION_STATUS_RANK, TERMINAL_TRANSACTION_STATUSES)

    def test_forward_moves_are_allowed(self):
        self.assertTrue(self.check(None, TransactionStatus.ACTIVE))
        self.assertTrue(self.check(TransactionStatus.PENDING, TransactionStatus.ACTIVE))
        self.assertTrue(self.check(TransactionStatus.ACTIVE, TransactionStatus.DISPUTED))
        self.assertTrue(self.check(TransactionStatus.DISPUTED, TransactionStatus.COMPLETED))

    def test_reasserting_the_same_status_is_allowed(self):
        self.assertTrue(self.check(TransactionStatus.ACTIVE, TransactionStatus.ACTIVE))
        self.assertTrue(self.check(TransactionStatus.COMPLETED, TransactionStatus.COMPLETED))

    def test_allowed_sources(self):
        self.assertEqual(
            [TransactionStatus.PENDING, TransactionStatus.ACTIVE, TransactionStatus.DISPUTED],
            allowed_sources(TransactionStatus.DISPUTED, TRANSACTION_STATUS_RANK, TERMINAL_TRANSACTION_STATUSES),
        )
        self.assertNotIn(
            TransactionStatus.CANCELLED,
            allowed_sources(TransactionStatus.COMPLETED, TRANSACTION_STATUS_RANK, TERMINAL_TRANSACTION_STATUSES),
        )

    def test_backward_and_terminal_moves_are_refused(self):
        self.assertFalse(self.check(TransactionStatus.DISPUTED, TransactionStatus.ACTIVE))
        self.assertFalse(self.check(TransactionStatus.COMPLETED, TransactionStatus.DISPUTED))
        self.assertFalse(self.check(TransactionStatus.COMPLETED, TransactionStatus.CANCELLED))

    def test_unknown_status_raises(self):
        with self.assertRaises(ValueError):
            self.check(TransactionStatus.ACTIVE, 'SHIPPED')


class CacheStoreTests(SqliteTestCase):
    def setUp(self):
        super().setUp()
        self.cache = CacheStore()

    def test_listing_upsert_twice_keeps_one_row_with_latest_payload(self):
        self.cache.upsert_listing(listing_row(title='Drill'))
        self.cache.upsert_listing(listing_row(title='Cordless drill', price_wei='5'))

        self.assertEqual(1, ListingCache.select().count())
        listing = self.cache.get_listing(1)
        self.assertEqual('Cordless drill', listing['title'])
        self.assertEqual('5', listing['price_wei'])
        self.assertTrue(listing['is_active'])
        self.assertEqual(0, listing['views'])

    def test_omitted_fields_are_preserved(self):
        self.cache.upsert_listing(listing_row(description='Heavy duty'))
        self.cache.set_listing_active(1, False)

        self.cache.upsert_listing({'listing_id': 1, 'owner_wallet': ALICE, 'category': 'Tools',
                                   'price_wei': '9', 'ipfs_hash': 'QmHash'})

        listing = self.cache.get_listing(1)
        self.assertEqual('Heavy duty', listing['description'])
        self.assertFalse(listing['is_active'])
        self.assertEqual('9', listing['price_wei'])

    def test_upsert_requires_key_and_known_fields(self):
        with self.assertRaises(ValueError):
            self.cache.upsert_listing({'owner_wallet': ALICE})
        with self.assertRaises(ValueError):
            self.cache.upsert_listing(listing_row(colour='red'))

    def test_missing_rows_read_as_none(self):
        self.assertIsNone(self.cache.get_listing(404))
        self.assertIsNone(self.cache.get_transaction(404))
        self.assertIsNone(self.cache.get_dispute(404))
        self.assertIsNone(self.cache.get_review(404))
        self.assertFalse(self.cache.set_listing_active(404, False))

    def test_transaction_upsert_is_idempotent(self):
        self.cache.upsert_transaction(transaction_row(price_wei='1'))
        self.cache.upsert_transaction(transaction_row(price_wei='2'))

        self.assertEqual(1, TransactionCache.select().count())
        self.assertEqual('2', self.cache.get_transaction(7)['price_wei'])

    def test_transaction_upsert_never_regresses_status(self):
        self.cache.upsert_transaction(transaction_row())
        self.assertTrue(self.cache.transition_transaction(7, TransactionStatus.COMPLETED, datetime(2024, 1, 1)))

        # Replayed TransactionStarted
        self.cache.upsert_transaction(transaction_row(status=TransactionStatus.ACTIVE))

        tx = self.cache.get_transaction(7)
        self.assertEqual(TransactionStatus.COMPLETED, tx['status'])
        self.assertEqual(datetime(2024, 1, 1), tx['blockchain_completed_at'])

    def test_completed_transaction_never_becomes_disputed(self):
        self.cache.upsert_transaction(transaction_row())
        self.cache.transition_transaction(7, TransactionStatus.COMPLETED)

        self.assertFalse(self.cache.transition_transaction(7, TransactionStatus.DISPUTED))
        self.assertEqual(TransactionStatus.COMPLETED, self.cache.get_transaction(7)['status'])

    def test_status_written_by_another_process_is_respected(self):
        self.cache.upsert_transaction(transaction_row())
        # Another writer completes the row behind this store's back
        TransactionCache.update(status=TransactionStatus.COMPLETED).execute()

        self.assertFalse(self.cache.transition_transaction(7, TransactionStatus.DISPUTED))
        self.cache.upsert_transaction(transaction_row(status=TransactionStatus.ACTIVE, price_wei='5'))

        tx = self.cache.get_transaction(7)
        self.assertEqual(TransactionStatus.COMPLETED, tx['status'])
        self.assertEqual('5', tx['price_wei'])

    def test_status_check_and_write_are_one_statement(self):
        self.cache.upsert_transaction(transaction_row(status=TransactionStatus.PENDING))

        with mock.patch.object(TransactionCache, 'get_or_none', side_effect=AssertionError("read before write")):
            self.cache.upsert_transaction(transaction_row(status=TransactionStatus.ACTIVE))
            self.assertTrue(self.cache.transition_transaction(7, TransactionStatus.DISPUTED))

        self.assertEqual(TransactionStatus.DISPUTED, self.cache.get_transaction(7)['status'])

    def test_transition_of_missing_transaction_returns_false(self):
        self.assertFalse(self.cache.transition_transaction(99, TransactionStatus.COMPLETED))

    def test_confirmation_sets_flag_and_reasserts_active(self):
        self.cache.upsert_transaction(transaction_row(status=TransactionStatus.PENDING))

        self.assertTrue(self.cache.confirm_transaction(7, 'buyer'))

        tx = self.cache.get_transaction(7)
        self.assertTrue(tx['buyer_confirmed'])
        self.assertFalse(tx['seller_confirmed'])
        self.assertEqual(TransactionStatus.ACTIVE, tx['status'])

    def test_confirmation_does_not_undo_a_dispute(self):
        self.cache.upsert_transaction(transaction_row())
        self.cache.transition_transaction(7, TransactionStatus.DISPUTED)

        self.cache.confirm_transaction(7, 'seller')

        tx = self.cache.get_transaction(7)
        self.assertTrue(tx['seller_confirmed'])
        self.assertEqual(TransactionStatus.DISPUTED, tx['status'])

    def test_confirmation_of_unknown_party_raises(self):
        with self.assertRaises(ValueError):
            self.cache.confirm_transaction(7, 'arbiter')

    def test_dispute_upsert_and_resolution(self):
        self.cache.upsert_dispute({
            'dispute_id': 3, 'transaction_id': 7, 'initiator_wallet': BOB,
            'defendant_wallet': ALICE, 'reason': 'broken', 'status': DisputeStatus.OPEN,
        })
        self.assertTrue(self.cache.resolve_dispute(3, BOB.replace('b', 'B'), datetime(2024, 2, 1)))

        # Replayed DisputeCreated keeps the resolution
        self.cache.upsert_dispute({
            'dispute_id': 3, 'transaction_id': 7, 'initiator_wallet': BOB,
            'defendant_wallet': ALICE, 'reason': 'broken', 'status': DisputeStatus.OPEN,
        })

        dispute = self.cache.get_dispute(3)
        self.assertEqual(DisputeStatus.RESOLVED, dispute['status'])
        self.assertEqual(BOB, dispute['winner_wallet'])

    def test_review_upsert_is_idempotent(self):
        row = {'review_id': 5, 'transaction_id': 7, 'reviewer_wallet': BOB,
               'reviewee_wallet': ALICE, 'rating': 4}
        self.cache.upsert_review(row)
        self.cache.upsert_review(dict(row, rating=5))

        self.assertEqual(5, self.cache.get_review(5)['rating'])

    def test_list_listings_filters(self):
        self.cache.upsert_listing(listing_row(1, title='Red drill', is_for_rent=True))
        self.cache.upsert_listing(listing_row(2, title='Tent', category='Outdoor', owner_wallet=BOB))
        self.cache.upsert_listing(listing_row(3, title='Blue drill'))
        self.cache.set_listing_active(3, False)

        self.assertEqual([2, 1], [r['listing_id'] for r in self.cache.list_listings()])
        self.assertEqual([2], [r['listing_id'] for r in self.cache.list_listings(category='Outdoor')])
        self.assertEqual([2], [r['listing_id'] for r in self.cache.list_listings(owner_wallet=BOB.replace('b', 'B'))])
        self.assertEqual([1], [r['listing_id'] for r in self.cache.list_listings(is_for_rent=True)])
        self.assertEqual([3, 1], [r['listing_id'] for r in self.cache.list_listings(search='drill', active_only=False)])

    def test_wallet_transactions_cover_both_sides(self):
        self.cache.upsert_transaction(transaction_row(7))
        self.cache.upsert_transaction(transaction_row(8, buyer_wallet=ALICE, seller_wallet=BOB))

        self.assertEqual([8, 7], [t['transaction_id'] for t in self.cache.list_transactions_for_wallet(BOB)])


if __name__ == "__main__":
    unittest.main()
