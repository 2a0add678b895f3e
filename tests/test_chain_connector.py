"""Tests for backfill, checkpointing and the live polling loop."""

import json
import shutil
import tempfile
import threading
import time
import unittest
from pathlib import Path

from fakes import (
    ALICE,
    BOB,
    ONE_ETHER,
    FakeLedgerFeed,
    FakeResolver,
    RecordingPublisher,
    SqliteTestCase,
    make_event,
)

from blockrent_sync.core.abi import MARKETPLACE_EVENTS_ABI
from blockrent_sync.core.cache_store import CacheStore
from blockrent_sync.core.chain_connector import ChainConnector, SyncContext, block_ranges
from blockrent_sync.core.checkpoint_store import CheckpointStore
from blockrent_sync.core.config_loader import apply_defaults
from blockrent_sync.core.events import EVENT_NAMES, LISTING_CREATED, TRANSACTION_CONFIRMED
from blockrent_sync.core.models import DeadLetterEvent
from blockrent_sync.core.notification_fanout import NotificationFanout

CONTRACT = "0x5fbdb2315678afecb367f032d93f642f64180aa3"


def listing_event(listing_id, block, ipfs='QmListing'):
    return make_event(
        LISTING_CREATED, block, 0,
        listingId=listing_id, owner=ALICE, category='Tools', price=ONE_ETHER,
        deposit=0, ipfsHash=ipfs, isForRent=False,
    )


def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


class CheckpointRecordingFeed(FakeLedgerFeed):
    """Remembers the stored checkpoint at the start of each queried range."""

    def __init__(self, checkpoint, **kwargs):
        super().__init__(**kwargs)
        self.checkpoint = checkpoint
        self.checkpoints_seen = []

    def query_range(self, event_name, from_block, to_block):
        if event_name == EVENT_NAMES[0]:
            self.checkpoints_seen.append(self.checkpoint.get())
        return super().query_range(event_name, from_block, to_block)


class FlakyHeightFeed(FakeLedgerFeed):
    """Fails the first height lookup."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.height_calls = 0

    def get_current_height(self):
        self.height_calls += 1
        if self.height_calls == 1:
            raise RuntimeError("rpc timeout")
        return super().get_current_height()


class BlockingResolver(FakeResolver):
    """Holds every resolve until the test releases it."""

    def __init__(self):
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def resolve(self, content_hash):
        self.started.set()
        self.release.wait(5)
        return super().resolve(content_hash)


class ConnectorTestCase(SqliteTestCase):
    def setUp(self):
        super().setUp()
        self.publisher = RecordingPublisher()
        self.resolver = FakeResolver()
        self.checkpoint = CheckpointStore()
        self.connector = None

    def make_connector(self, feed, with_dispatcher=True, **overrides):
        settings = dict(
            contract_address=CONTRACT,
            default_window=10000,
            backfill_chunk_size=0,
            confirmations=0,
            poll_interval=0.05,
            max_workers=2,
            max_attempts=1,
            retry_backoff=0,
        )
        settings.update(overrides)
        context = SyncContext(
            feed=feed,
            cache=CacheStore(),
            checkpoint=self.checkpoint,
            resolver=self.resolver,
            notifier=NotificationFanout(self.publisher),
            publisher=self.publisher,
            **settings,
        )
        dispatcher = context.build_dispatcher() if with_dispatcher else None
        self.connector = ChainConnector(context, dispatcher=dispatcher)
        return self.connector

    def tearDown(self):
        if self.connector is not None:
            self.connector.stop()
        super().tearDown()

    @staticmethod
    def ranges(feed):
        return sorted({(start, end) for _, start, end in feed.queries})


class BackfillTests(ConnectorTestCase):
    def test_first_run_starts_one_window_before_head(self):
        feed = FakeLedgerFeed(height=25000)
        connector = self.make_connector(feed)

        connector.backfill()

        self.assertEqual([(15000, 25000)], self.ranges(feed))
        self.assertEqual(set(EVENT_NAMES), {name for name, _, _ in feed.queries})
        self.assertEqual(25000, self.checkpoint.get())

    def test_short_chain_starts_at_genesis(self):
        feed = FakeLedgerFeed(height=50)
        self.make_connector(feed).backfill()

        self.assertEqual([(0, 50)], self.ranges(feed))

    def test_resumes_after_checkpoint(self):
        self.checkpoint.set(120)
        feed = FakeLedgerFeed(height=130)

        self.make_connector(feed).backfill()

        self.assertEqual([(121, 130)], self.ranges(feed))
        self.assertEqual(130, self.checkpoint.get())

    def test_caught_up_is_a_no_op(self):
        self.checkpoint.set(130)
        feed = FakeLedgerFeed(height=130)

        self.assertEqual(0, self.make_connector(feed).backfill())
        self.assertEqual([], feed.queries)

    def test_checkpoint_advances_after_each_chunk(self):
        feed = CheckpointRecordingFeed(self.checkpoint, height=25)
        connector = self.make_connector(feed, default_window=10, backfill_chunk_size=4)

        connector.backfill()

        self.assertEqual([(15, 18), (19, 22), (23, 25)], self.ranges(feed))
        self.assertEqual([None, 18, 22], feed.checkpoints_seen)
        self.assertEqual(25, self.checkpoint.get())

    def test_confirmation_depth_holds_back_recent_blocks(self):
        self.checkpoint.set(90)
        feed = FakeLedgerFeed(height=100)
        connector = self.make_connector(feed, confirmations=5)

        connector.backfill()

        self.assertEqual([(91, 95)], self.ranges(feed))
        self.assertEqual(100, connector.status()['head'])

    def test_backfill_skips_listings_already_cached(self):
        feed = FakeLedgerFeed(height=10)
        connector = self.make_connector(feed)
        connector.context.cache.upsert_listing({
            'listing_id': 1, 'owner_wallet': ALICE, 'category': 'Tools',
            'price_wei': '1', 'ipfs_hash': 'QmOne',
        })
        connector.context.cache.set_listing_active(1, False)
        feed.add(listing_event(1, 3, ipfs='QmOne'), listing_event(2, 4, ipfs='QmTwo'))

        self.assertEqual(1, connector.backfill())

        self.assertEqual(['QmTwo'], self.resolver.calls)
        self.assertFalse(connector.context.cache.get_listing(1)['is_active'])
        self.assertIsNotNone(connector.context.cache.get_listing(2))

    def test_live_poll_reprocesses_cached_listings(self):
        feed = FakeLedgerFeed(height=10)
        connector = self.make_connector(feed)
        feed.add(listing_event(1, 3, ipfs='QmOne'))
        connector.backfill(current_height=2)

        connector.poll_once()

        self.assertEqual(['QmOne'], self.resolver.calls)
        self.assertIsNotNone(connector.status()['last_poll_at'])

    def test_failed_events_do_not_hold_back_the_checkpoint(self):
        feed = FakeLedgerFeed(height=10)
        feed.add(
            listing_event(1, 2),
            make_event(TRANSACTION_CONFIRMED, 5, 0, transactionId=77, confirmedBy=BOB),
        )
        connector = self.make_connector(feed)

        connector.backfill()

        status = connector.status()
        self.assertEqual(10, status['checkpoint'])
        self.assertEqual(1, status['events_processed'])
        self.assertEqual(1, status['events_failed'])
        self.assertEqual(1, status['dead_letters'])
        self.assertEqual(77, DeadLetterEvent.get().args['transactionId'])


class LifecycleTests(ConnectorTestCase):
    def test_start_without_contract_is_disabled(self):
        feed = FakeLedgerFeed(height=10)
        connector = self.make_connector(feed, contract_address='')

        self.assertIsNone(connector.start())
        self.assertEqual([], feed.queries)
        self.assertFalse(connector.status()['enabled'])

    def test_start_without_feed_is_disabled(self):
        connector = self.make_connector(None, with_dispatcher=False)

        self.assertIsNone(connector.start())
        self.assertFalse(connector.running)

    def test_unreachable_network_returns_none(self):
        feed = FakeLedgerFeed(height=10, network_error=True)
        connector = self.make_connector(feed, with_dispatcher=False)

        self.assertIsNone(connector.start())
        self.assertIn('node unreachable', connector.status()['last_error'])
        self.assertEqual([], feed.queries)

    def test_start_backfills_then_follows_new_blocks(self):
        feed = FakeLedgerFeed(height=10, chain_id=1337)
        feed.add(listing_event(1, 3))
        connector = self.make_connector(feed, with_dispatcher=False)

        handle = connector.start()

        self.assertIsNotNone(handle)
        self.assertEqual({'chain_id': 1337}, handle.network)
        self.assertTrue(connector.running)
        self.assertIsNotNone(connector.context.cache.get_listing(1))
        self.assertEqual(10, self.checkpoint.get())

        feed.add(listing_event(2, 12))
        feed.height = 12

        self.assertTrue(wait_until(lambda: connector.context.cache.get_listing(2) is not None))
        self.assertTrue(wait_until(lambda: self.checkpoint.get() == 12))

        handle.stop()

        self.assertFalse(connector.running)
        status = connector.status()
        self.assertEqual(1337, status['chain_id'])
        self.assertEqual(2, status['events_processed'])

    def test_failed_backfill_is_retried_by_the_live_loop(self):
        feed = FlakyHeightFeed(height=8)
        feed.add(listing_event(1, 3))
        connector = self.make_connector(feed, with_dispatcher=False)

        handle = connector.start()

        self.assertIsNotNone(handle)
        self.assertTrue(wait_until(lambda: self.checkpoint.get() == 8))
        self.assertIsNotNone(connector.context.cache.get_listing(1))

    def test_restart_after_stop_builds_a_fresh_dispatcher(self):
        feed = FakeLedgerFeed(height=5)
        connector = self.make_connector(feed, with_dispatcher=False)

        self.assertIsNotNone(connector.start())
        connector.stop()
        self.assertIsNone(connector.dispatcher)

        feed.add(listing_event(1, 7))
        feed.height = 8
        self.assertIsNotNone(connector.start())

        self.assertTrue(connector.running)
        self.assertIsNotNone(connector.context.cache.get_listing(1))
        self.assertEqual(8, self.checkpoint.get())
        self.assertIsNone(connector.status()['last_error'])

    def test_stop_keeps_an_injected_dispatcher(self):
        connector = self.make_connector(FakeLedgerFeed(height=5))
        dispatcher = connector.dispatcher

        connector.start()
        connector.stop()

        self.assertIs(dispatcher, connector.dispatcher)

    def test_stop_waits_for_in_flight_handlers(self):
        self.resolver = BlockingResolver()
        feed = FakeLedgerFeed(height=5)
        connector = self.make_connector(feed, with_dispatcher=False)
        self.assertIsNotNone(connector.start())

        feed.add(listing_event(1, 6, ipfs='QmSlow'))
        feed.height = 6
        self.assertTrue(self.resolver.started.wait(5))

        stopper = threading.Thread(target=connector.stop)
        stopper.start()
        time.sleep(0.2)
        self.assertTrue(stopper.is_alive())
        self.assertIsNone(connector.context.cache.get_listing(1))

        self.resolver.release.set()
        stopper.join(5)

        self.assertFalse(stopper.is_alive())
        self.assertFalse(connector.running)
        self.assertEqual('QmSlow', connector.context.cache.get_listing(1)['ipfs_hash'])

    def test_stop_without_start_is_safe(self):
        connector = self.make_connector(FakeLedgerFeed(), with_dispatcher=False)
        connector.stop()
        self.assertFalse(connector.running)


class BlockRangesTests(unittest.TestCase):
    def test_splits_inclusive_ranges(self):
        self.assertEqual([(0, 2), (3, 5), (6, 6)], list(block_ranges(0, 6, 3)))

    def test_non_positive_chunk_yields_whole_range(self):
        self.assertEqual([(5, 9)], list(block_ranges(5, 9, 0)))

    def test_empty_range(self):
        self.assertEqual([], list(block_ranges(10, 9, 3)))


class SyncContextTests(unittest.TestCase):
    def test_empty_contract_address_builds_no_feed(self):
        config = apply_defaults({'sync': {'contract_address': ''}})

        context = SyncContext.from_config(config)
        try:
            self.assertIsNone(context.feed)
            self.assertEqual(config['sync']['backfill_chunk_size'], context.backfill_chunk_size)
            self.assertIsNone(ChainConnector(context).start())
        finally:
            context.close()

    def test_missing_abi_file_disables_the_feed(self):
        config = apply_defaults({'sync': {'contract_address': CONTRACT, 'abi_path': '/nonexistent/abi.json'}})

        with self.assertLogs("blockrent_sync", level="ERROR"):
            context = SyncContext.from_config(config)
        try:
            self.assertIsNone(context.feed)
            self.assertIsNone(ChainConnector(context).start())
        finally:
            context.close()

    def test_abi_without_marketplace_events_disables_the_feed(self):
        tmpdir = tempfile.mkdtemp(prefix="blockrent-sync-abi-")
        self.addCleanup(shutil.rmtree, tmpdir, True)
        abi_path = Path(tmpdir) / "Marketplace.json"
        abi_path.write_text(json.dumps({'abi': MARKETPLACE_EVENTS_ABI[:1]}), encoding="utf-8")
        config = apply_defaults({'sync': {'contract_address': CONTRACT, 'abi_path': str(abi_path)}})

        context = SyncContext.from_config(config)
        try:
            self.assertIsNone(context.feed)
        finally:
            context.close()


if __name__ == "__main__":
    unittest.main()
