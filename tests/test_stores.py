"""Tests for the shared call stores.

Tests cover:
- CallRegistry upserts, status ordering, conversation cap and reaping
- AudioBlobStore capacity and age eviction
- TranscriptBus fan-out, unsubscribe and close handling
"""

import asyncio
import threading
import time

import pytest

from voicegate.core.events import (
    CallStatus,
    ChannelClosed,
    StatusUpdate,
    TranscriptUpdate,
)
from voicegate.stores import AudioBlobStore, CallRegistry, TranscriptBus


# =========================================================================
# CallRegistry
# =========================================================================


class TestCallRegistry:

    def test_record_call_start_is_idempotent(self):
        registry = CallRegistry()
        registry.record_call_start("CA1", "support")
        registry.record_call_start("CA1", "support")
        assert len(registry) == 1
        assert registry.lookup_agent_id("CA1") == "support"

    def test_record_call_start_keeps_known_agent(self):
        registry = CallRegistry()
        registry.record_call_start("CA1", "support")
        registry.record_call_start("CA1", None)
        assert registry.lookup_agent_id("CA1") == "support"

    def test_record_stream_id(self):
        registry = CallRegistry()
        registry.record_stream_id("CA1", "MZ1")
        assert "CA1" in registry

    def test_lookups_for_unknown_call(self):
        registry = CallRegistry()
        assert registry.lookup_agent_id("nope") is None
        assert registry.lookup_status("nope") is None
        assert registry.is_active("nope") is False
        assert registry.get_conversation("nope") == []

    def test_is_active_only_when_in_progress(self):
        registry = CallRegistry()
        registry.update_status("CA1", "ringing")
        assert registry.is_active("CA1") is False
        registry.update_status("CA1", "in-progress")
        assert registry.is_active("CA1") is True
        assert registry.active_count == 1

    def test_update_status_accepts_provider_strings(self):
        registry = CallRegistry()
        assert registry.update_status("CA1", "answered") == CallStatus.IN_PROGRESS
        assert registry.update_status("CA2", "something-new") == CallStatus.UNKNOWN

    def test_status_never_moves_backwards(self):
        registry = CallRegistry()
        registry.update_status("CA1", CallStatus.IN_PROGRESS)
        held = registry.update_status("CA1", CallStatus.RINGING)
        assert held == CallStatus.IN_PROGRESS
        assert registry.lookup_status("CA1") == CallStatus.IN_PROGRESS

    def test_terminal_status_is_final(self):
        registry = CallRegistry()
        registry.update_status("CA1", CallStatus.COMPLETED)
        held = registry.update_status("CA1", CallStatus.IN_PROGRESS)
        assert held == CallStatus.COMPLETED
        assert registry.is_active("CA1") is False

    def test_update_status_ignores_empty_call_id(self):
        registry = CallRegistry()
        assert registry.update_status("", "completed") is None
        assert len(registry) == 0

    def test_append_turn_noops_on_empty_input(self):
        registry = CallRegistry()
        registry.append_turn("", "user", "hello")
        registry.append_turn("CA1", "user", "")
        assert len(registry) == 0

    def test_conversation_keeps_last_twenty_in_order(self):
        registry = CallRegistry()
        for i in range(1, 26):
            registry.append_turn("CA1", "user", f"turn {i}")

        conversation = registry.get_conversation("CA1")
        assert len(conversation) == 20
        assert conversation[0] == {"role": "user", "text": "turn 6"}
        assert conversation[-1] == {"role": "user", "text": "turn 25"}

    def test_custom_turn_cap(self):
        registry = CallRegistry(max_turns=3)
        for i in range(5):
            registry.append_turn("CA1", "assistant", str(i))
        assert [t["text"] for t in registry.get_conversation("CA1")] == ["2", "3", "4"]

    def test_concurrent_appends_are_not_lost(self):
        registry = CallRegistry(max_turns=1000)

        def writer(prefix):
            for i in range(100):
                registry.append_turn("CA1", "user", f"{prefix}-{i}")

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(registry.get_conversation("CA1")) == 400

    def test_reap_removes_only_finished_calls(self):
        registry = CallRegistry()
        registry.update_status("done", CallStatus.COMPLETED)
        registry.update_status("live", CallStatus.IN_PROGRESS)
        registry.record_call_start("new", "support")

        assert registry.reap(older_than_seconds=0) == 1
        assert "done" not in registry
        assert "live" in registry
        assert "new" in registry

    def test_reap_respects_age(self):
        registry = CallRegistry()
        registry.update_status("done", CallStatus.FAILED)
        assert registry.reap(older_than_seconds=3600) == 0
        assert "done" in registry

    def test_reap_drops_idle_unfinished_calls(self):
        registry = CallRegistry()
        registry.update_status("stuck", CallStatus.IN_PROGRESS)
        registry.record_call_start("new", "support")

        assert registry.reap(older_than_seconds=3600, idle_after_seconds=3600) == 0
        assert registry.reap(older_than_seconds=3600, idle_after_seconds=0) == 2
        assert len(registry) == 0
        assert registry.active_count == 0

    def test_clear(self):
        registry = CallRegistry()
        registry.record_call_start("CA1", "support")
        registry.clear()
        assert len(registry) == 0


# =========================================================================
# AudioBlobStore
# =========================================================================


class TestAudioBlobStore:

    def test_store_and_get(self):
        store = AudioBlobStore()
        blob_id = store.store(b"audio", "audio/mpeg")
        blob = store.get(blob_id)
        assert blob.payload == b"audio"
        assert blob.content_type == "audio/mpeg"

    def test_ids_are_unique(self):
        store = AudioBlobStore()
        ids = {store.store(b"x") for _ in range(50)}
        assert len(ids) == 50

    def test_unknown_id(self):
        assert AudioBlobStore().get("aud_missing") is None

    def test_ceiling_evicts_oldest(self):
        store = AudioBlobStore(max_entries=5)
        ids = [store.store(f"blob {i}".encode()) for i in range(6)]

        assert len(store) <= 5
        assert store.get(ids[0]) is None
        assert store.get(ids[-1]).payload == b"blob 5"

    def test_never_above_ceiling(self):
        store = AudioBlobStore(max_entries=5)
        for i in range(40):
            store.store(b"x")
            assert len(store) <= 5

    def test_evicts_down_to_low_watermark(self):
        store = AudioBlobStore(max_entries=5, low_watermark=2)
        ids = [store.store(b"x") for _ in range(6)]
        assert len(store) == 2
        assert ids[-1] in store
        assert ids[-2] in store
        assert ids[0] not in store

    def test_reads_do_not_refresh_position(self):
        store = AudioBlobStore(max_entries=2)
        first = store.store(b"1")
        store.store(b"2")
        store.get(first)
        store.store(b"3")
        assert first not in store

    def test_expired_blob_not_returned(self):
        store = AudioBlobStore(max_age_seconds=0.01)
        blob_id = store.store(b"x")
        time.sleep(0.03)
        assert store.get(blob_id) is None
        assert blob_id not in store

    def test_expired_blobs_evicted_on_insert(self):
        store = AudioBlobStore(max_age_seconds=0.01)
        old = store.store(b"old")
        time.sleep(0.03)
        store.store(b"new")
        assert old not in store
        assert len(store) == 1

    def test_invalid_bounds(self):
        with pytest.raises(ValueError):
            AudioBlobStore(max_entries=0)
        with pytest.raises(ValueError):
            AudioBlobStore(max_entries=5, low_watermark=6)
        with pytest.raises(ValueError):
            AudioBlobStore(max_entries=5, low_watermark=0)


# =========================================================================
# TranscriptBus
# =========================================================================


class TestTranscriptBus:

    def test_publish_without_subscribers_is_dropped(self):
        bus = TranscriptBus()
        assert bus.publish("CA1", StatusUpdate(status="ringing")) == 0

    def test_late_subscriber_gets_nothing_retroactively(self):
        bus = TranscriptBus()
        bus.publish("CA1", StatusUpdate(status="ringing"))
        received = []
        bus.subscribe("CA1", received.append)
        assert received == []

    def test_fan_out_to_all_subscribers(self):
        bus = TranscriptBus()
        first, second = [], []
        bus.subscribe("CA1", first.append)
        bus.subscribe("CA1", second.append)

        event = TranscriptUpdate(role="user", text="hi")
        assert bus.publish("CA1", event) == 2
        assert first == [event]
        assert second == [event]

    def test_channels_are_per_call(self):
        bus = TranscriptBus()
        received = []
        bus.subscribe("CA1", received.append)
        bus.publish("CA2", StatusUpdate(status="ringing"))
        assert received == []

    def test_unsubscribe_removes_only_that_listener(self):
        bus = TranscriptBus()
        first, second = [], []
        unsubscribe = bus.subscribe("CA1", first.append)
        bus.subscribe("CA1", second.append)

        unsubscribe()
        unsubscribe()
        bus.publish("CA1", StatusUpdate(status="ringing"))
        assert first == []
        assert len(second) == 1

    def test_failing_subscriber_does_not_block_others(self):
        bus = TranscriptBus()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe("CA1", broken)
        bus.subscribe("CA1", received.append)
        assert bus.publish("CA1", StatusUpdate(status="ringing")) == 1
        assert len(received) == 1

    def test_close_without_loop_reaps_immediately(self):
        bus = TranscriptBus()
        received, closed = [], []
        bus.subscribe("CA1", received.append, on_close=lambda: closed.append(True))

        bus.publish_close("CA1")
        assert isinstance(received[-1], ChannelClosed)
        assert closed == [True]
        assert not bus.has_channel("CA1")

    def test_close_unknown_call_is_noop(self):
        TranscriptBus().publish_close("nope")

    @pytest.mark.asyncio
    async def test_close_reaps_after_grace(self):
        bus = TranscriptBus(close_grace_seconds=0.02)
        received = []
        bus.subscribe("CA1", received.append)

        bus.publish_close("CA1")
        bus.publish_close("CA1")
        assert [type(e) for e in received] == [ChannelClosed]
        assert bus.has_channel("CA1")

        # Publishing into the closed channel is dropped.
        assert bus.publish("CA1", StatusUpdate(status="completed")) == 0

        await asyncio.sleep(0.05)
        assert not bus.has_channel("CA1")

    @pytest.mark.asyncio
    async def test_subscribe_after_close_opens_fresh_channel(self):
        bus = TranscriptBus(close_grace_seconds=0.02)
        bus.subscribe("CA1", lambda e: None)
        bus.publish_close("CA1")

        received = []
        bus.subscribe("CA1", received.append)
        await asyncio.sleep(0.05)

        # The pending reap must not remove the replacement channel.
        assert bus.has_channel("CA1")
        assert bus.publish("CA1", StatusUpdate(status="in-progress")) == 1

    def test_shutdown(self):
        bus = TranscriptBus()
        bus.subscribe("CA1", lambda e: None)
        bus.shutdown()
        assert not bus.has_channel("CA1")
        assert bus.subscriber_count("CA1") == 0
