"""
MManage Backend — Backup Service Tests
=======================================

What:  End-to-end behaviour of dispatch, buffering and draining against the
       fake Cassandra cluster.

What we test:
    ✅ Connected: backup() returns while the write is still pending
    ✅ Disconnected: records are buffered; full buffer drops the newest
    ✅ Reconnect after failed attempts drains the buffer in order
    ✅ A failing item does not stop the drain
    ✅ Losing the connection mid-drain stops it; the rest waits for the next connect
    ✅ Strict ordering keeps new records behind the buffered ones
    ✅ A full queue while connected falls back to a direct send
    ✅ Nothing ever raises out of backup()
    ✅ Lifecycle: disabled service, invalid registry, stop() flush, status()
"""

import logging
import threading
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from fakes import FakeClock, FakeClusterFactory, FakeKeyspace, wait_until
from mmanage.exceptions import BackupConfigurationError

USERS_INSERT = (
    "INSERT INTO backup_users (id, email, name, created_at, backup_timestamp) "
    "VALUES (?, ?, ?, ?, ?) USING TTL ?"
)


def user(n) -> dict:
    return {
        "id": f"u{n}",
        "email": f"user{n}@example.com",
        "name": f"User {n}",
        "created_at": datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc),
    }


def written_ids(session) -> list:
    return session.values_for(0)


async def start_connected(service):
    await service.start()
    await wait_until(service.is_connected)


class TestDirectDispatch:

    @pytest.mark.asyncio
    async def test_connected_record_is_written_in_background(self, make_backup_service, cluster_factory):
        service = make_backup_service()
        await start_connected(service)
        session = cluster_factory.session
        session.hold = True

        assert service.backup("backup_users", user(1)) is None
        await wait_until(lambda: len(session.executed) == 1)
        # The driver has not answered: the write is still pending
        assert service.stats.sent == 0
        assert not await service.join(timeout=0.05)

        session.release()
        assert await service.join(timeout=1.0)
        query, values = session.executed[0]
        assert query == USERS_INSERT
        assert values[:4] == ["u1", "user1@example.com", "User 1", "2025-01-01T12:00:00.000Z"]
        assert isinstance(values[4], datetime)
        assert values[5] == 31_536_000
        assert service.stats.sent == 1

    @pytest.mark.asyncio
    async def test_write_failure_is_logged_not_raised(self, make_backup_service, cluster_factory, caplog):
        service = make_backup_service()
        await start_connected(service)
        cluster_factory.session.fail_values = {"user1@example.com"}

        with caplog.at_level(logging.ERROR, logger="mmanage.backup.service"):
            service.backup("backup_users", user(1))
            await service.join(timeout=1.0)

        assert service.stats.failed == 1
        assert service.stats.sent == 0
        assert "backup:backup_users" in caplog.text

    @pytest.mark.asyncio
    async def test_unknown_table_is_logged_not_raised(self, make_backup_service):
        service = make_backup_service()
        await start_connected(service)

        service.backup("backup_orders", {"id": "1"})
        await service.join(timeout=1.0)

        assert service.stats.failed == 1

    @pytest.mark.asyncio
    async def test_dispatch_error_never_escapes(self, make_backup_service):
        service = make_backup_service()
        with patch("mmanage.backup.service.sanitize", side_effect=RuntimeError("boom")):
            assert service.backup("backup_users", user(1)) is None
        assert len(service.queue) == 0

    @pytest.mark.asyncio
    async def test_disabled_service_ignores_records(self, make_backup_service, cluster_factory):
        service = make_backup_service(enabled=False)
        await service.start()

        service.backup("backup_users", user(1))

        assert cluster_factory.calls == 0
        assert len(service.queue) == 0
        assert service.status().state == "disabled"


class TestBuffering:

    @pytest.mark.asyncio
    async def test_capacity_two_keeps_first_two(self, make_backup_service):
        service = make_backup_service(capacity=2)

        for name in ("a", "b", "c"):
            service.backup("backup_users", {"id": name})

        assert [item.record["id"] for item in service.queue.snapshot()] == ["a", "b"]
        assert service.stats.queued == 2
        assert service.stats.dropped == 1

    @pytest.mark.asyncio
    async def test_buffered_records_are_sanitized(self, make_backup_service):
        service = make_backup_service()
        service.backup("backup_users", {"id": "a", "name": None})

        queued = service.queue.snapshot()[0]
        assert queued.table == "backup_users"
        assert "name" not in queued.record
        assert "backup_timestamp" in queued.record

    @pytest.mark.asyncio
    async def test_drop_oldest_policy(self, make_backup_service):
        service = make_backup_service(capacity=2, overflow="drop_oldest")
        for name in ("a", "b", "c"):
            service.backup("backup_users", {"id": name})

        assert [item.record["id"] for item in service.queue.snapshot()] == ["b", "c"]
        assert service.stats.dropped == 1


class TestDrain:

    @pytest.mark.asyncio
    async def test_queue_drained_in_order_on_connect(self, make_backup_service, cluster_factory):
        service = make_backup_service()
        for n in (1, 2, 3):
            service.backup("backup_users", user(n))

        await start_connected(service)
        await service.join(timeout=1.0)

        assert written_ids(cluster_factory.session) == ["u1", "u2", "u3"]
        assert len(service.queue) == 0
        assert service.stats.sent == 3

    @pytest.mark.asyncio
    async def test_three_failed_connects_then_queued_record_written(self, make_backup_service, fake_clock):
        factory = FakeClusterFactory(failures=3)
        service = make_backup_service(factory=factory)
        service.backup("backup_users", user(1))

        await start_connected(service)
        await service.join(timeout=1.0)

        assert fake_clock.sleeps == [30.0, 30.0, 30.0]
        assert factory.calls == 4
        assert written_ids(factory.session) == ["u1"]

    @pytest.mark.asyncio
    async def test_failed_item_does_not_block_the_rest(self, make_backup_service, cluster_factory):
        service = make_backup_service()
        cluster_factory.session.fail_values = {"user2@example.com"}
        for n in (1, 2, 3):
            service.backup("backup_users", user(n))

        await start_connected(service)
        await service.join(timeout=1.0)

        # u2 was attempted once and not re-queued
        assert written_ids(cluster_factory.session) == ["u1", "u2", "u3"]
        assert service.stats.sent == 2
        assert service.stats.failed == 1
        assert len(service.queue) == 0

    @pytest.mark.asyncio
    async def test_connection_lost_mid_drain_stops_until_reconnect(self, make_backup_service, cluster_factory):
        service = make_backup_service()
        for n in (1, 2, 3):
            service.backup("backup_users", user(n))

        def drop_after_first(query, values):
            if len(cluster_factory.session.executed) == 1:
                cluster_factory.current.set_hosts_up(False)

        cluster_factory.session.on_execute = drop_after_first
        await service.start()
        await wait_until(lambda: len(cluster_factory.session.executed) == 1)
        await service.join(timeout=1.0)

        assert written_ids(cluster_factory.session) == ["u1"]
        assert [i.record["id"] for i in service.queue.snapshot()] == ["u2", "u3"]
        assert not service.is_connected()

        # Records submitted while offline join the back of the queue
        service.backup("backup_users", user(4))

        cluster_factory.current.set_hosts_up(True)
        await wait_until(service.is_connected)
        await service.join(timeout=1.0)

        assert written_ids(cluster_factory.session) == ["u1", "u2", "u3", "u4"]
        assert len(service.queue) == 0


class TestOrdering:

    @pytest.mark.asyncio
    async def test_strict_ordering_queues_behind_drain(self, make_backup_service, cluster_factory):
        service = make_backup_service(strict_ordering=True)
        session = cluster_factory.session
        session.hold = True
        for n in (1, 2):
            service.backup("backup_users", user(n))

        await start_connected(service)
        await wait_until(lambda: len(session.executed) == 1)

        service.backup("backup_users", user(3))
        assert len(service.queue) == 2

        session.release()
        await service.join(timeout=1.0)
        assert written_ids(session) == ["u1", "u2", "u3"]

    @pytest.mark.asyncio
    async def test_relaxed_ordering_sends_directly_during_drain(self, make_backup_service, cluster_factory):
        service = make_backup_service(strict_ordering=False)
        session = cluster_factory.session
        session.hold = True
        for n in (1, 2):
            service.backup("backup_users", user(n))

        await start_connected(service)
        await wait_until(lambda: len(session.executed) == 1)

        service.backup("backup_users", user(3))
        await wait_until(lambda: len(session.executed) == 2)

        session.release()
        await service.join(timeout=1.0)
        assert written_ids(session) == ["u1", "u3", "u2"]

    @pytest.mark.asyncio
    async def test_full_queue_while_connected_sends_directly(self, make_backup_service, cluster_factory):
        service = make_backup_service(capacity=1, strict_ordering=True)
        session = cluster_factory.session
        session.hold = True
        service.backup("backup_users", user(1))

        await start_connected(service)
        await wait_until(lambda: len(session.executed) == 1)

        service.backup("backup_users", user(2))
        service.backup("backup_users", user(3))
        await wait_until(lambda: len(session.executed) == 2)

        assert [i.record["id"] for i in service.queue.snapshot()] == ["u2"]
        assert service.stats.dropped == 0

        session.release()
        await service.join(timeout=1.0)
        assert written_ids(session) == ["u1", "u3", "u2"]


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_invalid_registry_fails_start(self, make_backup_service, cluster_factory):
        service = make_backup_service(tables={"Bad Table": ("id",)})

        with pytest.raises(BackupConfigurationError):
            await service.start()
        assert cluster_factory.calls == 0

    @pytest.mark.asyncio
    async def test_schema_mismatch_is_only_a_warning(self, make_backup_service, caplog):
        factory = FakeClusterFactory(keyspaces={"mmanage_logs": FakeKeyspace({})})
        service = make_backup_service(factory=factory)

        with caplog.at_level(logging.WARNING, logger="mmanage.backup.registry"):
            await start_connected(service)

        assert "backup_users" in caplog.text
        assert service.is_connected()

    @pytest.mark.asyncio
    async def test_start_does_not_wait_for_connection(self, make_backup_service):
        clock = FakeClock(block=True)
        service = make_backup_service(factory=FakeClusterFactory(failures=1), clock=clock)

        await service.start()
        service.backup("backup_users", user(1))

        await wait_until(lambda: clock.sleeps == [30.0])
        assert service.status().state == "connecting"
        assert service.status().queue_depth == 1

    @pytest.mark.asyncio
    async def test_stop_while_offline_discards_buffer(self, make_backup_service, caplog):
        clock = FakeClock(block=True)
        factory = FakeClusterFactory(failures=1)
        service = make_backup_service(factory=factory, clock=clock)
        await service.start()
        service.backup("backup_users", user(1))
        await wait_until(lambda: clock.sleeps == [30.0])

        with caplog.at_level(logging.WARNING, logger="mmanage.backup.service"):
            await service.stop()

        assert "Discarding 1 buffered backup records" in caplog.text
        assert service.status().state == "disconnected"

    @pytest.mark.asyncio
    async def test_stop_during_slow_connect_shuts_late_cluster_down(self, make_backup_service):
        gate = threading.Event()
        factory = FakeClusterFactory(gate=gate)
        service = make_backup_service(factory=factory)
        await service.start()
        await wait_until(lambda: factory.calls == 1 and factory.current.connect_started.is_set())

        await service.stop()
        gate.set()

        await wait_until(lambda: factory.current.is_shutdown)
        assert not service.is_connected()

    @pytest.mark.asyncio
    async def test_stop_waits_for_pending_writes(self, make_backup_service, cluster_factory):
        service = make_backup_service()
        await start_connected(service)
        service.backup("backup_users", user(1))

        await service.stop()

        assert written_ids(cluster_factory.session) == ["u1"]
        assert cluster_factory.current.is_shutdown

    @pytest.mark.asyncio
    async def test_status_reports_counters(self, make_backup_service):
        service = make_backup_service(capacity=1)
        service.backup("backup_users", user(1))
        service.backup("backup_users", user(2))

        status = service.status()
        assert status.as_dict() == {
            "state": "disconnected",
            "queue_depth": 1,
            "queue_capacity": 1,
            "sent": 0,
            "queued": 1,
            "dropped": 1,
            "failed": 0,
        }
