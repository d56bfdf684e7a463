"""End-to-end tests for TvhCoordinator against a scripted server."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest

from tvhclient_core import (
    ServiceStatus,
    SyncState,
    TimerRequest,
    TvhConfig,
    TvhConfigurationError,
    TvhCoordinator,
)
from tvhclient_core.models import SeriesTimerRequest

from .conftest import FakeTvhServer, channel_add, create_mock_response, dvr_add


def _config(**overrides) -> TvhConfig:
    settings = {
        "server_name": "tvh.local",
        "username": "user",
        "password": "secret",
        "request_timeout": 1.0,
        "initial_sync_timeout": 1.0,
        "keepalive_interval": None,
    }
    settings.update(overrides)
    return TvhConfig(**settings)


def _catalog() -> list[dict]:
    return [
        channel_add(1, "BBC One", number=101, services=[{"name": "DVB-T #1", "type": "HDTV"}]),
        channel_add(2, "BBC Two", number=102, services=[{"name": "DVB-T #1", "type": "HDTV"}]),
        dvr_add(10, 1, "News", "scheduled"),
        dvr_add(11, 2, "Film", "completed"),
        {"method": "autorecEntryAdd", "id": "r1", "title": "Doctor Who", "channel": 1},
        {"method": "tagAdd", "tagId": 1, "tagName": "HD"},
    ]


@pytest.fixture
def coordinator(fake_server: FakeTvhServer):
    fake_server.catalog = _catalog()
    return TvhCoordinator(_config(), connection_factory=fake_server.factory)


class TestInitialSync:
    """Tests for connect, handshake and the initial-sync barrier."""

    @pytest.mark.asyncio
    async def test_first_read_connects_and_syncs(self, coordinator, fake_server):
        channels = await coordinator.get_channels()

        assert sorted(c.name for c in channels) == ["BBC One", "BBC Two"]
        assert fake_server.methods() == [
            "hello",
            "authenticate",
            "getDiskSpace",
            "enableAsyncMetadata",
        ]
        assert coordinator.sync_state is SyncState.SYNC_COMPLETE
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_replayed_recording_references_its_channel(self, fake_server):
        fake_server.catalog = [
            channel_add(1, "BBC One"),
            channel_add(2, "BBC Two"),
            dvr_add(10, 1, "News", "completed"),
        ]
        coordinator = TvhCoordinator(_config(), connection_factory=fake_server.factory)

        channels = await coordinator.get_channels()
        recordings = await coordinator.get_recordings()

        assert {c.id for c in channels} == {"1", "2"}
        assert [(r.id, r.channel_id, r.channel_name) for r in recordings] == [
            ("10", "1", "BBC One")
        ]
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_catalog_views(self, coordinator):
        timers = await coordinator.get_timers()
        recordings = await coordinator.get_recordings()
        rules = await coordinator.get_series_timers()
        tuners = await coordinator.get_tuners()

        assert [(t.id, t.channel_name) for t in timers] == [("10", "BBC One")]
        assert [(r.id, r.channel_name) for r in recordings] == [("11", "BBC Two")]
        assert [(r.id, r.channel_name) for r in rules] == [("r1", "BBC One")]
        assert [(t.id, t.channel_ids) for t in tuners] == [("DVB-T #1", ("1", "2"))]
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_reads_wait_for_sync_ceiling(self, fake_server):
        """Test reads return empty when initialSyncCompleted never arrives."""
        fake_server.catalog = _catalog()
        fake_server.complete_sync = False
        coordinator = TvhCoordinator(
            _config(initial_sync_timeout=0.05), connection_factory=fake_server.factory
        )

        assert await coordinator.get_channels() == []
        status = await coordinator.get_status_info()

        assert status.status is ServiceStatus.UNAVAILABLE
        assert coordinator.sync_state is SyncState.SYNC_IN_PROGRESS
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_late_sync_opens_barrier(self, fake_server):
        fake_server.complete_sync = False
        coordinator = TvhCoordinator(_config(), connection_factory=fake_server.factory)

        reader = asyncio.ensure_future(coordinator.get_channels())
        await asyncio.sleep(0.02)
        assert not reader.done()

        fake_server.connection.push(channel_add(5, "Late"))
        fake_server.connection.push({"method": "initialSyncCompleted"})

        assert [c.name for c in await reader] == ["Late"]
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_cancel_event_returns_empty(self, fake_server):
        fake_server.complete_sync = False
        coordinator = TvhCoordinator(_config(), connection_factory=fake_server.factory)
        cancel_event = asyncio.Event()

        reader = asyncio.ensure_future(coordinator.get_timers(cancel_event))
        await asyncio.sleep(0.02)
        cancel_event.set()

        assert await reader == []
        await coordinator.close()


class TestConfiguration:
    """Tests for configuration handling."""

    @pytest.mark.asyncio
    async def test_missing_settings_raise(self, fake_server):
        coordinator = TvhCoordinator(
            _config(password=""), connection_factory=fake_server.factory
        )

        with pytest.raises(TvhConfigurationError):
            await coordinator.get_channels()
        assert fake_server.connections == []

    @pytest.mark.asyncio
    async def test_out_of_range_priority_uses_default(self, fake_server):
        fake_server.catalog = _catalog()
        coordinator = TvhCoordinator(
            _config(priority=9), connection_factory=fake_server.factory
        )
        start = datetime(2030, 1, 1, 20, tzinfo=UTC)

        await coordinator.create_timer(TimerRequest("1", start, start + timedelta(hours=1)))

        (request,) = [r for r in fake_server.requests if r["method"] == "addDvrEntry"]
        assert request["priority"] == 2
        await coordinator.close()


class TestConnectionFailures:
    """Tests for failure handling and reconnection."""

    @pytest.mark.asyncio
    async def test_unreachable_server_returns_neutral_results(self, fake_server):
        fake_server.refuse_connect = True
        coordinator = TvhCoordinator(_config(), connection_factory=fake_server.factory)

        assert await coordinator.get_channels() == []
        assert await coordinator.get_channel_stream("1") is None
        status = await coordinator.get_status_info()
        assert status.status is ServiceStatus.UNAVAILABLE
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_rejected_credentials_retry_with_new_session(self, fake_server):
        fake_server.password = "other"
        coordinator = TvhCoordinator(_config(), connection_factory=fake_server.factory)

        assert await coordinator.ensure_connection() is False
        assert await coordinator.ensure_connection() is False

        assert len(fake_server.connections) == 2
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_forced_restart_cycles_barrier_and_clears_caches(self, fake_server):
        """Test a session needing restart is replaced and every cache starts over."""
        fake_server.catalog = _catalog()
        coordinator = TvhCoordinator(_config(), connection_factory=fake_server.factory)
        assert len(await coordinator.get_series_timers()) == 1

        barrier = coordinator._barrier
        states: list[SyncState] = []
        set_state = barrier._set_state

        def record(state: SyncState) -> None:
            states.append(state)
            set_state(state)

        barrier._set_state = record  # type: ignore[method-assign]
        fake_server.catalog = [channel_add(3, "Channel 4", services=[{"name": "IPTV"}])]

        with patch.object(coordinator.session, "needs_restart", return_value=True):
            assert await coordinator.ensure_connection() is True
        assert await coordinator.wait_for_initial_sync() is True

        assert states == [
            SyncState.DISCONNECTED,
            SyncState.CONNECTED,
            SyncState.SYNC_IN_PROGRESS,
            SyncState.SYNC_COMPLETE,
        ]
        stats = coordinator.cache_stats()
        assert stats["channel"]["entities"] == 1
        assert stats["dvr"]["entities"] == 0
        assert stats["autorec"]["entities"] == 0
        assert [t.id for t in await coordinator.get_tuners()] == ["IPTV"]
        assert len(fake_server.connections) == 2
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_reconnect_clears_caches_and_resyncs(self, coordinator, fake_server):
        """Test a lost connection closes the barrier and the next call starts fresh."""
        changed = MagicMock()
        coordinator.on_data_source_changed(changed)
        assert len(await coordinator.get_channels()) == 2

        fake_server.connection.drop()
        await asyncio.sleep(0.01)

        changed.assert_called_once()
        assert coordinator.sync_state is SyncState.DISCONNECTED
        assert not coordinator.is_connected

        fake_server.catalog = [channel_add(3, "Channel 4")]
        channels = await coordinator.get_channels()

        assert [c.name for c in channels] == ["Channel 4"]
        assert coordinator.sync_state is SyncState.SYNC_COMPLETE
        assert await coordinator.get_timers() == []
        assert len(fake_server.connections) == 2
        await coordinator.close()


class TestPushUpdates:
    """Tests for deltas received after the initial sync."""

    @pytest.mark.asyncio
    async def test_dvr_update_fires_callback_and_updates_views(self, coordinator, fake_server):
        assert len(await coordinator.get_timers()) == 1
        refresh = MagicMock()
        coordinator.on_recording_status_changed(refresh)

        fake_server.connection.push({"method": "dvrEntryUpdate", "id": 10, "state": "recording"})
        await asyncio.sleep(0.01)

        refresh.assert_called_once()
        assert await coordinator.get_timers() == []
        assert {r.id for r in await coordinator.get_recordings()} == {"10", "11"}
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_update_for_deleted_entry_is_counted(self, coordinator, fake_server):
        await coordinator.get_timers()

        fake_server.connection.push({"method": "dvrEntryDelete", "id": 10})
        fake_server.connection.push({"method": "dvrEntryUpdate", "id": 10, "state": "completed"})
        await asyncio.sleep(0.01)

        (recording,) = [r for r in await coordinator.get_recordings() if r.id == "10"]
        assert recording.title is None
        assert coordinator.cache_stats()["dvr"]["unknown_updates"] == 1
        await coordinator.close()


class TestMutations:
    """Tests for recording and timer mutations."""

    @pytest.mark.asyncio
    async def test_create_timer_sends_padding_in_minutes(self, coordinator, fake_server):
        start = datetime(2030, 1, 1, 20, tzinfo=UTC)
        await coordinator.create_timer(
            TimerRequest(
                "1",
                start,
                start + timedelta(hours=1),
                name="News",
                pre_padding_seconds=120,
                post_padding_seconds=600,
            )
        )

        (request,) = [r for r in fake_server.requests if r["method"] == "addDvrEntry"]
        assert request["channelId"] == 1
        assert request["start"] == int(start.timestamp())
        assert request["startExtra"] == 2
        assert request["stopExtra"] == 10
        assert request["creator"] == "user"
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_server_error_is_logged_not_raised(self, coordinator, fake_server, caplog):
        fake_server.handlers["deleteDvrEntry"] = lambda _m: {
            "success": 0,
            "error": "Entry not found",
        }

        with caplog.at_level(logging.ERROR):
            await coordinator.delete_recording("11")

        assert "Entry not found" in caplog.text
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_simple_mutations(self, coordinator, fake_server):
        await coordinator.cancel_timer("10")
        await coordinator.cancel_series_timer("r1")
        await coordinator.update_timer(
            TimerRequest(
                "1",
                datetime(2030, 1, 1, tzinfo=UTC),
                datetime(2030, 1, 1, 1, tzinfo=UTC),
                pre_padding_seconds=60,
                id="10",
            )
        )

        sent = {r["method"]: r for r in fake_server.requests}
        assert sent["cancelDvrEntry"]["id"] == 10
        assert sent["deleteAutorecEntry"]["id"] == "r1"
        assert sent["updateDvrEntry"]["startExtra"] == 1
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_series_timer_rules(self, coordinator, fake_server):
        await coordinator.create_series_timer(
            SeriesTimerRequest("Doctor Who", channel_id="1", days=(5, 6), start_minutes=1140)
        )
        await coordinator.update_series_timer(SeriesTimerRequest("News", id="r1"))

        sent = {r["method"]: r for r in fake_server.requests}
        assert sent["addAutorecEntry"]["daysOfWeek"] == 0b1100000
        assert sent["addAutorecEntry"]["start"] == 1140
        assert sent["updateAutorecEntry"]["id"] == "r1"
        assert "channelId" not in sent["updateAutorecEntry"]
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_update_without_id_sends_nothing(self, coordinator, fake_server):
        start = datetime(2030, 1, 1, tzinfo=UTC)
        await coordinator.update_timer(TimerRequest("1", start, start))
        assert "updateDvrEntry" not in fake_server.methods()
        await coordinator.close()


class TestTimeouts:
    """Tests for deadline supervision."""

    @pytest.mark.asyncio
    async def test_unanswered_request_returns_empty(self, fake_server):
        fake_server.catalog = _catalog()
        fake_server.silent.add("getEvents")
        coordinator = TvhCoordinator(
            _config(request_timeout=0.05), connection_factory=fake_server.factory
        )
        start = datetime(2024, 1, 1, tzinfo=UTC)

        programs = await coordinator.get_programs("1", start, start + timedelta(days=1))

        assert programs == []
        await coordinator.close()


    @pytest.mark.asyncio
    async def test_sync_wait_is_bounded_by_request_deadline(self, fake_server):
        """Test the barrier wait ends at the operation deadline when it is nearer."""
        fake_server.complete_sync = False
        coordinator = TvhCoordinator(
            _config(request_timeout=0.05, initial_sync_timeout=30),
            connection_factory=fake_server.factory,
        )
        started = time.monotonic()

        assert await coordinator.get_channels() == []
        assert time.monotonic() - started < 5
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_unencodable_mutation_is_logged(self, coordinator, caplog):
        """Test a request the codec rejects is logged and leaves nothing pending."""
        start = datetime(2030, 1, 1, tzinfo=UTC)

        with caplog.at_level(logging.ERROR):
            result = await coordinator.create_timer(
                TimerRequest("1", start, start, pre_padding_seconds=90.0)  # type: ignore[arg-type]
            )

        assert result is None
        assert "create_timer" in caplog.text
        assert coordinator.session.correlator.pending_count == 0
        await coordinator.close()


class TestPrograms:
    """Tests for guide queries."""

    @pytest.mark.asyncio
    async def test_naive_window_is_read_as_utc(self, coordinator, fake_server):
        fake_server.handlers["getEvents"] = lambda m: {
            "events": [
                {"eventId": 7, "channelId": m["channelId"], "title": "News", "start": 1_700_000_000}
            ]
        }

        programs = await coordinator.get_programs(
            "1", datetime(2023, 11, 14), datetime(2023, 11, 15)
        )

        assert [(p.id, p.title) for p in programs] == [("7", "News")]
        await coordinator.close()


class TestStreamsAndStatus:
    """Tests for stream tickets and status info."""

    @pytest.mark.asyncio
    async def test_channel_stream_url(self, coordinator, fake_server):
        fake_server.handlers["getTicket"] = lambda m: {
            "path": f"/stream/channelid/{m.get('channelId', m.get('dvrId'))}",
            "ticket": "abc123",
        }

        first = await coordinator.get_channel_stream("1")
        second = await coordinator.get_recording_stream("11")

        assert first is not None and second is not None
        assert first.url == "http://tvh.local:9981/stream/channelid/1?ticket=abc123"
        assert first.id != second.id
        await coordinator.close_live_stream(first.id)
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_ticket_error_returns_none(self, coordinator, fake_server):
        fake_server.handlers["getTicket"] = lambda _m: {"error": "No such channel"}
        assert await coordinator.get_channel_stream("99") is None
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_status_info(self, fake_server, mock_session):
        fake_server.catalog = _catalog()
        mock_session.get.return_value = create_mock_response(200, {"api_version": 15})
        coordinator = TvhCoordinator(
            _config(), http_session=mock_session, connection_factory=fake_server.factory
        )

        status = await coordinator.get_status_info()

        assert status.status is ServiceStatus.OK
        assert status.server_version == "4.2.8"
        assert status.protocol_version == 25
        assert status.http_api_version == 15
        assert [t.id for t in status.tuners] == ["DVB-T #1"]
        assert "HTSP v25" in status.version_text
        await coordinator.close()

    @pytest.mark.asyncio
    async def test_new_timer_defaults(self, coordinator):
        defaults = await coordinator.get_new_timer_defaults()
        assert defaults.pre_padding_seconds == 0
        assert defaults.record_any_channel
