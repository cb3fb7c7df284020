# tests/test_whatsapp_session.py
"""Tests for firewatch/infra/whatsapp_session.py: lifecycle and destination resolution."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from firewatch.core.errors import (
    ChannelConfigError,
    ChannelStateError,
    RemoteServiceError,
)
from firewatch.core.notify.models import Destination
from firewatch.infra.notification_channels import WhatsAppChannel
from firewatch.infra.whatsapp_session import SessionState, WhatsAppSessionManager
from firewatch.transport.whatsapp_bridge import ChatRef, WhatsAppBridgeClient, WhatsAppBridgeError

GROUP = ChatRef(id="12036304@g.us", name="Fire Wardens", is_group=True)
OWNED = ChatRef(id="120363001@newsletter", name="Cyprus Fire Alerts", is_channel=True)
FOLLOWED = ChatRef(id="120363002@newsletter", name="News", is_channel=True, is_read_only=True)


def _client() -> MagicMock:
    client = MagicMock(spec=WhatsAppBridgeClient)
    client.session_name = "default"
    client.start_session = AsyncMock(return_value={"name": "default"})
    client.get_status = AsyncMock(return_value="STARTING")
    client.get_qr = AsyncMock(return_value="2@qr-payload")
    client.list_chats = AsyncMock(return_value=[GROUP, ChatRef(id="357@c.us", name="Andreas")])
    client.list_channels = AsyncMock(return_value=[OWNED, FOLLOWED])
    client.check_number = AsyncMock(return_value="35799123456@c.us")
    client.send_text = AsyncMock(return_value={"id": {"_serialized": "true_x@c.us_ABC"}, "timestamp": 1754049600})
    client.send_file = AsyncMock(return_value={"id": "true_x@c.us_FILE", "timestamp": 1754049601})
    return client


async def _ready_manager(client=None, **kwargs) -> WhatsAppSessionManager:
    manager = WhatsAppSessionManager(client or _client(), group_name="Fire Wardens", **kwargs)
    await manager.handle_status("WORKING")
    assert manager.state == SessionState.READY
    return manager


# ============================================================================
# State machine
# ============================================================================

class TestSessionLifecycle:
    def test_starts_unpaired(self):
        manager = WhatsAppSessionManager(_client())
        assert manager.state == SessionState.UNPAIRED
        assert manager.pairing_code is None

    @pytest.mark.asyncio
    async def test_qr_moves_to_pairing(self):
        manager = WhatsAppSessionManager(_client())
        await manager.handle_status("SCAN_QR_CODE")
        assert manager.state == SessionState.PAIRING
        assert manager.pairing_code == "2@qr-payload"

    @pytest.mark.asyncio
    async def test_working_runs_ready_hook(self):
        client = _client()
        manager = WhatsAppSessionManager(client, group_name="Fire Wardens", channel="Cyprus Fire Alerts")
        await manager.handle_status("SCAN_QR_CODE")
        await manager.handle_status("WORKING")

        assert manager.state == SessionState.READY
        assert manager.pairing_code is None
        status = manager.status()
        assert status["isLoggedIn"] is True
        assert status["groupName"] == "Fire Wardens"
        assert status["selectedChannel"]["id"] == OWNED.id
        assert status["hasChannels"] is True

    @pytest.mark.asyncio
    async def test_ready_hook_only_runs_once(self):
        client = _client()
        manager = await _ready_manager(client)
        await manager.handle_status("WORKING")
        assert client.list_channels.await_count == 1

    @pytest.mark.asyncio
    async def test_missing_group_still_ready(self):
        manager = WhatsAppSessionManager(_client(), group_name="No Such Group")
        await manager.handle_status("WORKING")
        assert manager.state == SessionState.READY
        assert manager.status()["hasGroup"] is False

    @pytest.mark.asyncio
    async def test_auth_failure_returns_to_unpaired(self):
        manager = WhatsAppSessionManager(_client())
        await manager.handle_status("SCAN_QR_CODE")
        await manager.handle_status("FAILED")
        assert manager.state == SessionState.UNPAIRED
        assert manager.pairing_code is None

    @pytest.mark.asyncio
    async def test_disconnect_returns_to_unpaired(self):
        manager = await _ready_manager()
        await manager.handle_status("STOPPED")
        assert manager.state == SessionState.UNPAIRED
        assert manager.status()["isLoggedIn"] is False


# ============================================================================
# init / shutdown
# ============================================================================

class TestInit:
    @pytest.mark.asyncio
    async def test_init_is_idempotent(self):
        client = _client()
        manager = WhatsAppSessionManager(client, poll_interval=0.01)
        try:
            first = await manager.init()
            second = await manager.init(group_name="Other")
            assert client.start_session.await_count == 1
            assert first["hasClient"] is True
            assert second["state"] == first["state"]
        finally:
            await manager.shutdown()
        assert manager.is_running is False

    @pytest.mark.asyncio
    async def test_init_while_ready_does_not_restart(self):
        client = _client()
        manager = WhatsAppSessionManager(client, poll_interval=0.01)
        try:
            await manager.init()
            await manager.handle_status("WORKING")
            assert manager.state == SessionState.READY

            await manager.init()
            assert client.start_session.await_count == 1
        finally:
            await manager.shutdown()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("lost_status", ["STOPPED", "FAILED"])
    async def test_init_restarts_session_after_it_is_lost(self, lost_status):
        client = _client()
        manager = WhatsAppSessionManager(client, poll_interval=0.01)
        try:
            await manager.init()
            watcher = manager._task
            await manager.handle_status("WORKING")
            await manager.handle_status(lost_status)
            assert manager.state == SessionState.UNPAIRED
            assert manager.is_running is True

            await manager.init()
            assert client.start_session.await_count == 2
            assert manager._task is watcher

            # Watcher picks the new session up again
            await manager.handle_status("SCAN_QR_CODE")
            assert manager.state == SessionState.PAIRING

            await manager.init()
            assert client.start_session.await_count == 2
        finally:
            await manager.shutdown()

    @pytest.mark.asyncio
    async def test_init_after_shutdown_starts_new_watcher(self):
        client = _client()
        manager = WhatsAppSessionManager(client, poll_interval=0.01)
        await manager.init()
        await manager.shutdown()
        try:
            await manager.init()
            assert manager.is_running is True
            assert client.start_session.await_count == 2
        finally:
            await manager.shutdown()

    @pytest.mark.asyncio
    async def test_concurrent_init_starts_one_lifecycle(self):
        client = _client()
        manager = WhatsAppSessionManager(client, poll_interval=0.01)
        try:
            await asyncio.gather(manager.init(), manager.init(), manager.init())
            assert client.start_session.await_count == 1
        finally:
            await manager.shutdown()

    @pytest.mark.asyncio
    async def test_watcher_drives_state(self):
        client = _client()
        client.get_status = AsyncMock(return_value="SCAN_QR_CODE")
        manager = WhatsAppSessionManager(client, poll_interval=0.01)
        try:
            await manager.init()
            for _ in range(50):
                if manager.state == SessionState.PAIRING:
                    break
                await asyncio.sleep(0.01)
            assert manager.state == SessionState.PAIRING
            assert manager.pairing_code == "2@qr-payload"
        finally:
            await manager.shutdown()

    @pytest.mark.asyncio
    async def test_bridge_unreachable_on_init(self):
        client = _client()
        client.start_session = AsyncMock(side_effect=WhatsAppBridgeError(0, "Connection refused"))
        manager = WhatsAppSessionManager(client)
        with pytest.raises(RemoteServiceError):
            await manager.init()
        assert manager.is_running is False

    @pytest.mark.asyncio
    async def test_unconfigured_init_raises(self):
        with pytest.raises(ChannelConfigError):
            await WhatsAppSessionManager(None).init()

    @pytest.mark.asyncio
    async def test_shutdown_does_not_log_out(self):
        client = _client()
        manager = WhatsAppSessionManager(client, poll_interval=0.01)
        await manager.init()
        await manager.shutdown()
        assert not any("logout" in name for name, *_ in client.method_calls)


# ============================================================================
# send: state and destination priority
# ============================================================================

class TestSend:
    @pytest.mark.asyncio
    async def test_not_ready_fails_without_network_call(self):
        client = _client()
        manager = WhatsAppSessionManager(client)
        await manager.handle_status("SCAN_QR_CODE")
        with pytest.raises(ChannelStateError):
            await manager.send("alert", Destination(phone_number="+35799123456"))
        client.check_number.assert_not_awaited()
        client.send_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_phone_number_wins(self):
        client = _client()
        manager = await _ready_manager(client, channel="Cyprus Fire Alerts")
        sent = await manager.send("alert", Destination(phone_number="+357 99-123456", channel_name="News"))

        client.check_number.assert_awaited_once_with("35799123456")
        client.send_text.assert_awaited_once_with("35799123456@c.us", "alert")
        assert sent["message_id"] == "true_x@c.us_ABC"
        assert sent["timestamp"] == 1754049600

    @pytest.mark.asyncio
    async def test_number_not_on_whatsapp(self):
        client = _client()
        client.check_number = AsyncMock(return_value=None)
        manager = await _ready_manager(client)
        with pytest.raises(RemoteServiceError, match="not on WhatsApp"):
            await manager.send("alert", Destination(phone_number="+35700000000"))

    @pytest.mark.asyncio
    async def test_channel_id_by_newsletter_jid(self):
        client = _client()
        manager = await _ready_manager(client)
        await manager.send("alert", Destination(channel_id="120363001@newsletter"))
        client.send_text.assert_awaited_once_with(OWNED.id, "alert")

    @pytest.mark.asyncio
    async def test_channel_name(self):
        client = _client()
        manager = await _ready_manager(client)
        await manager.send("alert", Destination(channel_name="Cyprus Fire Alerts"))
        client.send_text.assert_awaited_once_with(OWNED.id, "alert")

    @pytest.mark.asyncio
    async def test_selected_channel_before_group(self):
        client = _client()
        manager = await _ready_manager(client, channel="120363001")
        await manager.send("alert", Destination())
        client.send_text.assert_awaited_once_with(OWNED.id, "alert")

    @pytest.mark.asyncio
    async def test_group_fallback(self):
        client = _client()
        manager = await _ready_manager(client)
        await manager.send("alert", Destination())
        client.send_text.assert_awaited_once_with(GROUP.id, "alert")

    @pytest.mark.asyncio
    async def test_unknown_channel_falls_back_to_group(self):
        client = _client()
        manager = await _ready_manager(client)
        await manager.send("alert", Destination(channel_name="Nope"))
        client.send_text.assert_awaited_once_with(GROUP.id, "alert")

    @pytest.mark.asyncio
    async def test_no_destination(self):
        client = _client()
        manager = WhatsAppSessionManager(client)
        await manager.handle_status("WORKING")
        with pytest.raises(ChannelConfigError, match="No destination"):
            await manager.send("alert", Destination())
        client.send_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_read_only_channel_rejected(self):
        client = _client()
        manager = await _ready_manager(client)
        with pytest.raises(ChannelStateError, match="read-only"):
            await manager.send("alert", Destination(channel_name="News"))
        client.send_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_media_sent_with_caption(self):
        client = _client()
        manager = await _ready_manager(client)
        sent = await manager.send(
            "alert text",
            Destination(media_path="/tmp/map.png", media_mime="image/png"),
        )
        client.send_file.assert_awaited_once_with(
            GROUP.id, "/tmp/map.png", "image/png", caption="alert text",
        )
        client.send_text.assert_not_awaited()
        assert sent["message_id"] == "true_x@c.us_FILE"

    @pytest.mark.asyncio
    async def test_bridge_send_error_wrapped(self):
        client = _client()
        client.send_text = AsyncMock(side_effect=WhatsAppBridgeError(500, "boom"))
        manager = await _ready_manager(client)
        with pytest.raises(RemoteServiceError, match="boom"):
            await manager.send("alert", Destination())


# ============================================================================
# Channel selection
# ============================================================================

class TestSelectChannel:
    @pytest.mark.asyncio
    async def test_select_by_id_user_and_name(self):
        manager = await _ready_manager()
        assert manager.select_channel("120363001@newsletter") == OWNED
        assert manager.select_channel("120363002") == FOLLOWED
        assert manager.select_channel("Cyprus Fire Alerts") == OWNED

    @pytest.mark.asyncio
    async def test_miss_clears_selection(self):
        manager = await _ready_manager(channel="Cyprus Fire Alerts")
        assert manager.select_channel("unknown") is None
        assert manager.selected_channel is None

    @pytest.mark.asyncio
    async def test_list_channels_requires_ready(self):
        manager = WhatsAppSessionManager(_client())
        with pytest.raises(ChannelStateError):
            await manager.list_channels()


# ============================================================================
# WhatsAppChannel adapter
# ============================================================================

class TestWhatsAppChannel:
    def test_configured_follows_manager(self):
        assert WhatsAppChannel(WhatsAppSessionManager(_client())).is_configured() is True
        assert WhatsAppChannel(WhatsAppSessionManager(None)).is_configured() is False

    @pytest.mark.asyncio
    async def test_send_returns_channel_result(self):
        manager = await _ready_manager()
        result = await WhatsAppChannel(manager).send("alert", Destination())
        assert result.channel == "whatsapp"
        assert result.message_id == "true_x@c.us_ABC"
        assert result.chat == {"id": GROUP.id}

    def test_from_settings_without_bridge_url(self):
        settings = MagicMock(whatsapp_bridge_url=None, whatsapp_group_name=None,
                             whatsapp_channel=None, whatsapp_poll_interval=3.0)
        assert WhatsAppSessionManager.from_settings(settings).is_configured is False


# ============================================================================
# Bridge client parsing
# ============================================================================

class TestBridgeClient:
    @pytest.mark.asyncio
    async def test_channel_roles_map_to_read_only(self):
        client = WhatsAppBridgeClient("http://bridge:3000/", api_key="k")
        rows = [
            {"id": "1@newsletter", "name": "Mine", "role": "OWNER"},
            {"id": "2@newsletter", "name": "Followed", "role": "SUBSCRIBER"},
        ]
        with patch.object(client, "_request", AsyncMock(return_value=rows)) as req:
            channels = await client.list_channels()
        req.assert_awaited_once_with("GET", "/api/default/channels")
        assert [c.is_read_only for c in channels] == [False, True]

    @pytest.mark.asyncio
    async def test_chats_detect_groups(self):
        client = WhatsAppBridgeClient("http://bridge:3000")
        rows = [{"id": {"_serialized": "9@g.us"}, "name": "G"}, {"id": "5@c.us", "name": "P"}]
        with patch.object(client, "_request", AsyncMock(return_value=rows)):
            chats = await client.list_chats()
        assert chats[0].is_group is True
        assert chats[1].is_group is False

    @pytest.mark.asyncio
    async def test_unknown_session_is_stopped(self):
        client = WhatsAppBridgeClient("http://bridge:3000")
        with patch.object(client, "_request", AsyncMock(side_effect=WhatsAppBridgeError(404, "nf"))):
            assert await client.get_status() == "STOPPED"

    def test_api_key_header(self):
        assert WhatsAppBridgeClient("http://b", api_key="secret")._headers()["X-Api-Key"] == "secret"
        assert "X-Api-Key" not in WhatsAppBridgeClient("http://b")._headers()
