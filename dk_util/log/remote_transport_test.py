import asyncio
import json
from datetime import datetime

from dk_util.config.data_types import REMOTE_LOG_SERVICE_TYPE
from dk_util.log.data_types import LogRecord
from dk_util.log.data_types import RemoteTransportState
from dk_util.log.discovery import ServiceFound
from dk_util.log.discovery import ServiceLost
from dk_util.log.remote_transport import RemoteLogTransport
from dk_util.log.remote_transport import build_websocket_url
from dk_util.log.testing import FakeConnector
from dk_util.log.testing import FakeServiceDiscovery
from dk_util.primitives import LogLevel


def _make_record(message: str) -> LogRecord:
    return LogRecord(timestamp=datetime(2024, 1, 15, 12, 0), level=LogLevel.INFO, message=message)


def _make_transport(
    connector: FakeConnector,
    discovery: FakeServiceDiscovery | None = None,
    reconnect_interval_seconds: float = 60.0,
    connect_timeout_seconds: float = 10.0,
) -> RemoteLogTransport:
    return RemoteLogTransport(
        discovery=discovery if discovery is not None else FakeServiceDiscovery(),
        connector=connector,
        reconnect_interval_seconds=reconnect_interval_seconds,
        connect_timeout_seconds=connect_timeout_seconds,
    )


def _sent_messages(connector: FakeConnector) -> list[str]:
    return [json.loads(frame)["message"] for frame in connector.latest.sent]


def test_build_websocket_url() -> None:
    assert build_websocket_url("192.168.1.5", 8080) == "ws://192.168.1.5:8080"
    assert build_websocket_url("desk.local", 8080, "/logs") == "ws://desk.local:8080/logs"
    assert build_websocket_url("fe80::1", 8080) == "ws://[fe80::1]:8080"


def test_send_log_is_ignored_while_disabled() -> None:
    transport = _make_transport(FakeConnector())

    transport.send_log(_make_record("dropped"))

    assert transport.buffered_payloads == []
    assert transport.state == RemoteTransportState.DISABLED


def test_manual_enable_without_host_stays_disabled() -> None:
    connector = FakeConnector()
    transport = _make_transport(connector)

    asyncio.run(transport.enable(is_auto_discover=False, port=9000))

    assert transport.is_enabled is False
    assert transport.state == RemoteTransportState.DISABLED
    assert connector.urls == []


def test_buffer_drops_oldest_when_full() -> None:
    connector = FakeConnector(is_failing=True)
    transport = _make_transport(connector)

    async def run() -> list[str]:
        await transport.enable(is_auto_discover=False, host="10.0.0.1", port=9000)
        for index in range(101):
            transport.send_log(_make_record(f"m{index}"))
        messages = [payload["message"] for payload in transport.buffered_payloads]
        await transport.disable()
        return messages

    messages = asyncio.run(run())

    assert len(messages) == 100
    assert messages[0] == "m1"
    assert messages[-1] == "m100"


def test_buffer_is_flushed_in_order_on_connect() -> None:
    connector = FakeConnector()
    discovery = FakeServiceDiscovery()
    transport = _make_transport(connector, discovery)

    async def run() -> None:
        await transport.enable()
        for index in range(3):
            transport.send_log(_make_record(f"queued {index}"))
        await discovery.emit(ServiceFound(service_name="desk", host="10.0.0.7", port=7000))
        transport.send_log(_make_record("live"))
        await transport.drain()
        await transport.disable()

    asyncio.run(run())

    assert connector.urls == ["ws://10.0.0.7:7000"]
    assert _sent_messages(connector) == ["queued 0", "queued 1", "queued 2", "live"]


def test_auto_discover_uses_log_service_type() -> None:
    discovery = FakeServiceDiscovery()
    transport = _make_transport(FakeConnector(), discovery)

    async def run() -> RemoteTransportState:
        await transport.enable()
        state = transport.state
        await transport.disable()
        return state

    assert asyncio.run(run()) == RemoteTransportState.DISCOVERING
    assert discovery.service_types == [REMOTE_LOG_SERVICE_TYPE]
    assert discovery.stop_count == 1


def test_discovery_ignores_services_with_other_names() -> None:
    connector = FakeConnector()
    discovery = FakeServiceDiscovery()
    transport = _make_transport(connector, discovery)

    async def run() -> None:
        await transport.enable(service_name="wanted")
        await discovery.emit(ServiceFound(service_name="other", host="10.0.0.8", port=7000))
        await discovery.emit(ServiceFound(service_name="wanted", host="10.0.0.9", port=7001))
        await transport.disable()

    asyncio.run(run())

    assert connector.urls == ["ws://10.0.0.9:7001"]


def test_disable_clears_buffer() -> None:
    transport = _make_transport(FakeConnector())

    async def run() -> None:
        await transport.enable()
        transport.send_log(_make_record("pending"))
        await transport.disable()

    asyncio.run(run())

    assert transport.buffered_payloads == []
    assert transport.state == RemoteTransportState.DISABLED
    assert transport.is_enabled is False


def test_second_enable_is_ignored() -> None:
    discovery = FakeServiceDiscovery()
    transport = _make_transport(FakeConnector(), discovery)

    async def run() -> None:
        await transport.enable()
        await transport.enable()
        await transport.disable()

    asyncio.run(run())

    assert discovery.start_count == 1


def test_connect_timeout_counts_as_failure() -> None:
    connector = FakeConnector(is_hanging=True)
    transport = _make_transport(connector, connect_timeout_seconds=0.05)
    statuses: list[bool] = []
    transport.set_status_callback(statuses.append)

    async def run() -> RemoteTransportState:
        await transport.enable(is_auto_discover=False, host="10.0.0.1", port=9000)
        state = transport.state
        await transport.disable()
        return state

    assert asyncio.run(run()) == RemoteTransportState.DISCONNECTED
    assert statuses == [False]
    assert transport.is_connected is False


def test_status_callback_failure_is_isolated(loguru_messages: list[str]) -> None:
    transport = _make_transport(FakeConnector())

    def broken_callback(is_connected: bool) -> None:
        raise RuntimeError("ui went away")

    transport.set_status_callback(broken_callback)

    async def run() -> bool:
        await transport.enable(is_auto_discover=False, host="10.0.0.1", port=9000)
        is_connected = transport.is_connected
        await transport.disable()
        return is_connected

    assert asyncio.run(run()) is True
    assert any("status callback failed" in message for message in loguru_messages)


def test_manual_endpoint_reconnects_after_peer_close() -> None:
    connector = FakeConnector()
    transport = _make_transport(connector, reconnect_interval_seconds=0.01)

    async def run() -> None:
        await transport.enable(is_auto_discover=False, host="10.0.0.1", port=9000, path="/logs")
        connector.latest.close_from_peer()
        for _ in range(200):
            if len(connector.connections) == 2 and transport.is_connected:
                break
            await asyncio.sleep(0.01)
        await transport.disable()

    asyncio.run(run())

    assert connector.urls == ["ws://10.0.0.1:9000/logs", "ws://10.0.0.1:9000/logs"]


def test_reconnect_during_hanging_attempt_still_connects() -> None:
    connector = FakeConnector(is_failing=True)
    transport = _make_transport(connector, reconnect_interval_seconds=0.01)

    async def run() -> tuple[bool, RemoteTransportState]:
        await transport.enable(is_auto_discover=False, host="10.0.0.1", port=9000)
        connector.is_failing = False
        connector.is_hanging = True
        for _ in range(200):
            if len(connector.urls) >= 2:
                break
            await asyncio.sleep(0.01)
        connector.is_hanging = False
        await transport.reconnect()
        result = (transport.is_connected, transport.state)
        await transport.disable()
        return result

    is_connected, state = asyncio.run(run())

    assert is_connected
    assert state == RemoteTransportState.CONNECTED
    assert len(connector.urls) == 3

def test_records_sent_while_disconnected_are_buffered_then_delivered() -> None:
    connector = FakeConnector()
    transport = _make_transport(connector)

    async def run() -> None:
        await transport.enable(is_auto_discover=False, host="10.0.0.1", port=9000)
        first = connector.latest
        first.close_from_peer()
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        transport.send_log(_make_record("while down"))
        await transport.reconnect()
        await transport.drain()
        await transport.disable()

    asyncio.run(run())

    assert len(connector.connections) == 2
    assert _sent_messages(connector) == ["while down"]


def test_failed_send_rebuffers_record() -> None:
    connector = FakeConnector()
    transport = _make_transport(connector)

    async def run() -> list[str]:
        await transport.enable(is_auto_discover=False, host="10.0.0.1", port=9000)
        connector.latest.is_send_failing = True
        transport.send_log(_make_record("retry me"))
        await transport.drain()
        messages = [payload["message"] for payload in transport.buffered_payloads]
        await transport.disable()
        return messages

    assert asyncio.run(run()) == ["retry me"]


def test_lost_service_disconnects_and_rediscovery_reconnects() -> None:
    connector = FakeConnector()
    discovery = FakeServiceDiscovery()
    transport = _make_transport(connector, discovery)

    async def run() -> tuple[bool, bool]:
        await transport.enable()
        await discovery.emit(ServiceFound(service_name="desk", host="10.0.0.7", port=7000))
        await discovery.emit(ServiceLost(service_name="desk"))
        is_connected_after_loss = transport.is_connected
        await transport.reconnect()
        await discovery.emit(ServiceFound(service_name="desk", host="10.0.0.7", port=7000))
        is_connected_again = transport.is_connected
        await transport.disable()
        return is_connected_after_loss, is_connected_again

    assert asyncio.run(run()) == (False, True)
    assert discovery.start_count == 2
    assert len(connector.connections) == 2
    assert connector.connections[0].is_closed


def test_inbound_messages_are_only_logged(loguru_messages: list[str]) -> None:
    connector = FakeConnector()
    transport = _make_transport(connector)

    async def run() -> bool:
        await transport.enable(is_auto_discover=False, host="10.0.0.1", port=9000)
        connector.latest.push_message("ping")
        await asyncio.sleep(0.01)
        is_connected = transport.is_connected
        await transport.disable()
        return is_connected

    assert asyncio.run(run()) is True
    assert any("ping" in message for message in loguru_messages)
