from types import SimpleNamespace
from unittest import mock

import pytest

from gribi_failover.errors import TopologyError, TrafficError
from gribi_failover.otg import OtgClient


@pytest.fixture
def api():
    return mock.MagicMock()


@pytest.fixture
def otg(config, api):
    return OtgClient(config=config.ate, api=api, sleep=lambda seconds: None)


def flow_metric(name, tx, rx):
    return SimpleNamespace(name=name, frames_tx=tx, frames_rx=rx, frames_tx_rate=0, frames_rx_rate=0)


def neighbor(ipv4, mac):
    return SimpleNamespace(ethernet_name="atePort1.Eth", ipv4_address=ipv4, link_layer_address=mac)


def test_creates_snappi_api_from_config(config):
    with mock.patch("gribi_failover.otg.snappi.api") as snappi_api:
        OtgClient(config=config.ate)

    snappi_api.assert_called_once()
    assert snappi_api.call_args.kwargs["location"] == "https://192.0.2.200:8443"
    assert snappi_api.call_args.kwargs["verify"] is False


def test_start_protocols(otg, api):
    otg.start_protocols()

    cs = api.control_state.return_value
    assert cs.choice == cs.PROTOCOL
    assert cs.protocol.choice == cs.protocol.ALL
    assert cs.protocol.all.state == cs.protocol.all.START
    api.set_control_state.assert_called_once_with(cs)


def test_start_and_stop_traffic(otg, api):
    cs = api.control_state.return_value

    otg.start_traffic()
    assert cs.choice == cs.TRAFFIC
    assert cs.traffic.choice == cs.traffic.FLOW_TRANSMIT
    assert cs.traffic.flow_transmit.state == cs.traffic.flow_transmit.START

    otg.stop_traffic()
    assert cs.traffic.flow_transmit.state == cs.traffic.flow_transmit.STOP
    assert api.set_control_state.call_count == 2


def test_push_config(otg, api):
    cfg = object()

    otg.push_config(cfg)

    api.set_config.assert_called_once_with(cfg)


def test_flow_result_without_loss(otg, api):
    api.get_metrics.return_value.flow_metrics = [flow_metric("BaseFlow", 1000, 1000)]

    result = otg.flow_result("BaseFlow")

    assert result.loss_pct == 0
    assert api.metrics_request.return_value.flow.flow_names == ["BaseFlow"]


def test_flow_result_with_loss(otg, api):
    api.get_metrics.return_value.flow_metrics = [flow_metric("BaseFlow", 1000, 250)]

    assert otg.flow_result("BaseFlow").loss_pct == 75.0


def test_flow_result_with_total_loss(otg, api):
    api.get_metrics.return_value.flow_metrics = [flow_metric("BaseFlow", 1000, 0)]

    assert otg.flow_result("BaseFlow").loss_pct == 100.0


def test_flow_result_without_transmission(otg, api):
    api.get_metrics.return_value.flow_metrics = [flow_metric("BaseFlow", 0, 0)]

    with pytest.raises(TrafficError, match="transmitted no frames"):
        otg.flow_result("BaseFlow")


def test_flow_result_unknown_flow(otg, api):
    api.get_metrics.return_value.flow_metrics = []

    with pytest.raises(TrafficError, match="No metrics"):
        otg.flow_result("BaseFlow")


def test_log_metrics(otg, api, snappi_api, caplog):
    cfg = snappi_api.config()
    cfg.ports.add(name="port1", location="eth1")
    cfg.flows.add(name="BaseFlow")
    api.get_metrics.return_value.flow_metrics = [flow_metric("BaseFlow", 1000, 1000)]
    api.get_metrics.return_value.port_metrics = [flow_metric("port1", 1000, 0)]

    with caplog.at_level("INFO", logger="gribi_failover.otg"):
        otg.log_flow_metrics(cfg)
        otg.log_port_metrics(cfg)

    assert "BaseFlow" in caplog.text
    assert "port1" in caplog.text
    assert api.metrics_request.return_value.port.port_names == ["port1"]


def test_neighbor_mac(otg, api):
    api.get_states.return_value.ipv4_neighbors = [
        neighbor("192.0.2.9", "02:1a:00:00:00:09"),
        neighbor("192.0.2.1", "02:1a:00:00:00:01"),
    ]

    assert otg.neighbor_mac("atePort1.Eth", "192.0.2.1") == "02:1a:00:00:00:01"
    assert api.states_request.return_value.ipv4_neighbors.ethernet_names == ["atePort1.Eth"]


def test_neighbor_mac_unresolved(otg, api):
    api.get_states.return_value.ipv4_neighbors = [neighbor("192.0.2.1", None)]

    with pytest.raises(TopologyError):
        otg.neighbor_mac("atePort1.Eth", "192.0.2.1")


def test_wait_for_arp_polls_until_resolved(config, api):
    sleeps = []
    otg = OtgClient(config=config.ate, api=api, sleep=sleeps.append)
    unresolved = SimpleNamespace(ipv4_neighbors=[neighbor("192.0.2.1", None)])
    resolved = SimpleNamespace(ipv4_neighbors=[neighbor("192.0.2.1", "02:1a:00:00:00:01")])
    api.get_states.side_effect = [unresolved, resolved]

    otg.wait_for_arp("atePort1.Eth", timeout=60, interval=2)

    assert sleeps == [2]


def test_wait_for_arp_times_out(otg, api):
    api.get_states.return_value.ipv4_neighbors = []

    with pytest.raises(TopologyError, match="Timed out"):
        otg.wait_for_arp("atePort1.Eth", timeout=0)
