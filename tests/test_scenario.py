import pytest

from gribi_failover.errors import GribiError, TrafficError
from gribi_failover.scenario import PHASES, BackupSwitchScenario
from gribi_failover.topology import ATE_PORT2, ATE_PORT3, DEFAULT_PLAN, DUT_PORT2, DUT_PORT3, Link, PortPlan

from fakes import DeviceGnmi, DeviceGribi, FakeDevice, FakeOtg


@pytest.fixture
def device():
    return FakeDevice()


def make_scenario(config, device, snappi_api, losses=None, fail_start=False):
    otg = FakeOtg(snappi_api, losses=losses)
    scenario = BackupSwitchScenario(
        config=config,
        gnmi=DeviceGnmi(device),
        otg=otg,
        gribi_factory=lambda: DeviceGribi(device, fail_start=fail_start),
        sleep=lambda seconds: None,
    )
    return scenario, otg


def teardown_events(device):
    start = device.events.index(("flush",), device.events.index(("add_ipv4", "203.0.113.0/24")))
    return device.events[start:]


def test_backup_switch(config, device, snappi_api):
    scenario, otg = make_scenario(config, device, snappi_api)

    results = scenario.run()

    assert [(r.phase, r.nhg_id, r.next_hops) for r in results] == [
        ("primaries-up", 100, ["192.0.2.6", "192.0.2.10"]),
        ("port2-down", 100, ["192.0.2.10"]),
        ("port3-down", 200, ["192.0.2.14"]),
    ]
    assert all(r.flow.loss_pct == 0 for r in results)
    assert teardown_events(device) == [
        ("flush",),
        ("close",),
        ("enabled", "Ethernet3", True),
        ("enabled", "Ethernet2", True),
    ]


def test_session_setup_order(config, device, snappi_api):
    scenario, _ = make_scenario(config, device, snappi_api)

    scenario.run()

    assert device.events[:9] == [
        ("start",),
        ("become_leader",),
        ("flush",),
        ("add_nh", 1003),
        ("add_nhg", 200),
        ("add_nh", 1001),
        ("add_nh", 1002),
        ("add_nhg", 100),
        ("add_ipv4", "203.0.113.0/24"),
    ]


def test_testbed_setup(config, device, snappi_api):
    scenario, otg = make_scenario(config, device, snappi_api)

    scenario.run()

    assert [path for _, path, _ in scenario.gnmi.sets[:4]] == [
        "/interfaces/interface[name=Ethernet1]",
        "/interfaces/interface[name=Ethernet2]",
        "/interfaces/interface[name=Ethernet3]",
        "/interfaces/interface[name=Ethernet4]",
    ]
    assert otg.events[:3] == ["push_config", "start_protocols", ("wait_for_arp", "atePort1.Eth")]

    top = otg.pushed[-1]
    flow = top.serialize(encoding=top.DICT)["flows"][0]
    assert flow["name"] == "BaseFlow"
    assert flow["packet"][0]["ethernet"]["dst"]["value"] == "02:1a:00:00:00:01"
    assert flow["packet"][1]["ipv4"]["dst"]["value"] == "203.0.113.0"


def test_traffic_loss_still_tears_down(config, device, snappi_api):
    scenario, _ = make_scenario(config, device, snappi_api, losses=[0.0, 5.0])

    with pytest.raises(TrafficError, match="want 0"):
        scenario.run()

    assert teardown_events(device) == [
        ("flush",),
        ("close",),
        ("enabled", "Ethernet2", True),
    ]
    assert device.prefixes == {}
    assert all(device.enabled.values())


def test_failed_start_only_closes(config, device, snappi_api):
    scenario, otg = make_scenario(config, device, snappi_api, fail_start=True)

    with pytest.raises(GribiError):
        scenario.run()

    assert device.events == [("start",), ("close",)]
    assert "start_traffic" not in otg.events


def test_fib_ack_selects_fib_mode(config, device, snappi_api):
    config.dut.fib_ack = True
    scenario, _ = make_scenario(config, device, snappi_api)

    assert scenario.install_mode.name == "FIB"
    assert scenario.network_instance == "DEFAULT"


def test_primary_group_left_empty_with_backup(config, snappi_api):
    device = FakeDevice(keep_primary=True)
    scenario, _ = make_scenario(config, device, snappi_api)

    results = scenario.run()

    last = results[-1]
    assert (last.phase, last.nhg_id, last.next_hops) == ("port3-down", 100, [])
    assert last.flow.loss_pct == 0


def test_expected_next_hops_follow_plan(config, device, snappi_api):
    scenario, _ = make_scenario(config, device, snappi_api)
    scenario.plan = PortPlan(
        port1=DEFAULT_PLAN.port1,
        port2=Link("port2", DUT_PORT3, ATE_PORT3),
        port3=Link("port3", DUT_PORT2, ATE_PORT2),
        port4=DEFAULT_PLAN.port4,
    )

    assert [scenario.expected_next_hops(phase) for phase in PHASES] == [
        ["192.0.2.10", "192.0.2.6"],
        ["192.0.2.6"],
        ["192.0.2.14"],
    ]
