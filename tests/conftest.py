import logging

import pytest
import snappi

from gribi_failover.config import Config

logger = logging.getLogger(__name__)

DUT_PORTS = {"port1": "Ethernet1", "port2": "Ethernet2", "port3": "Ethernet3", "port4": "Ethernet4"}
ATE_PORTS = {"port1": "eth1", "port2": "eth2", "port3": "eth3", "port4": "eth4"}


def pytest_addoption(parser):
    testbed_group = parser.getgroup("Failover testbed options")

    testbed_group.addoption("--testbed-config", action="store", default=None,
                            help="Testbed JSON file; live tests are skipped without it")


@pytest.fixture
def testbed_data():
    """Valid testbed configuration dictionary."""
    return {
        "dut": {
            "gnmi": {"address": "192.0.2.100:9339", "username": "admin", "password": "admin"},
            "gribi": {"address": "192.0.2.100:9340", "plaintext": True},
            "ports": dict(DUT_PORTS),
        },
        "ate": {
            "location": "https://192.0.2.200:8443",
            "ports": dict(ATE_PORTS),
        },
    }


@pytest.fixture
def config(testbed_data):
    """Loaded configuration with no waits."""
    cfg = Config()
    cfg.load_config_data(testbed_data)
    cfg.timing.aft_timeout = 0
    cfg.timing.traffic_duration = 0
    cfg.timing.arp_timeout = 0
    cfg.timing.poll_interval = 0
    return cfg


@pytest.fixture
def snappi_api():
    """snappi API object; building configs does not contact a generator."""
    return snappi.api()
