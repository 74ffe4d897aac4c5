"""
Port plan and interface configuration for the DUT and the ATE.

Four links, each a /30 (IPv4) and /126 (IPv6), connect ATE port N to DUT
port N. Port 1 sources traffic; ports 2 and 3 are the primary egress links
and port 4 is the backup egress link.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Tuple

from gribi_failover.errors import TopologyError
from gribi_failover.gnmi import GnmiClient
from gribi_failover.models import PortAttributes

logger = logging.getLogger(__name__)

DUT_PORT1 = PortAttributes(name="dutPort1", ipv4="192.0.2.1", ipv6="2001:0db8::192:0:2:1")
ATE_PORT1 = PortAttributes(
    name="atePort1", mac="02:00:01:01:01:01", ipv4="192.0.2.2", ipv6="2001:0db8::192:0:2:2"
)
DUT_PORT2 = PortAttributes(name="dutPort2", ipv4="192.0.2.5", ipv6="2001:0db8::192:0:2:5")
ATE_PORT2 = PortAttributes(
    name="atePort2", mac="02:00:02:01:01:01", ipv4="192.0.2.6", ipv6="2001:0db8::192:0:2:6"
)
DUT_PORT3 = PortAttributes(name="dutPort3", ipv4="192.0.2.9", ipv6="2001:0db8::192:0:2:9")
ATE_PORT3 = PortAttributes(
    name="atePort3", mac="02:00:03:01:01:01", ipv4="192.0.2.10", ipv6="2001:0db8::192:0:2:a"
)
DUT_PORT4 = PortAttributes(name="dutPort4", ipv4="192.0.2.13", ipv6="2001:0db8::192:0:2:D")
ATE_PORT4 = PortAttributes(
    name="atePort4", mac="02:00:04:01:01:01", ipv4="192.0.2.14", ipv6="2001:0db8::192:0:2:E"
)


@dataclass(frozen=True)
class Link:
    """A logical port id with the addressing of both ends."""

    port: str
    dut: PortAttributes
    ate: PortAttributes


@dataclass(frozen=True)
class PortPlan:
    """The four DUT/ATE links of the testbed."""

    port1: Link
    port2: Link
    port3: Link
    port4: Link

    def __iter__(self) -> Iterator[Link]:
        return iter((self.port1, self.port2, self.port3, self.port4))

    def link(self, port: str) -> Link:
        for link in self:
            if link.port == port:
                return link
        raise TopologyError(f"Unknown port {port}")


DEFAULT_PLAN = PortPlan(
    port1=Link("port1", DUT_PORT1, ATE_PORT1),
    port2=Link("port2", DUT_PORT2, ATE_PORT2),
    port3=Link("port3", DUT_PORT3, ATE_PORT3),
    port4=Link("port4", DUT_PORT4, ATE_PORT4),
)


def interface_path(name: str) -> str:
    return f"/interfaces/interface[name={name}]"


def new_oc_interface(attrs: PortAttributes, name: str) -> Dict[str, Any]:
    """
    Build the OpenConfig interface (JSON_IETF) for a DUT port.

    Args:
        attrs: DUT side addressing
        name: Interface name on the device

    Returns:
        Interface subtree with an IPv4 and IPv6 address on subinterface 0
    """
    return {
        "name": name,
        "config": {
            "name": name,
            "description": attrs.name,
            "type": "iana-if-type:ethernetCsmacd",
            "enabled": True,
        },
        "subinterfaces": {
            "subinterface": [
                {
                    "index": 0,
                    "config": {"index": 0},
                    "openconfig-if-ip:ipv4": {
                        "addresses": {
                            "address": [
                                {
                                    "ip": attrs.ipv4,
                                    "config": {"ip": attrs.ipv4, "prefix-length": attrs.ipv4_len},
                                }
                            ]
                        }
                    },
                    "openconfig-if-ip:ipv6": {
                        "addresses": {
                            "address": [
                                {
                                    "ip": attrs.ipv6,
                                    "config": {"ip": attrs.ipv6, "prefix-length": attrs.ipv6_len},
                                }
                            ]
                        }
                    },
                }
            ]
        },
    }


def dut_interface_name(dut_ports: Dict[str, str], port: str) -> str:
    try:
        return dut_ports[port]
    except KeyError:
        raise TopologyError(f"DUT has no interface mapped to {port}") from None


def configure_dut(gnmi: GnmiClient, dut_ports: Dict[str, str], plan: PortPlan = DEFAULT_PLAN) -> None:
    """
    Replace the configuration of every planned DUT port.

    Args:
        gnmi: gNMI client for the DUT
        dut_ports: Logical port id mapped to interface name
        plan: Port plan
    """
    for link in plan:
        name = dut_interface_name(dut_ports, link.port)
        logger.info(f"Configuring DUT {link.port} ({name}) with {link.dut.ipv4}/{link.dut.ipv4_len}")
        gnmi.replace(interface_path(name), new_oc_interface(link.dut, name))


def add_to_otg(config: Any, port_name: str, location: str, ate: PortAttributes, dut: PortAttributes) -> Any:
    """
    Add a port and its emulated device to a snappi config.

    Args:
        config: snappi Config
        port_name: Logical port id, used as the snappi port name
        location: Port location on the traffic generator
        ate: ATE side addressing
        dut: DUT side addressing, used as the gateway

    Returns:
        The emulated device
    """
    port = config.ports.add(name=port_name, location=location)

    device = config.devices.add(name=ate.name)
    eth = device.ethernets.add(name=ate.ethernet_name)
    eth.connection.port_name = port.name
    eth.mac = ate.mac
    eth.ipv4_addresses.add(
        name=ate.ipv4_name, address=ate.ipv4, gateway=dut.ipv4, prefix=ate.ipv4_len
    )
    eth.ipv6_addresses.add(
        name=ate.ipv6_name, address=ate.ipv6, gateway=dut.ipv6, prefix=ate.ipv6_len
    )
    return device


def configure_ate(config: Any, ate_ports: Dict[str, str], plan: PortPlan = DEFAULT_PLAN) -> Any:
    """
    Populate a snappi config with the four planned ATE ports.

    Args:
        config: Empty snappi Config
        ate_ports: Logical port id mapped to port location
        plan: Port plan

    Returns:
        The populated config
    """
    for link in plan:
        if link.port not in ate_ports:
            raise TopologyError(f"ATE has no location mapped to {link.port}")
        logger.info(f"Adding ATE {link.port} at {ate_ports[link.port]} as {link.ate.name}")
        add_to_otg(config, link.port, ate_ports[link.port], link.ate, link.dut)
    return config


def create_flow(
    config: Any,
    name: str,
    dst_mac: str,
    dst_ip: str,
    plan: PortPlan = DEFAULT_PLAN,
    rx_ports: Tuple[str, ...] = ("port2", "port3", "port4"),
) -> Any:
    """
    Add an IPv4 flow from ATE port 1 towards a destination.

    Args:
        config: snappi Config holding the planned ports
        name: Flow name
        dst_mac: Destination MAC, the DUT port 1 address learned via ARP
        dst_ip: Destination IPv4 address
        plan: Port plan
        rx_ports: Ports the flow may egress on

    Returns:
        The snappi flow
    """
    src = plan.port1.ate
    logger.info(f"Creating flow {name}: {src.ipv4} -> {dst_ip} via {dst_mac}")

    flow = config.flows.add(name=name)
    flow.metrics.enable = True
    flow.tx_rx.port.tx_name = plan.port1.port
    flow.tx_rx.port.rx_names = list(rx_ports)

    eth = flow.packet.ethernet()[-1]
    eth.src.value = src.mac
    eth.dst.value = dst_mac

    ip = flow.packet.ipv4()[-1]
    ip.src.value = src.ipv4
    ip.dst.value = dst_ip
    return flow
