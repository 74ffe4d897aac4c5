"""
OTG client module providing a direct interface to the traffic generator.

This client wraps the snappi API for the operations the failover test needs:
pushing configuration, starting protocols and traffic, reading flow and port
metrics and reading the IPv4 neighbor table.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

import snappi  # type: ignore
from tabulate import tabulate

from gribi_failover.config import AteConfig
from gribi_failover.errors import TopologyError, TrafficError
from gribi_failover.models import FlowResult

logger = logging.getLogger(__name__)


@dataclass
class OtgClient:
    """
    Client for OTG traffic generator operations using snappi.

    The snappi API object is created from the ATE configuration unless one is
    passed in.
    """

    config: AteConfig
    api: Any = field(default=None)
    sleep: Callable[[float], None] = field(default=time.sleep)

    def __post_init__(self):
        """Initialize after dataclass initialization."""
        logger.info("Initializing OTG client")
        if self.api is None:
            logger.info(f"Creating new snappi API client for {self.config.location}")
            # Pass the module logger to snappi.api to prevent it from creating a default stdout handler
            self.api = snappi.api(
                location=self.config.location, verify=self.config.verify, logger=logger
            )
        logger.info("OTG client initialized")

    def new_config(self) -> Any:
        """Return an empty snappi config."""
        return self.api.config()

    def push_config(self, config: Any) -> None:
        """
        Push a configuration to the traffic generator.

        Args:
            config: snappi Config
        """
        logger.info("Pushing configuration to traffic generator")
        result = self.api.set_config(config)
        warnings = getattr(result, "warnings", None)
        if warnings:
            logger.info(f"Set config warnings: {warnings}")

    def start_protocols(self) -> None:
        """Start all emulated protocols (ARP/ND on the emulated interfaces)."""
        logger.info("Starting all protocols")
        cs = self.api.control_state()
        cs.choice = cs.PROTOCOL
        cs.protocol.choice = cs.protocol.ALL
        cs.protocol.all.state = cs.protocol.all.START
        self.api.set_control_state(cs)

    def _set_flow_transmit(self, state: str) -> None:
        cs = self.api.control_state()
        cs.choice = cs.TRAFFIC
        cs.traffic.choice = cs.traffic.FLOW_TRANSMIT

        logger.debug("Handling different versions of control_state API")
        flow_transmit = cs.traffic.flow_transmit
        if hasattr(flow_transmit, state.upper()):
            flow_transmit.state = getattr(flow_transmit, state.upper())
        else:
            flow_transmit.state = state

        self.api.set_control_state(cs)

    def start_traffic(self) -> None:
        """Start transmitting all flows."""
        logger.info("Starting traffic generation")
        self._set_flow_transmit("start")

    def stop_traffic(self) -> None:
        """Stop transmitting all flows."""
        logger.info("Stopping traffic generation")
        self._set_flow_transmit("stop")

    def get_flow_metrics(self, flow_names: Optional[List[str]] = None) -> List[Any]:
        """
        Get flow metrics.

        Args:
            flow_names: Optional list of flow names, all flows if omitted

        Returns:
            List of snappi FlowMetric objects
        """
        request = self.api.metrics_request()
        request.flow.flow_names = list(flow_names or [])
        return list(self.api.get_metrics(request).flow_metrics)

    def get_port_metrics(self, port_names: Optional[List[str]] = None) -> List[Any]:
        """
        Get port metrics.

        Args:
            port_names: Optional list of port names, all ports if omitted

        Returns:
            List of snappi PortMetric objects
        """
        request = self.api.metrics_request()
        request.port.port_names = list(port_names or [])
        return list(self.api.get_metrics(request).port_metrics)

    def flow_result(self, flow_name: str) -> FlowResult:
        """
        Read the loss of a flow.

        Args:
            flow_name: Name of the flow

        Returns:
            FlowResult with the loss percentage

        Raises:
            TrafficError: If the flow has no metrics or transmitted nothing
        """
        metrics = [m for m in self.get_flow_metrics([flow_name]) if m.name == flow_name]
        if not metrics:
            raise TrafficError(f"No metrics reported for flow {flow_name}")

        m = metrics[0]
        frames_tx = int(m.frames_tx or 0)
        frames_rx = int(m.frames_rx or 0)
        if frames_tx == 0:
            raise TrafficError(f"Flow {flow_name} transmitted no frames")

        loss_pct = (frames_tx - frames_rx) * 100.0 / frames_tx
        return FlowResult(
            name=flow_name, frames_tx=frames_tx, frames_rx=frames_rx, loss_pct=loss_pct
        )

    def log_flow_metrics(self, config: Any) -> None:
        """Log a table of metrics for every flow in the config."""
        names = [f.name for f in config.flows]
        rows = [
            [m.name, m.frames_tx, m.frames_rx, m.frames_tx_rate, m.frames_rx_rate]
            for m in self.get_flow_metrics(names)
        ]
        logger.info(
            "Flow metrics:\n"
            + tabulate(rows, headers=["Flow", "Frames Tx", "Frames Rx", "Tx Rate", "Rx Rate"])
        )

    def log_port_metrics(self, config: Any) -> None:
        """Log a table of metrics for every port in the config."""
        names = [p.name for p in config.ports]
        rows = [
            [m.name, m.frames_tx, m.frames_rx, m.frames_tx_rate, m.frames_rx_rate]
            for m in self.get_port_metrics(names)
        ]
        logger.info(
            "Port metrics:\n"
            + tabulate(rows, headers=["Port", "Frames Tx", "Frames Rx", "Tx Rate", "Rx Rate"])
        )

    def get_ipv4_neighbors(self, ethernet_name: str) -> List[Any]:
        """
        Read the IPv4 neighbor table of an emulated interface.

        Args:
            ethernet_name: Name of the emulated Ethernet interface

        Returns:
            List of snappi Neighborsv4State objects
        """
        request = self.api.states_request()
        request.ipv4_neighbors.ethernet_names = [ethernet_name]
        return list(self.api.get_states(request).ipv4_neighbors)

    def neighbor_mac(self, ethernet_name: str, ipv4: str) -> str:
        """
        Resolve the MAC address of an IPv4 neighbor.

        Args:
            ethernet_name: Name of the emulated Ethernet interface
            ipv4: Neighbor address

        Returns:
            Link layer address

        Raises:
            TopologyError: If the neighbor is not resolved
        """
        for neighbor in self.get_ipv4_neighbors(ethernet_name):
            if neighbor.ipv4_address == ipv4 and neighbor.link_layer_address:
                logger.info(f"{ipv4} on {ethernet_name} resolved to {neighbor.link_layer_address}")
                return neighbor.link_layer_address
        raise TopologyError(f"No ARP entry for {ipv4} on {ethernet_name}")

    def wait_for_arp(self, ethernet_name: str, timeout: float, interval: float = 1.0) -> None:
        """
        Wait for at least one resolved ARP entry on an emulated interface.

        Args:
            ethernet_name: Name of the emulated Ethernet interface
            timeout: Maximum time in seconds to wait
            interval: Seconds between polls

        Raises:
            TopologyError: If nothing resolves before the timeout
        """
        logger.info(f"Waiting for ARP on {ethernet_name} (timeout={timeout}s)")

        deadline = time.monotonic() + timeout
        while True:
            if any(n.link_layer_address for n in self.get_ipv4_neighbors(ethernet_name)):
                logger.info(f"ARP resolved on {ethernet_name}")
                return
            if time.monotonic() >= deadline:
                break
            self.sleep(interval)

        raise TopologyError(f"Timed out waiting for ARP on {ethernet_name} after {timeout}s")
