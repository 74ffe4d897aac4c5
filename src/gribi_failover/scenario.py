"""
Backup next hop group switchover scenario.

Program 203.0.113.0/24 via gRIBI over a primary NHG with two weighted next
hops (ATE port 2 and port 3) and a backup NHG with one next hop (ATE port 4).
Then take port 2 and port 3 down one after the other and verify, after each
change, that AFT telemetry and traffic follow the expected egress port.

Teardown flushes the programmed entries, closes the gRIBI client and brings
the links back up, whichever check failed.
"""

import logging
import time
from contextlib import ExitStack
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

from gribi_failover.aft import aft_check
from gribi_failover.config import Config, GrpcTargetConfig
from gribi_failover.gnmi import GnmiClient
from gribi_failover.gribi import GribiClient, InstallMode, program_backup_switch
from gribi_failover.grpcurl import GrpcurlClient
from gribi_failover.models import PhaseResult
from gribi_failover.otg import OtgClient
from gribi_failover.topology import DEFAULT_PLAN, PortPlan, configure_ate, configure_dut, create_flow
from gribi_failover.verification import flap_interface, validate_traffic_flows

logger = logging.getLogger(__name__)

DST_PREFIX = "203.0.113.0/24"
DST_PREFIX_MIN = "203.0.113.0"

NHG_ID = 100
BACKUP_NHG_ID = 200
NH1_ID, NH2_ID, NH3_ID = 1001, 1002, 1003

FLOW_NAME = "BaseFlow"


@dataclass(frozen=True)
class Phase:
    """A link state and the egress ports the prefix must resolve to in it."""

    name: str
    egress_ports: Tuple[str, ...]
    down_port: Optional[str] = None


PHASES = (
    Phase("primaries-up", ("port2", "port3")),
    Phase("port2-down", ("port3",), down_port="port2"),
    Phase("port3-down", ("port4",), down_port="port3"),
)


def grpcurl_client(target: GrpcTargetConfig) -> GrpcurlClient:
    return GrpcurlClient(
        target.address,
        plaintext=target.plaintext,
        insecure=target.insecure,
        timeout=target.timeout,
        headers=target.headers,
        import_paths=target.import_paths,
        proto_files=target.proto_files,
    )


@dataclass
class BackupSwitchScenario:
    """
    Drives the three link-state phases against one DUT and one ATE.

    Collaborators are injected so the flow can run against fakes; use
    ``from_config`` to build the real ones.
    """

    config: Config
    gnmi: GnmiClient
    otg: OtgClient
    gribi_factory: Callable[[], GribiClient]
    plan: PortPlan = DEFAULT_PLAN
    phases: Tuple[Phase, ...] = PHASES
    sleep: Callable[[float], None] = field(default=time.sleep)

    @classmethod
    def from_config(cls, config: Config) -> "BackupSwitchScenario":
        """Build the scenario with grpcurl and snappi clients from a loaded config."""
        dut = config.dut
        gnmi = GnmiClient(grpcurl_client(dut.gnmi))
        otg = OtgClient(config=config.ate)

        def gribi_factory() -> GribiClient:
            return GribiClient(
                grpcurl_client(dut.gribi), fib_ack=dut.fib_ack, persistence=dut.persistence
            )

        return cls(config=config, gnmi=gnmi, otg=otg, gribi_factory=gribi_factory)

    @property
    def network_instance(self) -> str:
        return self.config.dut.default_network_instance

    @property
    def install_mode(self) -> InstallMode:
        return InstallMode.FIB if self.config.dut.fib_ack else InstallMode.RIB

    def setup_testbed(self) -> Any:
        """
        Configure DUT and ATE interfaces and wait for ARP on the source port.

        Returns:
            The snappi config pushed to the ATE
        """
        logger.info("Configuring DUT interfaces")
        configure_dut(self.gnmi, self.config.dut.ports, self.plan)

        logger.info("Configuring ATE ports")
        top = configure_ate(self.otg.new_config(), self.config.ate.ports, self.plan)
        self.otg.push_config(top)
        self.otg.start_protocols()
        self.otg.wait_for_arp(
            self.plan.port1.ate.ethernet_name,
            self.config.timing.arp_timeout,
            self.config.timing.poll_interval,
        )
        return top

    def program(self, client: GribiClient) -> None:
        """Program the backup group, the primary group and the prefix."""
        logger.info(f"Program a backup pointing to ATE port-4 and {DST_PREFIX} via ATE port-2 and port-3")
        program_backup_switch(
            client,
            self.network_instance,
            DST_PREFIX,
            primary_nhg=NHG_ID,
            backup_nhg=BACKUP_NHG_ID,
            primary_next_hops={
                NH1_ID: (self.plan.port2.ate.ipv4, 80),
                NH2_ID: (self.plan.port3.ate.ipv4, 20),
            },
            backup_next_hop={NH3_ID: (self.plan.port4.ate.ipv4, 10)},
            mode=self.install_mode,
        )

    def add_flow(self, top: Any) -> str:
        """Create the test flow towards the prefix and push it."""
        dst_mac = self.otg.neighbor_mac(self.plan.port1.ate.ethernet_name, self.plan.port1.dut.ipv4)
        create_flow(top, FLOW_NAME, dst_mac, DST_PREFIX_MIN, self.plan)
        self.otg.push_config(top)
        # Required after a config push on hardware
        self.otg.start_protocols()
        return FLOW_NAME

    def expected_next_hops(self, phase: Phase) -> List[str]:
        """ATE addresses of the egress ports a phase allows."""
        return [self.plan.link(port).ate.ipv4 for port in phase.egress_ports]

    def run_phase(self, phase: Phase, top: Any, flow: str, links: ExitStack) -> PhaseResult:
        """
        Apply a phase's link change, then check AFT and traffic.

        The restore of a downed link is registered on ``links``.
        """
        logger.info(f"Phase {phase.name}")
        ports = self.config.dut.ports
        if phase.down_port:
            flap_interface(self.gnmi, ports, phase.down_port, False)
            links.callback(flap_interface, self.gnmi, ports, phase.down_port, True)

        timing = self.config.timing
        nhg_id, next_hops = aft_check(
            self.gnmi,
            self.network_instance,
            DST_PREFIX,
            self.expected_next_hops(phase),
            timeout=timing.aft_timeout,
            interval=timing.poll_interval,
        )
        flow_result = validate_traffic_flows(
            self.otg, top, flow, drop=False, duration=timing.traffic_duration, sleep=self.sleep
        )
        return PhaseResult(phase=phase.name, nhg_id=nhg_id, next_hops=next_hops, flow=flow_result)

    def run(self) -> List[PhaseResult]:
        """
        Run the whole scenario.

        Returns:
            One result per phase, in order

        Raises:
            FailoverTestError: On the first failed check
        """
        top = self.setup_testbed()
        results = []

        with ExitStack() as links:
            with ExitStack() as session:
                client = self.gribi_factory()
                session.callback(client.close)
                client.start()
                client.become_leader()
                session.callback(client.flush_all)
                # Remove entries left by earlier runs
                client.flush_all()

                self.program(client)
                flow = self.add_flow(top)

                for phase in self.phases:
                    results.append(self.run_phase(phase, top, flow, links))

        logger.info("Backup switch scenario passed")
        return results
