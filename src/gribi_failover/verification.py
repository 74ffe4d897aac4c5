"""Link flaps and traffic validation."""

import logging
import time
from typing import Any, Callable, Dict

from gribi_failover.errors import TrafficError
from gribi_failover.gnmi import GnmiClient
from gribi_failover.models import FlowResult
from gribi_failover.otg import OtgClient
from gribi_failover.topology import dut_interface_name, interface_path

logger = logging.getLogger(__name__)


def flap_interface(gnmi: GnmiClient, dut_ports: Dict[str, str], port: str, enabled: bool) -> None:
    """
    Set the admin state of a DUT port; True brings it up, False brings it down.

    The ATE side is left alone since disabling an OTG port does not take the
    link down on every platform.
    """
    name = dut_interface_name(dut_ports, port)
    logger.info(f"Setting DUT {port} ({name}) {'up' if enabled else 'down'}")
    gnmi.update(f"{interface_path(name)}/config/enabled", enabled)


def validate_traffic_flows(
    otg: OtgClient,
    config: Any,
    flow: str,
    drop: bool,
    duration: float = 60.0,
    sleep: Callable[[float], None] = time.sleep,
) -> FlowResult:
    """
    Run traffic and check the loss of a flow.

    Args:
        otg: OTG client
        config: snappi Config pushed to the traffic generator
        flow: Flow name
        drop: Expect 100 percent loss instead of none
        duration: Seconds to run traffic before measuring
        sleep: Sleep function

    Returns:
        The measured flow result

    Raises:
        TrafficError: If the loss is not exactly the expected value
    """
    otg.start_traffic()
    logger.info(f"Running traffic for {duration}s")
    sleep(duration)
    otg.stop_traffic()

    otg.log_flow_metrics(config)
    otg.log_port_metrics(config)

    result = otg.flow_result(flow)
    got = result.loss_pct
    logger.info(f"Flow {flow}: tx={result.frames_tx} rx={result.frames_rx} loss={got}%")
    if drop:
        if got != 100:
            raise TrafficError(f"Traffic passing for flow {flow} got {got}, want 100 percent loss")
    elif got != 0:
        raise TrafficError(f"LossPct for flow {flow} got {got}, want 0")
    return result
