"""
AFT telemetry checks.

The device exposes what gRIBI programmed under
``/network-instances/network-instance/afts``. These helpers read the next hop
group bound to a prefix and verify that its resolved next hops are the ones a
phase expects.
"""

import logging
from typing import Iterable, List, Tuple

from gribi_failover.errors import AftError
from gribi_failover.gnmi import GnmiClient
from gribi_failover.models import NextHopGroupState, NextHopState

logger = logging.getLogger(__name__)


def afts_path(network_instance: str) -> str:
    return f"/network-instances/network-instance[name={network_instance}]/afts"


def ipv4_entry_nhg_path(network_instance: str, prefix: str) -> str:
    return f"{afts_path(network_instance)}/ipv4-unicast/ipv4-entry[prefix={prefix}]/state/next-hop-group"


def next_hop_group_path(network_instance: str, nhg_id: int) -> str:
    return f"{afts_path(network_instance)}/next-hop-groups/next-hop-group[id={nhg_id}]"


def next_hop_path(network_instance: str, index: int) -> str:
    return f"{afts_path(network_instance)}/next-hops/next-hop[index={index}]"


def get_next_hop_group(gnmi: GnmiClient, network_instance: str, nhg_id: int) -> NextHopGroupState:
    tree = gnmi.get(next_hop_group_path(network_instance, nhg_id))
    return NextHopGroupState.from_tree(nhg_id, tree if isinstance(tree, dict) else None)


def get_next_hop(gnmi: GnmiClient, network_instance: str, index: int) -> NextHopState:
    tree = gnmi.get(next_hop_path(network_instance, index))
    return NextHopState.from_tree(index, tree if isinstance(tree, dict) else None)


def check_next_hop_group(nhg: NextHopGroupState, prefix: str) -> None:
    """
    Check that a next hop group can still forward.

    Args:
        nhg: Next hop group bound to the prefix
        prefix: Prefix under test, for the error message

    Raises:
        AftError: If the group has no members and no backup
    """
    if not nhg.is_forwarding:
        raise AftError(f"Prefix {prefix} reachability didn't switch to backup path")
    if not nhg.next_hops:
        logger.info(
            f"NHG {nhg.id} has no members, relying on backup NHG {nhg.backup_next_hop_group}"
        )


def check_next_hops(observed: Iterable[str], expected: Iterable[str]) -> None:
    """
    Check that every observed next hop address is expected.

    Raises:
        AftError: If an observed address is outside the expected set
    """
    unexpected = sorted(set(observed) - set(expected))
    if unexpected:
        raise AftError(f"No matching NH found for {unexpected}, want one of {sorted(set(expected))}")


def aft_check(
    gnmi: GnmiClient,
    network_instance: str,
    prefix: str,
    expected_next_hops: Iterable[str],
    timeout: float = 10.0,
    interval: float = 1.0,
) -> Tuple[int, List[str]]:
    """
    Verify the prefix, its next hop group and the group's next hops in AFT.

    Args:
        gnmi: gNMI client for the DUT
        network_instance: Network instance holding the entries
        prefix: IPv4 prefix under test
        expected_next_hops: Next hop addresses allowed in this state
        timeout: Seconds to wait for the prefix to appear
        interval: Seconds between polls

    Returns:
        Tuple of (NHG id, observed next hop addresses)

    Raises:
        AftError: If any check fails
    """
    expected = list(expected_next_hops)
    logger.info(f"Checking AFT for {prefix}, expecting next hops {expected}")

    value, found = gnmi.watch(
        ipv4_entry_nhg_path(network_instance, prefix),
        timeout,
        lambda v: v is not None,
        interval=interval,
    )
    if not found:
        raise AftError(f"Could not find prefix {prefix} in telemetry AFT")
    try:
        nhg_id = int(value)
    except (TypeError, ValueError):
        raise AftError(f"Prefix {prefix} has a malformed next-hop-group {value!r} in telemetry AFT") from None
    logger.info(f"Prefix {prefix} points at NHG {nhg_id}")

    nhg = get_next_hop_group(gnmi, network_instance, nhg_id)
    logger.info(
        f"NHG {nhg_id} members {sorted(nhg.next_hops)}, backup {nhg.backup_next_hop_group}"
    )
    check_next_hop_group(nhg, prefix)

    observed = []
    for index in sorted(nhg.next_hops):
        nh = get_next_hop(gnmi, network_instance, index)
        if nh.ip_address is None:
            raise AftError(f"NH {index} of NHG {nhg_id} has no ip-address in telemetry AFT")
        logger.info(f"NH {index} resolves to {nh.ip_address}")
        observed.append(nh.ip_address)

    check_next_hops(observed, expected)
    return nhg_id, observed
