"""
gRIBI client used to inject forwarding state into the device under test.

Every programming batch is a single gribi.gRIBI/Modify stream carrying the
session parameters, the client's election id and the AFT operations. The call
returns only after the device has acknowledged each operation.
"""

import logging
from enum import Enum
from typing import Dict, List, Optional, Tuple

from gribi_failover.errors import GribiError
from gribi_failover.grpcurl import GrpcurlClient, GrpcurlError

logger = logging.getLogger(__name__)

GRIBI_SERVICE = "gribi.gRIBI"

FAILED_STATUSES = ("FAILED", "FIB_FAILED")


class InstallMode(Enum):
    """Acknowledgement an operation must reach before it counts as installed."""

    RIB = "RIB_PROGRAMMED"
    FIB = "FIB_PROGRAMMED"


def _get(message: Dict, name: str, default=None):
    """Read a proto3 JSON field by its snake_case or lowerCamelCase name."""
    if name in message:
        return message[name]
    head, *rest = name.split("_")
    camel = head + "".join(part.title() for part in rest)
    return message.get(camel, default)


def _uint128(value: Dict) -> int:
    return (int(_get(value, "high", 0) or 0) << 64) | int(_get(value, "low", 0) or 0)


def _election(value: int) -> Dict[str, str]:
    return {"high": str(value >> 64), "low": str(value & ((1 << 64) - 1))}


class GribiClient:
    """
    Client for gRIBI programming of the device under test.

    Args:
        grpc_client: GrpcurlClient connected to the gRIBI target
        fib_ack: Request RIB_AND_FIB acknowledgements
        persistence: Keep entries after the client disconnects
        election_id: Initial election id
    """

    def __init__(
        self,
        grpc_client: GrpcurlClient,
        fib_ack: bool = False,
        persistence: bool = True,
        election_id: int = 1,
    ):
        self.grpc_client = grpc_client
        self.fib_ack = fib_ack
        self.persistence = persistence
        self.election_id = election_id
        self._next_op_id = 1
        self._started = False
        self._closed = False
        logger.info(
            f"Initialized gRIBI client: fib_ack={fib_ack}, persistence={persistence}"
        )

    @property
    def session_params(self) -> Dict[str, str]:
        return {
            "redundancy": "SINGLE_PRIMARY",
            "persistence": "PRESERVE" if self.persistence else "DELETE",
            "ack_type": "RIB_AND_FIB_ACK" if self.fib_ack else "RIB_ACK",
        }

    def _check_open(self) -> None:
        if self._closed:
            raise GribiError("gRIBI client is closed")
        if not self._started:
            raise GribiError("gRIBI client is not started")

    def _modify(self, requests: List[Dict]) -> List[Dict]:
        try:
            return self.grpc_client.call_stream(GRIBI_SERVICE, "Modify", requests)
        except GrpcurlError as e:
            logger.error(f"gRIBI Modify failed: {e}")
            raise GribiError(f"gRIBI Modify failed: {e}") from e

    def start(self) -> None:
        """
        Open the client and negotiate session parameters.

        Raises:
            GribiError: If the connection fails or the parameters are rejected
        """
        if self._closed:
            raise GribiError("gRIBI client is closed")

        logger.info(f"Starting gRIBI session with parameters {self.session_params}")
        responses = self._modify([{"params": self.session_params}])

        for response in responses:
            result = _get(response, "session_params_result")
            if result is None:
                continue
            status = _get(result, "status", "OK")
            if status not in ("OK", 0):
                details = _get(result, "error_details", "")
                raise GribiError(f"Session parameters rejected: {status} {details}")

        self._started = True
        logger.info("gRIBI session established")

    def become_leader(self) -> None:
        """
        Make this client the primary by presenting the highest election id.

        Raises:
            GribiError: If the device still reports a higher election id
        """
        self._check_open()

        for attempt in range(2):
            logger.info(f"Sending election id {self.election_id} (attempt {attempt + 1})")
            responses = self._modify([
                {"params": self.session_params},
                {"election_id": _election(self.election_id)},
            ])

            reported = [
                _uint128(_get(r, "election_id"))
                for r in responses
                if _get(r, "election_id") is not None
            ]
            highest = max(reported) if reported else self.election_id
            if highest <= self.election_id:
                logger.info(f"Client is leader with election id {self.election_id}")
                return

            logger.info(f"Device reports election id {highest}, bumping ours")
            self.election_id = highest + 1

        raise GribiError(f"Could not become leader with election id {self.election_id}")

    def flush_all(self) -> None:
        """
        Remove all entries from all network instances.

        Raises:
            GribiError: If the flush fails
        """
        self._check_open()
        logger.info("Flushing all gRIBI entries")

        request = {"id": _election(self.election_id), "all": {}}
        try:
            response = self.grpc_client.call_unary(GRIBI_SERVICE, "Flush", request)
        except GrpcurlError as e:
            logger.error(f"gRIBI Flush failed: {e}")
            raise GribiError(f"gRIBI Flush failed: {e}") from e

        result = _get(response, "result")
        if result == "NON_ZERO_REFERENCE_REMAIN":
            raise GribiError("Flush left referenced entries behind")
        logger.info(f"Flush result: {result}")

    def _program(self, network_instance: str, entry: Dict, mode: InstallMode, description: str) -> None:
        self._check_open()

        op_id = self._next_op_id
        self._next_op_id += 1

        operation = {
            "id": str(op_id),
            "network_instance": network_instance,
            "op": "ADD",
            "election_id": _election(self.election_id),
        }
        operation.update(entry)

        logger.info(f"Programming {description} (operation {op_id})")
        logger.debug(f"AFT operation: {operation}")
        responses = self._modify([
            {"params": self.session_params},
            {"election_id": _election(self.election_id)},
            {"operation": [operation]},
        ])

        statuses = []
        for response in responses:
            for result in _get(response, "result", []) or []:
                if str(_get(result, "id")) == str(op_id):
                    statuses.append(_get(result, "status"))

        logger.debug(f"Operation {op_id} statuses: {statuses}")
        failed = [s for s in statuses if s in FAILED_STATUSES]
        if failed:
            raise GribiError(f"Programming {description} failed: {failed[0]}")
        if mode.value not in statuses:
            raise GribiError(
                f"Programming {description} was not acknowledged as {mode.value}, got {statuses}"
            )
        logger.info(f"{description} is {mode.value}")

    def add_nh(self, index: int, address: str, network_instance: str, mode: InstallMode) -> None:
        """
        Install a next hop.

        Args:
            index: Next hop index
            address: Next hop IP address
            network_instance: Network instance to program
            mode: Expected installation status
        """
        entry = {
            "next_hop": {
                "index": str(index),
                "next_hop": {"ip_address": {"value": address}},
            }
        }
        self._program(network_instance, entry, mode, f"NH {index} via {address}")

    def add_nhg(
        self,
        nhg_id: int,
        weights: Dict[int, int],
        network_instance: str,
        mode: InstallMode,
        backup_nhg: Optional[int] = None,
    ) -> None:
        """
        Install a next hop group.

        Args:
            nhg_id: Next hop group id
            weights: Mapping of next hop index to weight
            network_instance: Network instance to program
            mode: Expected installation status
            backup_nhg: Optional backup next hop group id
        """
        group = {
            "next_hop": [
                {"index": str(index), "next_hop": {"weight": {"value": str(weight)}}}
                for index, weight in sorted(weights.items())
            ]
        }
        if backup_nhg is not None:
            group["backup_next_hop_group"] = {"value": str(backup_nhg)}

        entry = {"next_hop_group": {"id": str(nhg_id), "next_hop_group": group}}
        self._program(network_instance, entry, mode, f"NHG {nhg_id} {dict(weights)}")

    def add_ipv4(
        self,
        prefix: str,
        nhg_id: int,
        network_instance: str,
        nhg_network_instance: str,
        mode: InstallMode,
    ) -> None:
        """
        Install an IPv4 entry pointing at a next hop group.

        Args:
            prefix: Destination prefix
            nhg_id: Next hop group id
            network_instance: Network instance holding the entry
            nhg_network_instance: Network instance holding the next hop group
            mode: Expected installation status
        """
        entry = {
            "ipv4": {
                "prefix": prefix,
                "ipv4_entry": {
                    "next_hop_group": {"value": str(nhg_id)},
                    "next_hop_group_network_instance": {"value": nhg_network_instance},
                },
            }
        }
        self._program(network_instance, entry, mode, f"IPv4 {prefix} -> NHG {nhg_id}")

    def close(self) -> None:
        """Close the client. Programmed entries follow the persistence mode."""
        if self._closed:
            return
        self._closed = True
        logger.info("gRIBI client closed")


def program_backup_switch(
    client: GribiClient,
    network_instance: str,
    prefix: str,
    primary_nhg: int,
    backup_nhg: int,
    primary_next_hops: Dict[int, Tuple[str, int]],
    backup_next_hop: Dict[int, Tuple[str, int]],
    mode: InstallMode = InstallMode.RIB,
) -> None:
    """
    Program a prefix over a weighted primary group with a backup group.

    The backup group is installed first so the primary can reference it.

    Args:
        client: Started gRIBI client holding leadership
        network_instance: Network instance for every entry
        prefix: Destination prefix
        primary_nhg: Primary next hop group id
        backup_nhg: Backup next hop group id
        primary_next_hops: NH index -> (address, weight) for the primary group
        backup_next_hop: NH index -> (address, weight) for the backup group
        mode: Expected installation status
    """
    for index, (address, _) in backup_next_hop.items():
        client.add_nh(index, address, network_instance, mode)
    client.add_nhg(
        backup_nhg,
        {index: weight for index, (_, weight) in backup_next_hop.items()},
        network_instance,
        mode,
    )

    for index, (address, _) in primary_next_hops.items():
        client.add_nh(index, address, network_instance, mode)
    client.add_nhg(
        primary_nhg,
        {index: weight for index, (_, weight) in primary_next_hops.items()},
        network_instance,
        mode,
        backup_nhg=backup_nhg,
    )
    client.add_ipv4(prefix, primary_nhg, network_instance, network_instance, mode)
