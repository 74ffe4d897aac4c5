"""Unified models for the failover test."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PortAttributes(BaseModel):
    """Addressing of one side of a DUT/ATE link."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="ATE device name or DUT description")
    mac: Optional[str] = Field(default=None, description="MAC address (ATE side)")
    ipv4: str = Field(..., description="IPv4 address")
    ipv4_len: int = Field(default=30, description="IPv4 prefix length")
    ipv6: str = Field(..., description="IPv6 address")
    ipv6_len: int = Field(default=126, description="IPv6 prefix length")

    @property
    def ethernet_name(self) -> str:
        return f"{self.name}.Eth"

    @property
    def ipv4_name(self) -> str:
        return f"{self.name}.IPv4"

    @property
    def ipv6_name(self) -> str:
        return f"{self.name}.IPv6"


class NextHopState(BaseModel):
    """AFT state of a next hop."""

    index: int = Field(..., description="Next hop index")
    ip_address: Optional[str] = Field(default=None, description="Resolved egress address")

    @classmethod
    def from_tree(cls, index: int, tree: Optional[Dict[str, Any]]) -> "NextHopState":
        state = (tree or {}).get("state", {})
        return cls(index=index, ip_address=state.get("ip-address"))


class NextHopGroupState(BaseModel):
    """AFT state of a next hop group."""

    id: int = Field(..., description="Next hop group id")
    next_hops: Dict[int, Optional[int]] = Field(
        default_factory=dict, description="Member next hop index mapped to weight"
    )
    backup_next_hop_group: Optional[int] = Field(
        default=None, description="Backup next hop group id"
    )

    @classmethod
    def from_tree(cls, nhg_id: int, tree: Optional[Dict[str, Any]]) -> "NextHopGroupState":
        """
        Build from the folded telemetry of ``afts/next-hop-groups/next-hop-group``.

        Args:
            nhg_id: Next hop group id
            tree: Folded gNMI tree rooted at the next hop group

        Returns:
            Parsed next hop group state
        """
        tree = tree or {}
        state = tree.get("state", {})
        backup = state.get("backup-next-hop-group")

        next_hops = {}
        for item in tree.get("next-hops", {}).get("next-hop", []):
            index = item.get("index", item.get("state", {}).get("index"))
            if index is None:
                continue
            weight = item.get("state", {}).get("weight")
            next_hops[int(index)] = int(weight) if weight is not None else None

        return cls(
            id=nhg_id,
            next_hops=next_hops,
            backup_next_hop_group=int(backup) if backup is not None else None,
        )

    @property
    def is_forwarding(self) -> bool:
        """Members are present, or the group is relying on its backup."""
        return bool(self.next_hops) or self.backup_next_hop_group is not None


class FlowResult(BaseModel):
    """Measured outcome of a traffic run."""

    name: str = Field(..., description="Flow name")
    frames_tx: int = Field(default=0, description="Frames transmitted")
    frames_rx: int = Field(default=0, description="Frames received")
    loss_pct: float = Field(default=0.0, description="Loss percentage")


class PhaseResult(BaseModel):
    """Outcome of one link-state phase."""

    phase: str = Field(..., description="Phase name")
    nhg_id: int = Field(..., description="NHG bound to the prefix")
    next_hops: List[str] = Field(
        default_factory=list, description="Observed active next hop addresses"
    )
    flow: Optional[FlowResult] = Field(default=None, description="Traffic result")
