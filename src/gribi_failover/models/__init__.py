"""Failover test models package."""

from .models import (
    FlowResult,
    NextHopGroupState,
    NextHopState,
    PhaseResult,
    PortAttributes,
)

__all__ = [
    "PortAttributes",
    "NextHopState",
    "NextHopGroupState",
    "FlowResult",
    "PhaseResult",
]
