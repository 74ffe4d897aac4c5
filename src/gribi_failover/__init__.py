"""gRIBI backup next hop group failover test."""

__version__ = "0.1.0"
