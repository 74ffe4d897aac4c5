"""Exceptions raised by the failover test."""


class FailoverTestError(Exception):
    """Base exception for the failover test."""
    pass


class TopologyError(FailoverTestError):
    """The testbed does not match the port plan or never resolved ARP."""
    pass


class GribiError(FailoverTestError):
    """A gRIBI session, election or programming operation failed."""
    pass


class VerificationError(FailoverTestError):
    """A post-change check did not hold."""
    pass


class AftError(VerificationError):
    """AFT telemetry does not show the expected forwarding state."""
    pass


class TrafficError(VerificationError):
    """Measured traffic loss does not match the expectation."""
    pass
