import json
import logging
import os
import sys
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stderr
)
logger = logging.getLogger(__name__)

REQUIRED_PORTS = ("port1", "port2", "port3", "port4")


def _validate_ports(ports: Dict[str, str]) -> Dict[str, str]:
    missing = [p for p in REQUIRED_PORTS if p not in ports]
    if missing:
        logger.error(f"Port map is missing {missing}")
        raise ValueError(f"ports must map {list(REQUIRED_PORTS)}, missing {missing}")
    return ports


class LoggingConfig(BaseSettings):
    """Configuration for logging."""

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    @validator("LOG_LEVEL")
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        upper_v = v.upper()
        if upper_v not in valid_levels:
            logger.error(f"LOG_LEVEL must be one of {valid_levels}")
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        logger.info(f"Validated log level: {upper_v}")
        return upper_v


class TimingConfig(BaseSettings):
    """Bounded waits used while verifying the device."""

    model_config = SettingsConfigDict(env_prefix="FAILOVER_")

    aft_timeout: float = Field(
        default=10.0, description="Seconds to wait for the prefix to appear in AFT"
    )
    traffic_duration: float = Field(
        default=60.0, description="Seconds traffic runs before loss is measured"
    )
    arp_timeout: float = Field(
        default=60.0, description="Seconds to wait for the ATE to resolve ARP"
    )
    poll_interval: float = Field(default=1.0, description="Seconds between polls")


class GrpcTargetConfig(BaseModel):
    """Connection settings for a gRPC service on the device under test."""

    address: str = Field(..., description="host:port of the gRPC server")
    plaintext: bool = Field(default=False, description="Disable TLS")
    insecure: bool = Field(default=True, description="Skip TLS certificate checks")
    username: Optional[str] = Field(default=None, description="Username metadata")
    password: Optional[str] = Field(default=None, description="Password metadata")
    import_paths: List[str] = Field(
        default_factory=list, description="Proto import paths (reflection if empty)"
    )
    proto_files: List[str] = Field(default_factory=list, description="Proto files")
    timeout: float = Field(default=10.0, description="Per-call timeout in seconds")

    model_config = ConfigDict(extra="forbid")

    @property
    def headers(self) -> Dict[str, str]:
        headers = {}
        if self.username:
            headers["username"] = self.username
        if self.password:
            headers["password"] = self.password
        return headers


class DutConfig(BaseModel):
    """Configuration for the device under test."""

    name: str = Field(default="dut", description="Name used in logs")
    gnmi: GrpcTargetConfig = Field(..., description="gNMI service")
    gribi: GrpcTargetConfig = Field(..., description="gRIBI service")
    ports: Dict[str, str] = Field(
        ..., description="Logical port id mapped to interface name"
    )
    default_network_instance: str = Field(
        default="DEFAULT", description="Name of the default network instance"
    )
    fib_ack: bool = Field(default=False, description="Request FIB acknowledgements")
    persistence: bool = Field(default=True, description="Preserve entries on disconnect")

    model_config = ConfigDict(extra="forbid")

    @validator("ports")
    def validate_ports(cls, v):
        return _validate_ports(v)


class AteConfig(BaseModel):
    """Configuration for the OTG traffic generator."""

    location: str = Field(..., description="OTG API location (https://host:port)")
    verify: bool = Field(default=False, description="Verify the OTG API certificate")
    ports: Dict[str, str] = Field(
        ..., description="Logical port id mapped to port location"
    )

    model_config = ConfigDict(extra="forbid")

    @validator("ports")
    def validate_ports(cls, v):
        return _validate_ports(v)


class Config:
    """Main configuration for the failover test."""

    def __init__(self, config_file: Optional[str] = None):
        self.logging = LoggingConfig()
        self.timing = TimingConfig()
        self.dut: Optional[DutConfig] = None
        self.ate: Optional[AteConfig] = None

        logger.info("Initializing configuration")
        if config_file:
            logger.info(f"Loading configuration from file: {config_file}")
            self.load_config_file(config_file)

    def load_config_file(self, config_file_path: str) -> None:
        """
        Load the testbed configuration from a JSON file.

        Args:
            config_file_path: Path to the JSON configuration file

        Raises:
            FileNotFoundError: If the config file doesn't exist
            json.JSONDecodeError: If the config file isn't valid JSON
            ValueError: If the config file doesn't have the expected structure
            pydantic.ValidationError: If a section doesn't match its model
        """
        logger.info(f"Loading testbed configuration from: {config_file_path}")

        if not os.path.exists(config_file_path):
            error_msg = f"Configuration file not found: {config_file_path}"
            logger.critical(error_msg)
            raise FileNotFoundError(error_msg)

        try:
            with open(config_file_path, "r") as file:
                config_data = json.load(file)
        except json.JSONDecodeError as e:
            logger.critical(f"Invalid JSON in configuration file: {str(e)}")
            raise

        self.load_config_data(config_data)

    def load_config_data(self, config_data: Dict) -> None:
        """
        Validate and apply a testbed configuration dictionary.

        Args:
            config_data: Parsed configuration with ``dut`` and ``ate`` sections
        """
        logger.info("Validating configuration structure")
        for section in ("dut", "ate"):
            if section not in config_data:
                error_msg = f"Configuration must contain a '{section}' property"
                logger.critical(error_msg)
                raise ValueError(error_msg)

        logger.info("Validating DUT configuration using Pydantic model")
        self.dut = DutConfig(**config_data["dut"])

        logger.info("Validating ATE configuration using Pydantic model")
        self.ate = AteConfig(**config_data["ate"])

        logger.info(
            f"Loaded testbed: DUT gNMI {self.dut.gnmi.address}, "
            f"gRIBI {self.dut.gribi.address}, OTG {self.ate.location}"
        )

    def setup_logging(self):
        """Configure logging based on the provided settings."""
        log_level = getattr(logging, self.logging.LOG_LEVEL)
        sys.stderr.write(f"Setting up logging at level {self.logging.LOG_LEVEL}\n")

        logging.basicConfig(
            level=log_level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            stream=sys.stderr,
            force=True
        )

        logger.info("Configuring root logger")
        logging.getLogger().setLevel(log_level)

        logger.info(f"Setting module logger to level {log_level}")
        logging.getLogger("gribi_failover").setLevel(log_level)

        logger.info(f"Logging configured at level {self.logging.LOG_LEVEL}")
