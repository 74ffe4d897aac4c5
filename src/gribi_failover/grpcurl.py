"""
grpcurl-based gRPC transport for gRIBI and gNMI operations.

This module runs grpcurl as a subprocess and exchanges proto3 JSON messages with
the device, so no generated protobuf stubs are needed in the test environment.
"""

import json
import logging
import re
import subprocess
from typing import Callable, Dict, List, Optional, Sequence, Union

import grpc

logger = logging.getLogger(__name__)

CONNECTION_ERROR_TERMS = (
    "connection refused",
    "no such host",
    "network is unreachable",
    "failed to dial target host",
    "connection failed",
)

TIMEOUT_ERROR_TERMS = (
    "deadline exceeded",
    "timeout",
)

_CODE_RE = re.compile(r"Code:\s*(\w+)")
_MESSAGE_RE = re.compile(r"Message:\s*(.*)")


class GrpcurlError(Exception):
    """Base exception for grpcurl operations"""
    pass


class GrpcConnectionError(GrpcurlError):
    """Connection-related gRPC errors"""
    pass


class GrpcTimeoutError(GrpcurlError):
    """gRPC timeout errors"""
    pass


class GrpcCallError(GrpcurlError):
    """gRPC method call errors"""

    def __init__(self, message: str, status_code: grpc.StatusCode = grpc.StatusCode.UNKNOWN):
        super().__init__(message)
        self._code = status_code

    def code(self) -> grpc.StatusCode:
        return self._code


def status_code_from_name(name: str) -> grpc.StatusCode:
    """
    Map a grpcurl status name such as ``NotFound`` to a grpc.StatusCode.

    Args:
        name: Status code name as printed by grpcurl

    Returns:
        Matching grpc.StatusCode, UNKNOWN if the name is not recognised
    """
    snake = re.sub(r"(?<!^)(?=[A-Z])", "_", name).upper()
    try:
        return grpc.StatusCode[snake]
    except KeyError:
        return grpc.StatusCode.UNKNOWN


def parse_messages(output: str) -> List[Dict]:
    """
    Split grpcurl JSON output into individual messages.

    grpcurl prints one pretty-printed JSON document per response message.

    Args:
        output: Raw stdout of a grpcurl call

    Returns:
        List of decoded messages in arrival order
    """
    decoder = json.JSONDecoder()
    messages = []
    text = output.strip()
    idx = 0
    while idx < len(text):
        message, end = decoder.raw_decode(text, idx)
        messages.append(message)
        idx = end
        while idx < len(text) and text[idx].isspace():
            idx += 1
    return messages


class GrpcurlClient:
    """
    gRPC client that shells out to grpcurl.

    Requests are passed on stdin as JSON documents; multiple documents on one
    call make up the request stream of a client- or bidi-streaming method.
    """

    def __init__(
        self,
        target: str,
        plaintext: bool = False,
        insecure: bool = True,
        timeout: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
        import_paths: Sequence[str] = (),
        proto_files: Sequence[str] = (),
        binary: str = "grpcurl",
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        """
        Initialize grpcurl client.

        Args:
            target: host:port of the gRPC server
            plaintext: Use plaintext HTTP/2 instead of TLS
            insecure: Skip server certificate verification when using TLS
            timeout: Connect and per-call timeout in seconds
            headers: Metadata headers added to every call
            import_paths: Proto import paths, server reflection is used if empty
            proto_files: Proto source files to load
            binary: grpcurl executable
            runner: subprocess.run compatible callable
        """
        self.target = target
        self.plaintext = plaintext
        self.insecure = insecure
        self.timeout = float(timeout)
        self.headers = dict(headers or {})
        self.import_paths = list(import_paths)
        self.proto_files = list(proto_files)
        self.binary = binary
        self._runner = runner
        logger.info(f"Configured grpcurl client: target={self.target}, plaintext={self.plaintext}")

    def _build_cmd(self, service_method: Optional[str] = None, with_data: bool = False) -> List[str]:
        """
        Build grpcurl command with standard options.

        Args:
            service_method: service/method
            with_data: Read request messages from stdin

        Returns:
            List of command arguments
        """
        cmd = [self.binary]

        if self.plaintext:
            cmd.append("-plaintext")
        elif self.insecure:
            cmd.append("-insecure")

        cmd.extend([
            "-connect-timeout", str(self.timeout),
            "-max-time", str(self.timeout),
            "-format", "json",
            "-emit-defaults",
        ])

        for path in self.import_paths:
            cmd.extend(["-import-path", path])
        for proto in self.proto_files:
            cmd.extend(["-proto", proto])

        for name, value in self.headers.items():
            cmd.extend(["-H", f"{name}: {value}"])

        if with_data:
            cmd.extend(["-d", "@"])

        cmd.append(self.target)

        if service_method:
            cmd.append(service_method)

        return cmd

    def _execute(self, cmd: List[str], input_data: Optional[str] = None) -> str:
        """
        Run grpcurl and classify failures.

        Args:
            cmd: grpcurl command as list
            input_data: Optional request documents for stdin

        Returns:
            stdout of the call

        Raises:
            GrpcConnectionError: Connection-related failures
            GrpcTimeoutError: Timeout-related failures
            GrpcCallError: Other gRPC call failures
        """
        logger.debug(f"Executing: {' '.join(cmd)}")
        if input_data:
            logger.debug(f"Request data: {input_data}")

        try:
            result = self._runner(
                cmd,
                input=input_data,
                capture_output=True,
                text=True,
                timeout=self.timeout + 5,
            )
        except subprocess.TimeoutExpired as e:
            raise GrpcTimeoutError(f"grpcurl to {self.target} timed out after {self.timeout}s") from e
        except FileNotFoundError as e:
            raise GrpcConnectionError(f"grpcurl executable not found: {self.binary}") from e

        if result.returncode != 0:
            stderr = result.stderr or ""
            lowered = stderr.lower()

            code_match = _CODE_RE.search(stderr)
            if code_match:
                status_code = status_code_from_name(code_match.group(1))
                message_match = _MESSAGE_RE.search(stderr)
                message = message_match.group(1).strip() if message_match else stderr.strip()
                if status_code == grpc.StatusCode.DEADLINE_EXCEEDED:
                    raise GrpcTimeoutError(f"Operation timed out after {self.timeout}s: {message}")
                if status_code == grpc.StatusCode.UNAVAILABLE:
                    raise GrpcConnectionError(f"Connection failed to {self.target}: {message}")
                raise GrpcCallError(f"{status_code.name}: {message}", status_code)

            if any(term in lowered for term in CONNECTION_ERROR_TERMS):
                raise GrpcConnectionError(f"Connection failed to {self.target}: {stderr}")

            if any(term in lowered for term in TIMEOUT_ERROR_TERMS):
                raise GrpcTimeoutError(f"Operation timed out after {self.timeout}s: {stderr}")

            raise GrpcCallError(f"grpcurl failed: {stderr}")

        return result.stdout

    def call_unary(self, service: str, method: str, request: Union[Dict, str, None] = None) -> Dict:
        """
        Make a unary gRPC call (single request/response).

        Args:
            service: Service name (e.g., "gribi.gRIBI")
            method: Method name (e.g., "Flush")
            request: Request payload as dict or JSON string

        Returns:
            Response as dictionary
        """
        responses = self.call_stream(service, method, [request if request is not None else {}])
        if not responses:
            raise GrpcCallError(f"No response from {service}/{method}")
        return responses[0]

    def call_stream(self, service: str, method: str, requests: List[Union[Dict, str]]) -> List[Dict]:
        """
        Make a streaming gRPC call.

        All request messages are sent, the request side is closed and every
        response message is collected until the server ends the stream.

        Args:
            service: Service name
            method: Method name
            requests: Request payloads in send order

        Returns:
            List of response dictionaries
        """
        service_method = f"{service}/{method}"
        cmd = self._build_cmd(service_method=service_method, with_data=True)

        documents = [r if isinstance(r, str) else json.dumps(r) for r in requests]
        stdout = self._execute(cmd, "\n".join(documents))

        try:
            responses = parse_messages(stdout)
        except json.JSONDecodeError as e:
            raise GrpcCallError(f"Failed to parse response from {service_method}: {e}")

        logger.debug(f"Received {len(responses)} responses from {service_method}")
        return responses

    def __str__(self):
        return f"GrpcurlClient(target={self.target}, plaintext={self.plaintext})"

    def __repr__(self):
        return self.__str__()
