"""
gNMI client providing path-addressed reads, writes and bounded watches.

Requests go through the grpcurl transport; responses are folded into an
IETF-JSON shaped tree relative to the requested path.
"""

import base64
import json
import logging
import re
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import grpc

from gribi_failover.grpcurl import GrpcCallError, GrpcurlClient

logger = logging.getLogger(__name__)

GNMI_SERVICE = "gnmi.gNMI"

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


def parse_path(xpath: str) -> List[Dict[str, Any]]:
    """
    Convert an xpath-like string into gNMI path elements.

    Slashes inside key values (for example IP prefixes) are kept.

    Args:
        xpath: Path such as ``/interfaces/interface[name=Ethernet1]/config``

    Returns:
        List of gNMI PathElem dictionaries
    """
    segments = []
    current = ""
    depth = 0
    for char in xpath:
        if char == "[":
            depth += 1
        elif char == "]":
            depth -= 1
        if char == "/" and depth == 0:
            if current:
                segments.append(current)
            current = ""
            continue
        current += char
    if current:
        segments.append(current)

    elems = []
    for segment in segments:
        name, _, rest = segment.partition("[")
        elem: Dict[str, Any] = {"name": name}
        if rest:
            keys = {}
            for key_expr in re.findall(r"([^\[\]=]+)=([^\]]*)", "[" + rest):
                keys[key_expr[0]] = key_expr[1]
            elem["key"] = keys
        elems.append(elem)
    return elems


def strip_module(name: str) -> str:
    """Drop a YANG module prefix such as ``openconfig-interfaces:``."""
    return name.split(":")[-1]


def normalize_json(value: Any) -> Any:
    """Recursively strip YANG module prefixes from JSON_IETF object keys."""
    if isinstance(value, dict):
        return {strip_module(k): normalize_json(v) for k, v in value.items()}
    if isinstance(value, list):
        return [normalize_json(v) for v in value]
    return value


def decode_value(typed_value: Dict[str, Any]) -> Any:
    """
    Decode a gNMI TypedValue in proto3 JSON form.

    Args:
        typed_value: TypedValue dictionary, camelCase or snake_case keys

    Returns:
        Python value; JSON payloads are decoded and normalized
    """
    normalized = {_CAMEL_RE.sub("_", k).lower(): v for k, v in typed_value.items()}

    for kind in ("uint_val", "int_val"):
        if kind in normalized:
            return int(normalized[kind])
    for kind in ("float_val", "double_val"):
        if kind in normalized:
            return float(normalized[kind])
    for kind in ("string_val", "ascii_val"):
        if kind in normalized:
            return normalized[kind]
    if "bool_val" in normalized:
        return bool(normalized["bool_val"])
    for kind in ("json_ietf_val", "json_val"):
        if kind in normalized:
            raw = base64.b64decode(normalized[kind])
            return normalize_json(json.loads(raw))
    if "leaflist_val" in normalized:
        elements = normalized["leaflist_val"].get("element", [])
        return [decode_value(element) for element in elements]
    if "bytes_val" in normalized:
        return base64.b64decode(normalized["bytes_val"])

    logger.warning(f"Unsupported typed value: {typed_value}")
    return None


def encode_json_ietf(value: Any) -> Dict[str, str]:
    """Encode a Python value as a JSON_IETF TypedValue."""
    payload = json.dumps(value).encode()
    return {"json_ietf_val": base64.b64encode(payload).decode()}


def _merge(target: Dict[str, Any], value: Dict[str, Any]) -> None:
    for key, item in value.items():
        if isinstance(item, dict) and isinstance(target.get(key), dict):
            _merge(target[key], item)
        elif isinstance(item, list) and isinstance(target.get(key), list):
            target[key].extend(item)
        else:
            target[key] = item


def _child(node: Dict[str, Any], elem: Dict[str, Any]) -> Dict[str, Any]:
    name = strip_module(elem["name"])
    keys = elem.get("key") or {}
    if not keys:
        return node.setdefault(name, {})

    items = node.setdefault(name, [])
    for item in items:
        if all(str(item.get(k)) == str(v) for k, v in keys.items()):
            return item
    item = dict(keys)
    items.append(item)
    return item


def insert_update(root: Dict[str, Any], elems: List[Dict[str, Any]], value: Any) -> None:
    """
    Place a decoded update value into a tree at the given relative path.

    Args:
        root: Tree being built
        elems: Path elements relative to the tree root
        value: Decoded value
    """
    if not elems:
        if isinstance(value, dict):
            _merge(root, value)
        return

    node = root
    for elem in elems[:-1]:
        node = _child(node, elem)

    last = elems[-1]
    if isinstance(value, dict) or last.get("key"):
        child = _child(node, last)
        if isinstance(value, dict):
            _merge(child, value)
    else:
        node[strip_module(last["name"])] = value


def _is_wrapped_leaf(value: Any, leaf: str) -> bool:
    """A leaf sent as a JSON_IETF object keyed by its own name."""
    return isinstance(value, dict) and len(value) == 1 and strip_module(next(iter(value))) == leaf


def fold_notifications(request_elems: List[Dict[str, Any]], response: Dict[str, Any]) -> Tuple[bool, Any]:
    """
    Fold a GetResponse into a value relative to the requested path.

    Args:
        request_elems: Path elements of the request
        response: GetResponse dictionary

    Returns:
        Tuple of (present, value). A scalar is returned as-is when the
        request addressed a leaf, otherwise a tree dictionary.
    """
    root: Dict[str, Any] = {}
    present = False
    scalar = None

    for notification in response.get("notification", []):
        prefix = (notification.get("prefix") or {}).get("elem", [])
        for update in notification.get("update", []):
            elems = prefix + (update.get("path") or {}).get("elem", [])
            relative = elems[min(len(request_elems), len(elems)):]
            value = decode_value(update.get("val") or {})
            present = True
            if not relative and request_elems and _is_wrapped_leaf(value, request_elems[-1]["name"]):
                value = next(iter(value.values()))
            if not relative and not isinstance(value, dict):
                scalar = value
                continue
            insert_update(root, relative, value)

    if scalar is not None and not root:
        return present, scalar
    return present, root if present else None


class GnmiClient:
    """
    Client for gNMI operations on the device under test.

    Reads are STATE paths encoded as JSON_IETF; a NOT_FOUND status reads as
    an absent value.
    """

    def __init__(self, grpc_client: GrpcurlClient, sleep: Callable[[float], None] = time.sleep):
        """
        Initialize gNMI client.

        Args:
            grpc_client: GrpcurlClient connected to the gNMI target
            sleep: Sleep function used between watch polls
        """
        self.grpc_client = grpc_client
        self._sleep = sleep
        logger.info(f"Initialized gNMI client with {grpc_client}")

    def get(self, xpath: str, data_type: str = "STATE") -> Any:
        """
        Read a path from the device.

        Args:
            xpath: Path to read
            data_type: gNMI data type (ALL, CONFIG, STATE, OPERATIONAL)

        Returns:
            Decoded value, or None if the path is not present
        """
        elems = parse_path(xpath)
        request = {
            "path": [{"elem": elems}],
            "type": data_type,
            "encoding": "JSON_IETF",
        }
        logger.debug(f"gNMI Get {xpath}")

        try:
            response = self.grpc_client.call_unary(GNMI_SERVICE, "Get", request)
        except GrpcCallError as e:
            if e.code() == grpc.StatusCode.NOT_FOUND:
                logger.debug(f"Path {xpath} not found")
                return None
            raise

        present, value = fold_notifications(elems, response)
        if not present:
            return None
        return value

    def _set(self, operation: str, xpath: str, value: Any) -> Dict:
        request = {
            operation: [{"path": {"elem": parse_path(xpath)}, "val": encode_json_ietf(value)}],
        }
        logger.info(f"gNMI Set {operation} {xpath}")
        logger.debug(f"Set payload: {value}")
        return self.grpc_client.call_unary(GNMI_SERVICE, "Set", request)

    def replace(self, xpath: str, value: Any) -> Dict:
        """Replace the subtree at a path with a JSON_IETF value."""
        return self._set("replace", xpath, value)

    def update(self, xpath: str, value: Any) -> Dict:
        """Merge a JSON_IETF value into the subtree at a path."""
        return self._set("update", xpath, value)

    def watch(
        self,
        xpath: str,
        timeout: float,
        predicate: Callable[[Any], bool],
        interval: float = 1.0,
    ) -> Tuple[Any, bool]:
        """
        Poll a path until the predicate holds or the timeout expires.

        Args:
            xpath: Path to poll
            timeout: Maximum time in seconds to wait
            predicate: Called with each read value (None when absent)
            interval: Seconds between polls

        Returns:
            Tuple of (last value, whether the predicate held)
        """
        logger.info(f"Watching {xpath} (timeout={timeout}s)")
        deadline = time.monotonic() + timeout
        while True:
            value = self.get(xpath)
            if predicate(value):
                logger.info(f"Watch on {xpath} satisfied")
                return value, True
            if time.monotonic() >= deadline:
                logger.warning(f"Timed out watching {xpath} after {timeout}s")
                return value, False
            self._sleep(interval)
