"""Fakes standing in for grpcurl, the DUT and the ATE."""

import subprocess

from gribi_failover.errors import GribiError, TrafficError
from gribi_failover.gnmi import GnmiClient
from gribi_failover.models import FlowResult


def completed(stdout="", stderr="", returncode=0):
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class FakeRunner:
    """subprocess.run replacement returning scripted results in order."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def __call__(self, cmd, input=None, **kwargs):
        self.calls.append({"cmd": cmd, "input": input, "kwargs": kwargs})
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        return result


class FakeGrpc:
    """GrpcurlClient replacement recording requests and replaying responses."""

    def __init__(self, stream_responses=None, unary_responses=None):
        self.stream_responses = list(stream_responses or [])
        self.unary_responses = list(unary_responses or [])
        self.calls = []

    def call_stream(self, service, method, requests):
        self.calls.append((service, method, requests))
        response = self.stream_responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    def call_unary(self, service, method, request=None):
        self.calls.append((service, method, request))
        response = self.unary_responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


class DictGnmi(GnmiClient):
    """gNMI client reading from a path -> value dictionary."""

    def __init__(self, values=None):
        super().__init__(grpc_client=None, sleep=lambda seconds: None)
        self.values = dict(values or {})
        self.reads = []
        self.sets = []

    def get(self, xpath, data_type="STATE"):
        self.reads.append(xpath)
        return self.values.get(xpath)

    def replace(self, xpath, value):
        self.sets.append(("replace", xpath, value))
        return {}

    def update(self, xpath, value):
        self.sets.append(("update", xpath, value))
        return {}


AFTS = "/network-instances/network-instance[name=DEFAULT]/afts"
PREFIX_NHG = f"{AFTS}/ipv4-unicast/ipv4-entry[prefix=203.0.113.0/24]/state/next-hop-group"


def nhg_path(nhg_id):
    return f"{AFTS}/next-hop-groups/next-hop-group[id={nhg_id}]"


def nh_path(index):
    return f"{AFTS}/next-hops/next-hop[index={index}]"


def nhg_tree(nhg_id, members, backup=None):
    state = {"id": str(nhg_id)}
    if backup is not None:
        state["backup-next-hop-group"] = str(backup)
    return {
        "id": str(nhg_id),
        "state": state,
        "next-hops": {
            "next-hop": [
                {"index": str(index), "state": {"index": str(index), "weight": str(weight)}}
                for index, weight in members.items()
            ]
        },
    }


def nh_tree(index, address):
    return {"index": str(index), "state": {"index": str(index), "ip-address": address}}


class FakeDevice:
    """
    DUT model shared by the fake gNMI and gRIBI clients.

    The prefix resolves through the primary NHG members whose egress link is
    up, and through the backup NHG once no primary is left. With
    ``keep_primary`` the prefix stays on the primary NHG, which then reports
    no members and only its backup reference.
    """

    EGRESS = {"192.0.2.6": "Ethernet2", "192.0.2.10": "Ethernet3", "192.0.2.14": "Ethernet4"}

    def __init__(self, keep_primary=False):
        self.keep_primary = keep_primary
        self.events = []
        self.enabled = {}
        self.next_hops = {}
        self.groups = {}
        self.prefixes = {}

    def is_up(self, address):
        return self.enabled.get(self.EGRESS.get(address), True)

    def values(self):
        values = {}
        for prefix, nhg_id in self.prefixes.items():
            weights, backup = self.groups[nhg_id]
            live = {i: w for i, w in weights.items() if self.is_up(self.next_hops[i])}
            if not live and backup is not None and not self.keep_primary:
                nhg_id, (weights, backup) = backup, self.groups[backup]
                live = dict(weights)
            values[f"{AFTS}/ipv4-unicast/ipv4-entry[prefix={prefix}]/state/next-hop-group"] = nhg_id
            values[nhg_path(nhg_id)] = nhg_tree(nhg_id, live, backup)
        for index, address in self.next_hops.items():
            values[nh_path(index)] = nh_tree(index, address)
        return values


class DeviceGnmi(DictGnmi):
    def __init__(self, device):
        super().__init__()
        self.device = device

    def get(self, xpath, data_type="STATE"):
        self.reads.append(xpath)
        return self.device.values().get(xpath)

    def update(self, xpath, value):
        super().update(xpath, value)
        name = xpath.split("[name=")[1].split("]")[0]
        self.device.enabled[name] = value
        self.device.events.append(("enabled", name, value))
        return {}


class DeviceGribi:
    """GribiClient replacement programming a FakeDevice."""

    def __init__(self, device, fail_start=False):
        self.device = device
        self.fail_start = fail_start

    def start(self):
        self.device.events.append(("start",))
        if self.fail_start:
            raise GribiError("gRIBI Connection can not be established")

    def become_leader(self):
        self.device.events.append(("become_leader",))

    def flush_all(self):
        self.device.events.append(("flush",))
        self.device.next_hops.clear()
        self.device.groups.clear()
        self.device.prefixes.clear()

    def close(self):
        self.device.events.append(("close",))

    def add_nh(self, index, address, network_instance, mode):
        self.device.events.append(("add_nh", index))
        self.device.next_hops[index] = address

    def add_nhg(self, nhg_id, weights, network_instance, mode, backup_nhg=None):
        self.device.events.append(("add_nhg", nhg_id))
        self.device.groups[nhg_id] = (dict(weights), backup_nhg)

    def add_ipv4(self, prefix, nhg_id, network_instance, nhg_network_instance, mode):
        self.device.events.append(("add_ipv4", prefix))
        self.device.prefixes[prefix] = nhg_id


class FakeOtg:
    """OtgClient replacement reporting a scripted loss per traffic run."""

    def __init__(self, api, losses=None, dut_mac="02:1a:00:00:00:01"):
        self.api = api
        self.losses = list(losses or [])
        self.dut_mac = dut_mac
        self.events = []
        self.pushed = []

    def new_config(self):
        return self.api.config()

    def push_config(self, config):
        self.events.append("push_config")
        self.pushed.append(config)

    def start_protocols(self):
        self.events.append("start_protocols")

    def wait_for_arp(self, ethernet_name, timeout, interval=1.0):
        self.events.append(("wait_for_arp", ethernet_name))

    def neighbor_mac(self, ethernet_name, ipv4):
        return self.dut_mac

    def start_traffic(self):
        self.events.append("start_traffic")

    def stop_traffic(self):
        self.events.append("stop_traffic")

    def log_flow_metrics(self, config):
        pass

    def log_port_metrics(self, config):
        pass

    def flow_result(self, flow_name):
        loss = self.losses.pop(0) if self.losses else 0.0
        if loss is None:
            raise TrafficError(f"Flow {flow_name} transmitted no frames")
        return FlowResult(name=flow_name, frames_tx=1000, frames_rx=int(1000 - loss * 10), loss_pct=loss)
