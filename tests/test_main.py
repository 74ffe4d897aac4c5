import json

from gribi_failover import __main__ as cli
from gribi_failover.config import Config
from gribi_failover.models import FlowResult, PhaseResult


class StubScenario:
    def run(self):
        return [
            PhaseResult(phase="primaries-up", nhg_id=100, next_hops=["192.0.2.6", "192.0.2.10"],
                        flow=FlowResult(name="BaseFlow", frames_tx=10, frames_rx=10)),
        ]


def write_config(tmp_path, data):
    path = tmp_path / "testbed.json"
    path.write_text(json.dumps(data))
    return str(path)


def test_missing_config_file_fails(tmp_path):
    assert cli.main(["--config-file", str(tmp_path / "missing.json")]) == 1


def test_invalid_log_level_fails(tmp_path, testbed_data):
    assert cli.main(["--config-file", write_config(tmp_path, testbed_data), "--log-level", "loud"]) == 1


def test_successful_run(tmp_path, testbed_data, monkeypatch):
    built = []

    def from_config(config):
        built.append(config)
        return StubScenario()

    monkeypatch.setattr(Config, "setup_logging", lambda self: None)
    monkeypatch.setattr(cli.BackupSwitchScenario, "from_config", from_config)

    assert cli.main(["--config-file", write_config(tmp_path, testbed_data), "--log-level", "debug"]) == 0
    assert built[0].logging.LOG_LEVEL == "DEBUG"
    assert built[0].dut.ports["port2"] == "Ethernet2"


def test_failed_run(tmp_path, testbed_data, monkeypatch):
    class FailingScenario:
        def run(self):
            raise RuntimeError("boom")

    monkeypatch.setattr(Config, "setup_logging", lambda self: None)
    monkeypatch.setattr(cli.BackupSwitchScenario, "from_config", lambda config: FailingScenario())

    assert cli.main(["--config-file", write_config(tmp_path, testbed_data)]) == 1
