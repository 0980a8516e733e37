"""
Tests for the station agent running against the in-memory store.
"""

import asyncio
import pytest
import yaml

from linkdevices.common.links import MemoryLinkStore
from linkdevices.common.provisioning import load_state, state_path_for
from linkdevices.station import agent


@pytest.fixture
def config(tmp_path, monkeypatch):
    monkeypatch.delenv("DEVLINK_STATE_DIR", raising=False)
    cfg = tmp_path / "device_config.yaml"
    cfg.write_text(yaml.safe_dump({"client_id": "station-t", "container_link_id": 5}))
    return str(cfg)


def test_registers_and_persists_new_device(config, tmp_path, capsys):
    """Unknown station registers, persists the id and exits 0."""
    code = asyncio.run(agent.main(["--store", "memory", "--config", config], agent_dir=str(tmp_path)))
    assert code == 0
    assert load_state(state_path_for(str(tmp_path)))["device_link_id"] == 6
    out = capsys.readouterr().out
    assert "new device link 6" in out
    assert "device link 6 confirmed" in out


def test_stale_persisted_id_is_replaced(config, tmp_path, capsys):
    """An id that no longer exists triggers registration of a new one."""
    code = asyncio.run(agent.main(["--store", "memory", "--config", config, "--device-link-id", "99"],
                                  agent_dir=str(tmp_path)))
    assert code == 0
    assert load_state(state_path_for(str(tmp_path)))["device_link_id"] == 6


def test_container_required(tmp_path, capsys):
    code = asyncio.run(agent.main(["--store", "memory", "--config", str(tmp_path / "none.yaml")],
                                  agent_dir=str(tmp_path)))
    assert code == 2
    assert "container_link_id missing" in capsys.readouterr().out


def test_failed_registration_exits_1(config, tmp_path, capsys, monkeypatch):
    """Telemetry that cannot be collected ends the run with exit code 1."""
    def no_hostname():
        raise OSError("no hostname")

    monkeypatch.setattr("platform.node", no_hostname)
    code = asyncio.run(asyncio.wait_for(
        agent.main(["--store", "memory", "--config", config], agent_dir=str(tmp_path)), 2))
    assert code == 1
    assert "reconciliation failed" in capsys.readouterr().out
    assert load_state(state_path_for(str(tmp_path))) == {}


def test_unknown_container_exits_1(config, tmp_path, capsys, monkeypatch):
    """Registering under a container the store does not know fails the run."""
    monkeypatch.setattr(agent, "MemoryLinkStore", lambda containers=(): MemoryLinkStore())
    code = asyncio.run(asyncio.wait_for(
        agent.main(["--store", "memory", "--config", config], agent_dir=str(tmp_path)), 2))
    assert code == 1
    assert "RegistrationFailure" in capsys.readouterr().out
