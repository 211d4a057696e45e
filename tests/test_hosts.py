import json

import pytest

from sshm.errors import ConfigurationError
from sshm.hosts import find_host, load_hosts


def test_missing_file(tmp_path):
    assert load_hosts(tmp_path / "hosts.json") == []


def test_json_store(tmp_path):
    path = tmp_path / "hosts.json"
    path.write_text(json.dumps({"hosts": [
        {"name": "web-1", "host": "10.0.0.1", "user": "deploy"},
        {"name": "db-1", "host": "10.0.0.2", "user": "pg", "port": 2222, "tags": ["db"]},
        "junk",
    ]}))

    hosts = load_hosts(path)
    assert [h.name for h in hosts] == ["web-1", "db-1"]
    assert hosts[1].effective_port == 2222


def test_yaml_list(tmp_path):
    path = tmp_path / "hosts.yaml"
    path.write_text(
        "- name: edge\n"
        "  address: 192.0.2.10\n"
        "  user: admin\n"
        "  proxy_jump: bastion\n"
    )
    [host] = load_hosts(path)
    assert host.proxy_jump == "bastion"


def test_unparsable(tmp_path):
    path = tmp_path / "hosts.json"
    path.write_text("{")
    with pytest.raises(ConfigurationError):
        load_hosts(path)


def test_find_by_name_then_address(tmp_path):
    path = tmp_path / "hosts.json"
    path.write_text(json.dumps([
        {"name": "a", "host": "10.0.0.1", "user": "u"},
        {"name": "10.0.0.1", "host": "10.0.0.9", "user": "u"},
    ]))
    hosts = load_hosts(path)
    assert find_host(hosts, "10.0.0.1").address == "10.0.0.9"
    assert find_host(hosts, "a").address == "10.0.0.1"
    assert find_host(hosts, "nope") is None


def test_bad_port(tmp_path):
    path = tmp_path / "hosts.json"
    path.write_text(json.dumps([{"name": "a", "host": "10.0.0.1", "user": "u", "port": "ssh"}]))
    with pytest.raises(ConfigurationError, match="bad host entry"):
        load_hosts(path)
