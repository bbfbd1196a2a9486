import json
import pathlib

import allure
import pytest

from deploy.cli.network_manager import NetworkConfig, NetworkManager

REPO_ENVS = pathlib.Path(__file__).parents[3] / "envs.json"


@pytest.fixture
def envs_file(tmp_path):
    path = tmp_path / "envs.json"
    path.write_text(
        json.dumps(
            {
                "local": {
                    "node_url": "http://localhost:11101/rpc",
                    "chain_name": "casper-net-1",
                    "tx_wait_tries": 10,
                    "comment": "nctl",
                }
            }
        )
    )
    return str(path)


@allure.feature("Configuration")
@allure.story("Networks")
class TestNetworkManager:
    def test_network_object(self, envs_file, monkeypatch):
        for var in ("NODE_ADDRESS", "CHAIN_NAME", "DEPLOYER_ACCOUNT_HASH", "SECRET_KEY_PATH"):
            monkeypatch.delenv(var, raising=False)
        network = NetworkManager(envs_file).get_network_object("local")
        assert network == NetworkConfig(
            node_url="http://localhost:11101/rpc", chain_name="casper-net-1", tx_wait_tries=10, name="local"
        )

    def test_environment_overrides(self, envs_file, monkeypatch):
        monkeypatch.setenv("NODE_ADDRESS", "http://10.0.0.2:7777/rpc")
        monkeypatch.setenv("DEPLOYER_ACCOUNT_HASH", "account-hash-" + "aa" * 32)
        network = NetworkManager(envs_file).get_network_object("local")
        assert network.node_url == "http://10.0.0.2:7777/rpc"
        assert network.deployer_account_hash == "account-hash-" + "aa" * 32

    def test_unknown_network(self, envs_file):
        with pytest.raises(KeyError):
            NetworkManager(envs_file).get_network_object("devnet")

    def test_network_param(self, envs_file):
        manager = NetworkManager(envs_file)
        assert manager.get_network_param("local", "chain_name") == "casper-net-1"
        assert manager.get_network_param("devnet", "chain_name") == ""

    def test_dump_envs(self, envs_file, monkeypatch):
        monkeypatch.setattr("deploy.cli.network_manager.NETWORK_NAME", "ci")
        monkeypatch.setenv("DUMP_ENVS", "1")
        monkeypatch.setenv("NODE_ADDRESS", "http://ci-node:7777/rpc")
        monkeypatch.setenv("CHAIN_NAME", "casper-ci")
        network = NetworkManager(envs_file).get_network_object("ci")
        assert network.chain_name == "casper-ci"
        assert network.node_url == "http://ci-node:7777/rpc"

    @pytest.mark.parametrize("name", ["local", "testnet", "mainnet"])
    def test_shipped_networks(self, name):
        network = NetworkManager(str(REPO_ENVS)).get_network_object(name)
        assert network.node_url.endswith("/rpc")
        assert network.tx_wait_tries > 0
