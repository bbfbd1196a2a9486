import json
import os
import pathlib
import typing as tp
from collections import defaultdict
from dataclasses import dataclass, fields

from dexstate.consts import DEFAULT_TX_WAIT_SLEEP, DEFAULT_TX_WAIT_TRIES

NETWORK_NAME = os.environ.get("NETWORK_NAME", "local")
ENVS_FILE = os.environ.get("ENVS_FILE", "envs.json")

# environment variable -> envs.json field
EXPANDED_ENVS = {
    "NODE_ADDRESS": "node_url",
    "CHAIN_NAME": "chain_name",
    "DEPLOYER_ACCOUNT_HASH": "deployer_account_hash",
    "SECRET_KEY_PATH": "secret_key_path",
}


@dataclass
class NetworkConfig:
    node_url: str
    chain_name: str
    deployer_account_hash: str = ""
    secret_key_path: str = "keys/secret_key.pem"
    payment_install: int = 600000000000
    payment_call: int = 300000000000
    gas_price_tolerance: int = 1
    tx_wait_tries: int = DEFAULT_TX_WAIT_TRIES
    tx_wait_sleep: float = DEFAULT_TX_WAIT_SLEEP
    name: str = ""

    @classmethod
    def from_dict(cls, name: str, data: tp.Dict) -> "NetworkConfig":
        known = {f.name for f in fields(cls)}
        return cls(name=name, **{key: value for key, value in data.items() if key in known and key != "name"})


class NetworkManager():
    def __init__(self, envs_file: tp.Optional[str] = None):
        self.networks = {}

        with open(pathlib.Path.cwd() / (envs_file or ENVS_FILE), "r") as f:
            self.networks = json.load(f)
            if NETWORK_NAME not in self.networks.keys() and os.environ.get("DUMP_ENVS"):
                environments = defaultdict(dict)
                for var, param in EXPANDED_ENVS.items():
                    environments[NETWORK_NAME].update({param: os.environ.get(var, "")})
                self.networks.update(environments)

    def get_network_param(self, network, params=None):
        value = ""
        if network in self.networks:
            value = self.networks[network]
            if params:
                for item in params.split('.'):
                    value = value[item]
        return value

    def get_network_object(self, network_name) -> NetworkConfig:
        if network_name not in self.networks:
            raise KeyError(f"Network {network_name} doesn't exist in envs.json")
        network = dict(self.networks[network_name])
        for var, param in EXPANDED_ENVS.items():
            if os.environ.get(var):
                network[param] = os.environ[var]
        return NetworkConfig.from_dict(network_name, network)
