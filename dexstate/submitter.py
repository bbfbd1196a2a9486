"""Signed transaction submission through the ``casper-client`` binary.

Signing stays with the binary, this module only builds its argument list
and reads the transaction hash back from its JSON output.
"""
import json
import logging
import re
import subprocess  # nosec
import typing as tp
from dataclasses import dataclass

import allure

from dexstate.consts import FinalityStatus
from dexstate.errors import TransactionFailure
from dexstate.node_client import CasperNodeClient

LOG = logging.getLogger(__name__)

CASPER_CLIENT = "casper-client"
ODRA_INSTALL_ARGS = (
    ("odra_cfg_allow_key_override", "bool", "true"),
    ("odra_cfg_is_upgradable", "bool", "true"),
    ("odra_cfg_is_upgrade", "bool", "false"),
)


@dataclass(frozen=True)
class SessionArg:
    """``name:type:'value'`` argument; ``value`` must already be a plain string here."""

    name: str
    cl_type: str
    value: tp.Any

    def render(self) -> str:
        return f"{self.name}:{self.cl_type}:'{self.value}'"


def client_node_address(node_url: str) -> str:
    return re.sub(r"/rpc/?$", "", node_url.rstrip("/"))


def parse_client_output(output: str) -> tp.Dict:
    """casper-client may print a banner before the JSON body."""
    lines = output.splitlines()
    for position, line in enumerate(lines):
        if line.lstrip().startswith(("{", "[")):
            return json.loads("\n".join(lines[position:]))
    raise ValueError(f"no JSON in casper-client output: {output[:200]!r}")


def extract_transaction_hash(payload: tp.Dict) -> str:
    result = payload.get("result", payload)
    tx_hash = result.get("transaction_hash") or result.get("deploy_hash")
    if isinstance(tx_hash, dict):
        tx_hash = tx_hash.get("Version1") or tx_hash.get("Version2")
    if not tx_hash:
        raise ValueError(f"no transaction hash in {payload}")
    return tx_hash


class CasperClientSubmitter:
    def __init__(
        self,
        node_client: CasperNodeClient,
        chain_name: str,
        secret_key_path: str,
        payment_install: int,
        payment_call: int,
        gas_price_tolerance: int = 1,
        binary: str = CASPER_CLIENT,
    ):
        self.node = node_client
        self.chain_name = chain_name
        self.secret_key_path = secret_key_path
        self.payment_install = payment_install
        self.payment_call = payment_call
        self.gas_price_tolerance = gas_price_tolerance
        self.binary = binary

    def _common_args(self, payment: int) -> tp.List[str]:
        return [
            "--node-address",
            client_node_address(self.node.node_url),
            "--chain-name",
            self.chain_name,
            "--secret-key",
            self.secret_key_path,
            "--payment-amount",
            str(payment),
            "--gas-price-tolerance",
            str(self.gas_price_tolerance),
            "--standard-payment",
            "true",
        ]

    @staticmethod
    def _session_args(args: tp.Iterable[SessionArg]) -> tp.List[str]:
        argv = []
        for arg in args:
            argv.extend(["--session-arg", arg.render()])
        return argv

    def _run(self, argv: tp.List[str]) -> str:
        LOG.debug(f"$ {' '.join(argv)}")
        try:
            proc = subprocess.run(  # nosec
                argv, stdout=subprocess.PIPE, stderr=subprocess.PIPE, encoding="utf-8", check=False
            )
        except FileNotFoundError:
            raise TransactionFailure(f"{self.binary} is not installed")
        if proc.returncode != 0:
            raise TransactionFailure((proc.stderr or proc.stdout).strip())
        try:
            return extract_transaction_hash(parse_client_output(proc.stdout))
        except ValueError as e:
            raise TransactionFailure(str(e))

    @allure.step("Submit install transaction")
    def install(
        self,
        wasm_path: str,
        package_key_name: str,
        args: tp.Sequence[SessionArg] = (),
        payment: tp.Optional[int] = None,
    ) -> str:
        odra_args = [SessionArg("odra_cfg_package_hash_key_name", "string", package_key_name)]
        odra_args.extend(SessionArg(*item) for item in ODRA_INSTALL_ARGS)
        argv = (
            [self.binary, "put-transaction", "session"]
            + self._common_args(payment or self.payment_install)
            + ["--wasm-path", wasm_path, "--install-upgrade"]
            + self._session_args(odra_args + list(args))
        )
        tx_hash = self._run(argv)
        LOG.info(f"Install of {wasm_path} submitted: {tx_hash}")
        return tx_hash

    @allure.step("Submit entry point call")
    def call(self, package_hash: str, entry_point: str, args: tp.Sequence[SessionArg] = ()) -> str:
        argv = (
            [self.binary, "put-transaction", "package"]
            + self._common_args(self.payment_call)
            + ["--contract-package-hash", package_hash, "--session-entry-point", entry_point]
            + self._session_args(args)
        )
        tx_hash = self._run(argv)
        LOG.info(f"Call {entry_point} on {package_hash} submitted: {tx_hash}")
        return tx_hash

    def status(self, tx_hash: str) -> tp.Tuple[FinalityStatus, tp.Optional[str]]:
        return self.node.get_transaction_status(tx_hash)
