import logging
import typing as tp
from urllib.parse import urlparse

import allure
import requests

from dexstate.apiclient import JsonRPCSession
from dexstate.consts import NOT_FOUND_MARKERS, QUERY_FAILED_CODES, FinalityStatus
from dexstate.errors import NodeRpcError

LOG = logging.getLogger(__name__)

METHOD_NOT_FOUND = -32601
NO_SUCH_TRANSACTION_MARKERS = ("No such transaction", "No such deploy")


def normalize_node_url(node_url: str) -> str:
    node_url = node_url.rstrip("/")
    if not urlparse(node_url).path.endswith("/rpc"):
        node_url = f"{node_url}/rpc"
    return node_url


def is_not_found(error: tp.Dict) -> bool:
    text = f"{error.get('message', '')} {error.get('data', '')}"
    return error.get("code") in QUERY_FAILED_CODES and any(marker in text for marker in NOT_FOUND_MARKERS)


def parse_execution_status(result: tp.Optional[tp.Dict]) -> tp.Tuple[FinalityStatus, tp.Optional[str]]:
    """Map a transaction/deploy lookup result onto a finality status.

    Handles both the Version1/Version2 ``execution_info`` shapes and the
    legacy ``execution_results`` list of deploy lookups.
    """
    if not result:
        return FinalityStatus.PENDING, None
    info = result.get("execution_info") or (result.get("transaction") or {}).get("execution_info")
    if info:
        execution_result = info.get("execution_result") or {}
        for version in ("Version2", "Version1"):
            body = execution_result.get(version)
            if body is None:
                continue
            if "Failure" in body:
                return FinalityStatus.FAILURE, body["Failure"].get("error_message", "")
            if "Success" in body:
                return FinalityStatus.SUCCESS, None
            if body.get("error_message"):
                return FinalityStatus.FAILURE, body["error_message"]
            return FinalityStatus.SUCCESS, None
        if info.get("error_message"):
            return FinalityStatus.FAILURE, info["error_message"]
        return FinalityStatus.PENDING, None
    for item in result.get("execution_results") or []:
        outcome = item.get("result") or {}
        if "Failure" in outcome:
            return FinalityStatus.FAILURE, outcome["Failure"].get("error_message", "")
        if "Success" in outcome:
            return FinalityStatus.SUCCESS, None
    return FinalityStatus.PENDING, None


class CasperNodeClient:
    def __init__(self, node_url: str, session: tp.Optional[JsonRPCSession] = None, timeout: int = 30):
        self._node_url = normalize_node_url(node_url)
        self._session = session or JsonRPCSession(self._node_url, timeout=timeout)

    @property
    def node_url(self) -> str:
        return self._node_url

    def _call(self, method: str, params: tp.Optional[tp.Dict] = None, allow_missing: bool = False):
        response = self._session.send_rpc(method, params)
        error = response.get("error")
        if error is None:
            return response["result"]
        if allow_missing and is_not_found(error):
            LOG.debug(f"{method}: nothing stored ({error.get('message')})")
            return None
        raise NodeRpcError(method, code=error.get("code"), rpc_message=error.get("message", ""), data=error.get("data"))

    @allure.step("Get state root hash")
    def get_state_root_hash(self) -> str:
        return self._call("chain_get_state_root_hash")["state_root_hash"]

    @allure.step("Query global state")
    def query_global_state(
        self, key: str, state_root_hash: str, path: tp.Optional[tp.List[str]] = None
    ) -> tp.Optional[tp.Dict]:
        result = self._call(
            "query_global_state",
            {
                "state_identifier": {"StateRootHash": state_root_hash},
                "key": key,
                "path": path or [],
            },
            allow_missing=True,
        )
        return None if result is None else result["stored_value"]

    @allure.step("Get dictionary item")
    def get_dictionary_item(self, state_root_hash: str, seed_uref: str, item_key: str) -> tp.Optional[tp.Dict]:
        result = self._call(
            "state_get_dictionary_item",
            {
                "state_root_hash": state_root_hash,
                "dictionary_identifier": {"URef": {"seed_uref": seed_uref, "dictionary_item_key": item_key}},
            },
            allow_missing=True,
        )
        return None if result is None else result["stored_value"]

    @allure.step("Get transaction")
    def get_transaction(self, transaction_hash: str) -> tp.Optional[tp.Dict]:
        try:
            return self._call(
                "info_get_transaction",
                {"transaction_hash": {"Version1": transaction_hash}, "finalized_approvals": False},
            )
        except NodeRpcError as e:
            if e.code == METHOD_NOT_FOUND:
                return self.get_deploy(transaction_hash)
            if any(marker in str(e.rpc_message) for marker in NO_SUCH_TRANSACTION_MARKERS):
                return None
            raise

    @allure.step("Get deploy")
    def get_deploy(self, deploy_hash: str) -> tp.Optional[tp.Dict]:
        try:
            return self._call("info_get_deploy", {"deploy_hash": deploy_hash, "finalized_approvals": False})
        except NodeRpcError as e:
            if any(marker in str(e.rpc_message) for marker in NO_SUCH_TRANSACTION_MARKERS):
                return None
            raise

    @allure.step("Get transaction status")
    def get_transaction_status(self, transaction_hash: str) -> tp.Tuple[FinalityStatus, tp.Optional[str]]:
        try:
            result = self.get_transaction(transaction_hash)
        except requests.exceptions.RequestException as e:
            LOG.warning(f"Can't fetch transaction {transaction_hash}: {e}")
            return FinalityStatus.PENDING, None
        return parse_execution_status(result)

    @allure.step("Get node status")
    def get_status(self) -> tp.Dict:
        return self._call("info_get_status")
