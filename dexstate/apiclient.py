"""JSON-RPC 2.0 transport for the node's ``/rpc`` endpoint."""
import itertools
import typing as tp

from requests import Session


class JsonRPCSession(Session):
    """requests session bound to one node; Casper methods take named params."""

    def __init__(self, node_url: str, timeout: float = 60):
        super(JsonRPCSession, self).__init__()
        self.node_url = node_url
        self.timeout = timeout
        self._ids = itertools.count(1)

    def build_request(self, method: str, params: tp.Optional[tp.Dict] = None) -> tp.Dict:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method}
        if params is not None:
            body["params"] = params
        return body

    def send_rpc(self, method: str, params: tp.Optional[tp.Dict] = None) -> tp.Dict:
        """Response envelope holding exactly one of ``result`` and ``error``."""
        request = self.build_request(method, params)
        resp = self.post(self.node_url, json=request, timeout=self.timeout)
        resp.raise_for_status()
        envelope = resp.json()

        assert ("result" in envelope) != ("error" in envelope), f"{method}: malformed response {envelope}"
        if "result" in envelope:
            assert envelope.get("id") == request["id"], f"{method}: answer to request {envelope.get('id')}"
        return envelope
