import itertools
import typing as tp

import tabulate

from dexstate.codecs import Identifier
from dexstate.consts import FieldKind
from dexstate.events import EventGap
from dexstate.manifest import DeploymentManifest
from dexstate.node_client import CasperNodeClient
from dexstate.pairs import PairLookupService
from dexstate.resolver import StateResolver
from dexstate.schemas import ContractSchema
from dexstate.values import decode_value

POOL_TOKENS = ("wcspr", "ecto", "usdc", "weth", "wbtc")
MISSING = "-"


def make_resolver(node_url: str) -> StateResolver:
    return StateResolver(CasperNodeClient(node_url))


def _show(value) -> str:
    if value is None:
        return MISSING
    if isinstance(value, Identifier):
        return value.formatted()
    if isinstance(value, bytes):
        return value.hex()
    return str(value)


def pair_table(pairs: PairLookupService, token_a: str, token_b: str) -> str:
    pair = pairs.find_pair(token_a, token_b)
    rows = [["pair", _show(pair)]]
    if pair is not None:
        state = pairs.get_pair_state(pair)
        rows.extend(
            [
                ["token0", _show(state.token0)],
                ["token1", _show(state.token1)],
                ["reserve0", _show(state.reserve0)],
                ["reserve1", _show(state.reserve1)],
                ["block_timestamp_last", _show(state.block_timestamp_last)],
            ]
        )
    return tabulate.tabulate(rows, ["Field", "Value"], tablefmt="simple")


def reserves_table(pairs: PairLookupService, pair_ref: str) -> str:
    reserves = pairs.get_reserves(pair_ref)
    reserve0, reserve1 = reserves if reserves is not None else (MISSING, MISSING)
    return tabulate.tabulate([[pair_ref, reserve0, reserve1]], ["Pair", "Reserve0", "Reserve1"], tablefmt="simple")


def pools_table(pairs: PairLookupService, manifest: DeploymentManifest, tokens: tp.Sequence[str] = POOL_TOKENS) -> str:
    """Every two-token combination of the manifest tokens and the pair registered for it."""
    state_root = pairs.resolver.state_root_hash()
    known = [name for name in tokens if name in manifest]
    rows = []
    for name_a, name_b in itertools.combinations(known, 2):
        pair = pairs.find_pair(manifest[name_a].package_hash, manifest[name_b].package_hash, state_root=state_root)
        rows.append([f"{name_a.upper()}-{name_b.upper()}", _show(pair)])
    found = sum(1 for row in rows if row[1] != MISSING)
    table = tabulate.tabulate(rows, ["Pool", "Pair"], tablefmt="simple")
    return f"{table}\n\n{found} of {len(rows)} pools exist"


def events_table(resolver: StateResolver, contract_ref: str) -> str:
    rows = []
    for index, event in enumerate(resolver.read_events(contract_ref)):
        if isinstance(event, EventGap):
            rows.append([index, "<gap>", MISSING, event.reason])
        else:
            rows.append([index, event.short_name, event.sequence_number, ", ".join(_show(f) for f in event.fields)])
    return tabulate.tabulate(rows, ["Index", "Event", "Seq", "Fields"], tablefmt="simple")


def probe_table(resolver: StateResolver, contract_ref: str, schema: ContractSchema, extra: int = 2) -> str:
    """Read indices ``0 .. schema.width + extra`` to check the index table against a live contract."""
    snapshot = resolver.snapshot(contract_ref)
    descriptors = {descriptor.index: descriptor for descriptor in schema.descriptors()}
    rows = []
    for index in range(schema.width + extra):
        descriptor = descriptors.get(index)
        name = descriptor.name if descriptor else "?"
        if descriptor is not None and descriptor.kind == FieldKind.MAPPING:
            rows.append([index, name, "mapping", "(needs a key)"])
            continue
        cl_value = snapshot.read_raw(index)
        if cl_value is None:
            rows.append([index, name, descriptor.value_type.value if descriptor else "?", MISSING])
            continue
        if descriptor is None:
            rows.append([index, name, str(cl_value.get("cl_type")), cl_value.get("bytes")])
            continue
        try:
            value = _show(decode_value(descriptor.value_type, cl_value))
        except ValueError as e:
            value = f"<{e}>"
        rows.append([index, name, descriptor.value_type.value, value])
    return tabulate.tabulate(rows, ["Index", "Field", "Type", "Value"], tablefmt="simple")
