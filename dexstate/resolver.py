"""Read typed values out of contract storage.

Every contract keeps its fields in the ``state`` dictionary; the item key of
a field is derived from its positional index (see ``dexstate.keys``).
Unpinned calls fetch the current state root every time, use ``snapshot`` to
read several fields from one consistent state.
"""
import logging
import typing as tp
from multiprocessing.dummy import Pool

import allure

from dexstate import keys
from dexstate.codecs import AddressCodec, Identifier
from dexstate.consts import EVENTS_DICTIONARY, EVENTS_LENGTH, STATE_DICTIONARY, FieldKind, ValueType
from dexstate.errors import MalformedValue, NoActiveVersion
from dexstate.events import EventDecoder, EventGap, EventRecord
from dexstate.node_client import CasperNodeClient
from dexstate.schemas import FieldDescriptor
from dexstate.values import decode_value

LOG = logging.getLogger(__name__)

EntityRef = tp.Union[Identifier, str]
LookupKey = tp.Optional[tp.Any]
PACKAGE_KINDS = ("ContractPackage", "Package")
ENTITY_KINDS = ("Contract", "Account", "AddressableEntity")


def as_identifier(ref: EntityRef) -> Identifier:
    return ref if isinstance(ref, Identifier) else AddressCodec.decode_ambiguous(ref)


def named_keys_to_dict(named_keys: tp.Union[tp.List[tp.Dict], tp.Dict, None]) -> tp.Dict[str, str]:
    if not named_keys:
        return {}
    if isinstance(named_keys, dict):
        return dict(named_keys)
    return {item["name"]: item["key"] for item in named_keys}


def lookup_key_bytes(field: FieldDescriptor, lookup_key: LookupKey) -> tp.Optional[bytes]:
    if field.kind == FieldKind.PLAIN:
        if lookup_key is not None:
            raise ValueError(f"plain field {field.name or field.index} takes no lookup key")
        return None
    if lookup_key is None:
        raise ValueError(f"mapping field {field.name or field.index} needs a lookup key")
    return keys.serialize_lookup_key(lookup_key, field.key_type)


def active_version(package: tp.Dict) -> tp.Optional[tp.Dict]:
    """Highest enabled contract version of a package, or None."""
    disabled = {
        (item.get("protocol_version_major"), item.get("contract_version"))
        for item in package.get("disabled_versions") or []
    }
    enabled = [
        version
        for version in package.get("versions") or []
        if (version.get("protocol_version_major"), version.get("contract_version")) not in disabled
    ]
    if not enabled:
        return None
    return max(enabled, key=lambda version: version["contract_version"])


class StateResolver:
    def __init__(self, node_client: CasperNodeClient, event_decoder: tp.Optional[EventDecoder] = None):
        self.node = node_client
        self.event_decoder = event_decoder or EventDecoder()

    def state_root_hash(self, state_root: tp.Optional[str] = None) -> str:
        return state_root or self.node.get_state_root_hash()

    def stored_value(self, ref: EntityRef, state_root: tp.Optional[str] = None) -> tp.Optional[tp.Dict]:
        identifier = as_identifier(ref)
        return self.node.query_global_state(identifier.formatted(), self.state_root_hash(state_root))

    @allure.step("Resolve active contract")
    def resolve_active_contract(self, package_ref: EntityRef, state_root: tp.Optional[str] = None) -> Identifier:
        stored = self.stored_value(package_ref, state_root) or {}
        package = next((stored[kind] for kind in PACKAGE_KINDS if kind in stored), None)
        if package is None:
            raise NoActiveVersion(as_identifier(package_ref).formatted())
        version = active_version(package)
        if version is None:
            raise NoActiveVersion(as_identifier(package_ref).formatted())
        contract = Identifier.parse(version.get("contract_hash") or version.get("entity_hash"))
        LOG.debug(f"Active version {version['contract_version']} of {package_ref}: {contract.hex}")
        return contract

    @allure.step("Get named keys")
    def named_keys(self, entity_ref: EntityRef, state_root: tp.Optional[str] = None) -> tp.Dict[str, str]:
        """Named keys of a contract or an account; a package ref is resolved to its active contract."""
        state_root = self.state_root_hash(state_root)
        stored = self.stored_value(entity_ref, state_root)
        if stored is None:
            return {}
        if any(kind in stored for kind in PACKAGE_KINDS):
            contract = self.resolve_active_contract(entity_ref, state_root)
            stored = self.stored_value(contract, state_root) or {}
        for kind in ENTITY_KINDS:
            if kind in stored:
                return named_keys_to_dict(stored[kind].get("named_keys"))
        return {}

    @allure.step("Read named value")
    def read_named_value(
        self, entity_ref: EntityRef, name: str, value_type: ValueType, state_root: tp.Optional[str] = None
    ) -> tp.Any:
        state_root = self.state_root_hash(state_root)
        key = self.named_keys(entity_ref, state_root).get(name)
        if key is None:
            return None
        if value_type == ValueType.ADDRESS and not key.startswith("uref-"):
            return Identifier.parse(key)
        stored = self.node.query_global_state(key, state_root)
        if stored is None or "CLValue" not in stored:
            return None
        return decode_value(value_type, stored["CLValue"])

    @allure.step("Read contract field")
    def read(
        self,
        contract_ref: EntityRef,
        field: FieldDescriptor,
        lookup_key: LookupKey = None,
        state_root: tp.Optional[str] = None,
    ) -> tp.Any:
        return self.snapshot(contract_ref, state_root).read(field, lookup_key)

    @allure.step("Read contract events")
    def read_events(
        self,
        contract_ref: EntityRef,
        schemas: tp.Union[tp.Dict[str, tp.Sequence[ValueType]], tp.Sequence[ValueType], None] = None,
        state_root: tp.Optional[str] = None,
    ) -> tp.List[tp.Union[EventRecord, EventGap]]:
        state_root = self.state_root_hash(state_root)
        named = self.named_keys(contract_ref, state_root)
        if EVENTS_DICTIONARY not in named or EVENTS_LENGTH not in named:
            LOG.info(f"{contract_ref} doesn't emit events")
            return []
        stored = self.node.query_global_state(named[EVENTS_LENGTH], state_root)
        count = decode_value(ValueType.U32, stored["CLValue"]) if stored else 0
        events_uref = named[EVENTS_DICTIONARY]

        def fetch(index: int) -> tp.Optional[bytes]:
            item = self.node.get_dictionary_item(state_root, events_uref, str(index))
            if item is None or "CLValue" not in item:
                return None
            return decode_value(ValueType.EVENT, item["CLValue"])

        if schemas is None or isinstance(schemas, dict):
            decoder = self.event_decoder if schemas is None else EventDecoder(schemas)
            return decoder.decode_all(count, fetch)
        return self.event_decoder.decode_all(count, fetch, schema=schemas)

    def snapshot(self, contract_ref: EntityRef, state_root: tp.Optional[str] = None) -> "StateSnapshot":
        return StateSnapshot(self, contract_ref, self.state_root_hash(state_root))


class StateSnapshot:
    """Reads of one contract pinned to one state root."""

    def __init__(self, resolver: StateResolver, contract_ref: EntityRef, state_root: str):
        self.resolver = resolver
        self.contract_ref = contract_ref
        self.state_root = state_root
        self._state_uref = None

    @property
    def state_uref(self) -> tp.Optional[str]:
        if self._state_uref is None:
            self._state_uref = self.resolver.named_keys(self.contract_ref, self.state_root).get(STATE_DICTIONARY)
            if self._state_uref is None:
                LOG.warning(f"{self.contract_ref} has no {STATE_DICTIONARY} dictionary")
        return self._state_uref

    def read_raw(self, index: int, lookup_key: tp.Optional[bytes] = None) -> tp.Optional[tp.Dict]:
        """Undecoded CLValue stored at ``index``."""
        item_key = keys.dictionary_item_key(keys.storage_key(index, lookup_key))
        if self.state_uref is None:
            return None
        stored = self.resolver.node.get_dictionary_item(self.state_root, self.state_uref, item_key)
        if stored is None:
            LOG.debug(f"No entry at index {index} ({item_key})")
            return None
        if "CLValue" not in stored:
            raise MalformedValue(f"dictionary item {item_key} holds {list(stored)} instead of a CLValue")
        return stored["CLValue"]

    def read(self, field: FieldDescriptor, lookup_key: LookupKey = None) -> tp.Any:
        cl_value = self.read_raw(field.index, lookup_key_bytes(field, lookup_key))
        if cl_value is None:
            return None
        return decode_value(field.value_type, cl_value)

    def read_many(
        self, requests: tp.Iterable[tp.Union[FieldDescriptor, tp.Tuple[FieldDescriptor, LookupKey]]], workers: int = 1
    ) -> tp.List[tp.Any]:
        """Read several fields; ``workers > 1`` fetches them on a thread pool."""
        requests = [item if isinstance(item, tuple) else (item, None) for item in requests]
        # resolve the state URef once before fanning out
        if self.state_uref is None:
            return [None] * len(requests)
        if workers <= 1 or len(requests) < 2:
            return [self.read(field, lookup_key) for field, lookup_key in requests]
        with Pool(min(workers, len(requests))) as pool:
            return pool.starmap(self.read, requests)
