"""Storage index tables for the DEX contracts.

Indices are assigned positionally from zero. A ``SubModule`` takes as many
indices as its own schema is wide, an ``OptionalVar`` takes two and
everything else takes one. These tables were derived empirically; run
``clickfile.py state probe`` against a live deployment before trusting an
index after a platform upgrade.
"""
import typing as tp
from dataclasses import dataclass

from dexstate.consts import FieldKind, ValueType


@dataclass(frozen=True)
class FieldDescriptor:
    index: int
    kind: FieldKind
    value_type: ValueType
    name: str = ""
    key_type: tp.Optional[ValueType] = None


@dataclass(frozen=True)
class Var:
    name: str
    value_type: ValueType
    width = 1
    kind = FieldKind.PLAIN

    def descriptor(self, index: int, prefix: str = "") -> FieldDescriptor:
        return FieldDescriptor(index, self.kind, self.value_type, prefix + self.name)


@dataclass(frozen=True)
class OptionalVar(Var):
    """``Var<Option<T>>``; the value sits at the first of its two indices."""

    width = 2


@dataclass(frozen=True)
class Mapping:
    name: str
    key_type: tp.Union[ValueType, tp.Tuple[ValueType, ...]]
    value_type: ValueType
    width = 1
    kind = FieldKind.MAPPING

    def descriptor(self, index: int, prefix: str = "") -> FieldDescriptor:
        key_type = self.key_type if isinstance(self.key_type, ValueType) else None
        return FieldDescriptor(index, self.kind, self.value_type, prefix + self.name, key_type)


@dataclass(frozen=True)
class SubModule:
    name: str
    schema: "ContractSchema"

    @property
    def width(self) -> int:
        return self.schema.width


class ContractSchema:
    def __init__(self, name: str, fields: tp.Sequence[tp.Union[Var, Mapping, SubModule]]):
        self.name = name
        self.fields = tuple(fields)
        self._offsets = {}
        offset = 0
        for field in self.fields:
            if field.name in self._offsets:
                raise ValueError(f"duplicate field {field.name!r} in schema {name}")
            self._offsets[field.name] = offset
            offset += field.width
        self.width = offset

    def __repr__(self):
        return f"ContractSchema({self.name!r}, width={self.width})"

    def index_of(self, path: str) -> int:
        return self.descriptor(path).index

    def descriptor(self, path: str) -> FieldDescriptor:
        """Resolve ``field`` or ``submodule.field`` to its final storage index."""
        head, _, rest = path.partition(".")
        field = self._field(head)
        offset = self._offsets[head]
        if isinstance(field, SubModule):
            if not rest:
                raise KeyError(f"{self.name}.{head} is a submodule, name one of its fields")
            inner = field.schema.descriptor(rest)
            return FieldDescriptor(
                offset + inner.index, inner.kind, inner.value_type, f"{head}.{inner.name}", inner.key_type
            )
        if rest:
            raise KeyError(f"{self.name}.{head} has no nested fields")
        return field.descriptor(offset)

    def descriptors(self) -> tp.List[FieldDescriptor]:
        """Flattened leaf descriptors in index order."""
        result = []
        for field in self.fields:
            if isinstance(field, SubModule):
                result.extend(self.descriptor(f"{field.name}.{inner.name}") for inner in field.schema.descriptors())
            else:
                result.append(self.descriptor(field.name))
        return result

    def _field(self, name: str):
        for field in self.fields:
            if field.name == name:
                return field
        raise KeyError(f"schema {self.name} has no field {name!r}")


CEP18_TOKEN_SCHEMA = ContractSchema(
    "Cep18Token",
    [
        Var("name", ValueType.STRING),
        Var("symbol", ValueType.STRING),
        Var("decimals", ValueType.U8),
        Var("total_supply", ValueType.U256),
        Mapping("balances", ValueType.ADDRESS, ValueType.U256),
        Mapping("allowances", (ValueType.ADDRESS, ValueType.ADDRESS), ValueType.U256),
    ],
)

LP_TOKEN_SCHEMA = CEP18_TOKEN_SCHEMA

PAIR_SCHEMA = ContractSchema(
    "Pair",
    [
        SubModule("lp_token", LP_TOKEN_SCHEMA),
        Var("token0", ValueType.ADDRESS),
        Var("token1", ValueType.ADDRESS),
        Var("reserve0", ValueType.U256),
        Var("reserve1", ValueType.U256),
        Var("block_timestamp_last", ValueType.U64),
        Var("price0_cumulative_last", ValueType.U256),
        Var("price1_cumulative_last", ValueType.U256),
        Var("k_last", ValueType.U256),
        Var("factory", ValueType.ADDRESS),
        Var("locked", ValueType.BOOL),
    ],
)

FACTORY_SCHEMA = ContractSchema(
    "Factory",
    [
        OptionalVar("fee_to", ValueType.ADDRESS),
        Var("fee_to_setter", ValueType.ADDRESS),
        Var("pair_factory", ValueType.ADDRESS),
        Mapping("pairs", (ValueType.ADDRESS, ValueType.ADDRESS), ValueType.ADDRESS),
        Mapping("all_pairs", ValueType.U32, ValueType.ADDRESS),
        Var("all_pairs_length", ValueType.U32),
    ],
)

ROUTER_SCHEMA = ContractSchema(
    "Router",
    [
        Var("factory", ValueType.ADDRESS),
        Var("wcspr", ValueType.ADDRESS),
    ],
)

TOKEN_FACTORY_SCHEMA = ContractSchema(
    "TokenFactory",
    [
        Var("launch_count", ValueType.U64),
        Mapping("launch_tokens", ValueType.U64, ValueType.ADDRESS),
        Mapping("launch_curves", ValueType.U64, ValueType.ADDRESS),
        Mapping("launch_creators", ValueType.U64, ValueType.ADDRESS),
        Mapping("launch_curve_types", ValueType.U64, ValueType.U8),
        Mapping("launch_statuses", ValueType.U64, ValueType.U8),
        Mapping("launch_created_at", ValueType.U64, ValueType.U64),
        Var("dex_router", ValueType.ADDRESS),
        Var("dex_factory", ValueType.ADDRESS),
        Var("admin", ValueType.ADDRESS),
        Var("default_graduation_threshold", ValueType.U512),
        Var("default_creator_fee_bps", ValueType.U64),
        Var("default_deadline_days", ValueType.U64),
    ],
)

SCHEMAS = {
    schema.name: schema
    for schema in (CEP18_TOKEN_SCHEMA, PAIR_SCHEMA, FACTORY_SCHEMA, ROUTER_SCHEMA, TOKEN_FACTORY_SCHEMA)
}
