"""Decoder for the packed event records contracts append to ``__events``.

Record layout::

    u32_le(len(name)) ++ name ++ field_1 ++ ... ++ field_n ++ u32_le(sequence_number)

Fields are serialized by type: addresses as tag + 32-byte hash, big
integers length-prefixed little-endian, fixed-width integers little-endian.
"""
import io
import logging
import typing as tp
from dataclasses import dataclass

from construct import ConstructError, StreamError

from dexstate.codecs import AddressCodec, NumericCodec
from dexstate.consts import IDENTIFIER_LENGTH, ValueType
from dexstate.errors import DexStateError, MalformedValue, TruncatedEvent
from dexstate.layouts import BIG_UINT_LAYOUT, BYTE_LIST_LAYOUT, EVENT_SEQUENCE_LAYOUT, SCALAR_LAYOUTS, STRING_LAYOUT

LOG = logging.getLogger(__name__)

EVENT_NAME_PREFIX = "event_"

EventSchema = tp.Sequence[ValueType]

EVENT_SCHEMAS: tp.Dict[str, EventSchema] = {
    "PairCreated": (ValueType.ADDRESS, ValueType.ADDRESS, ValueType.ADDRESS),
    # pair, reserve0, reserve1
    "Sync": (ValueType.ADDRESS, ValueType.U256, ValueType.U256),
    # sender, pair, amount0_in, amount1_in, amount0_out, amount1_out, to
    "Swap": (
        ValueType.ADDRESS,
        ValueType.ADDRESS,
        ValueType.U256,
        ValueType.U256,
        ValueType.U256,
        ValueType.U256,
        ValueType.ADDRESS,
    ),
    # provider, pair, amount0, amount1, liquidity
    "LiquidityAdded": (ValueType.ADDRESS, ValueType.ADDRESS, ValueType.U256, ValueType.U256, ValueType.U256),
    "LiquidityRemoved": (ValueType.ADDRESS, ValueType.ADDRESS, ValueType.U256, ValueType.U256, ValueType.U256),
    "Transfer": (ValueType.ADDRESS, ValueType.ADDRESS, ValueType.U256),
    "Approval": (ValueType.ADDRESS, ValueType.ADDRESS, ValueType.U256),
}


@dataclass(frozen=True)
class EventRecord:
    name: str
    fields: tuple
    sequence_number: int

    @property
    def short_name(self) -> str:
        return strip_event_prefix(self.name)


@dataclass(frozen=True)
class EventGap:
    index: int
    reason: str = "missing"


def strip_event_prefix(name: str) -> str:
    return name[len(EVENT_NAME_PREFIX):] if name.startswith(EVENT_NAME_PREFIX) else name


class EventDecoder:
    def __init__(self, schemas: tp.Optional[tp.Dict[str, EventSchema]] = None):
        self.schemas = EVENT_SCHEMAS if schemas is None else schemas

    def decode(self, raw: tp.Union[bytes, bytearray, tp.Sequence[int]], schema: tp.Optional[EventSchema] = None) -> EventRecord:
        stream = io.BytesIO(bytes(raw))
        name = self._read(stream, STRING_LAYOUT, "event name")
        if schema is None:
            schema = self.schema_for(name)
        fields = tuple(self._read_field(stream, value_type, position) for position, value_type in enumerate(schema))
        sequence_number = self._read(stream, EVENT_SEQUENCE_LAYOUT, "sequence number")
        trailing = stream.read()
        if trailing:
            raise TruncatedEvent(f"{len(trailing)} bytes left after sequence number", stream.tell() - len(trailing))
        return EventRecord(name, fields, sequence_number)

    def decode_all(
        self,
        count: int,
        fetch_by_index: tp.Callable[[int], tp.Optional[bytes]],
        schema: tp.Optional[EventSchema] = None,
    ) -> tp.List[tp.Union[EventRecord, EventGap]]:
        """Decode events ``0..count-1``; unreadable indices are reported as gaps."""
        results = []
        for index in range(count):
            try:
                raw = fetch_by_index(index)
                if raw is None:
                    results.append(EventGap(index))
                    LOG.warning(f"Event {index} is missing")
                    continue
                results.append(self.decode(raw, schema))
            except DexStateError as e:
                LOG.warning(f"Event {index} can't be decoded: {e}")
                results.append(EventGap(index, str(e)))
        return results

    def schema_for(self, name: str) -> EventSchema:
        schema = self.schemas.get(name, self.schemas.get(strip_event_prefix(name)))
        if schema is None:
            raise MalformedValue(f"no schema for event {name!r}")
        return schema

    @staticmethod
    def _read(stream: io.BytesIO, layout, what: str):
        offset = stream.tell()
        try:
            return layout.parse_stream(stream)
        except StreamError as e:
            raise TruncatedEvent(f"{what}: {e}", offset)
        except (ConstructError, UnicodeDecodeError) as e:
            raise MalformedValue(f"{what} at offset {offset}: {e}")

    def _read_field(self, stream: io.BytesIO, value_type: ValueType, position: int):
        what = f"field {position} ({value_type.value})"
        if value_type == ValueType.ADDRESS:
            offset = stream.tell()
            data = stream.read(IDENTIFIER_LENGTH)
            if len(data) < IDENTIFIER_LENGTH:
                raise TruncatedEvent(f"{what}: expected {IDENTIFIER_LENGTH} bytes, got {len(data)}", offset)
            return AddressCodec.decode(data)
        if value_type.is_big_uint:
            parsed = self._read(stream, BIG_UINT_LAYOUT, what)
            return NumericCodec.decode_uint(parsed.data)
        if value_type == ValueType.BYTES:
            return bytes(self._read(stream, BYTE_LIST_LAYOUT, what))
        return self._read(stream, SCALAR_LAYOUTS[value_type], what)


def encode_event(name: str, fields: tp.Sequence[tp.Tuple[ValueType, tp.Any]], sequence_number: int) -> bytes:
    """Pack an event record; inverse of ``EventDecoder.decode``."""
    data = STRING_LAYOUT.build(name)
    for value_type, value in fields:
        if value_type == ValueType.ADDRESS:
            data += AddressCodec.encode(value)
        elif value_type.is_big_uint:
            data += NumericCodec.encode_prefixed_uint(value)
        elif value_type == ValueType.BYTES:
            data += BYTE_LIST_LAYOUT.build(list(value))
        else:
            data += SCALAR_LAYOUTS[value_type].build(value)
    return data + EVENT_SEQUENCE_LAYOUT.build(sequence_number)
