"""Decode dictionary values by their declared type.

The node returns stored values as CLValue objects. The same logical type may
come back natively typed (``parsed`` holds the value) or as an opaque byte
payload (``Any``, ``List<U8>``, ``ByteArray``) holding the serialized form.
The declared ``ValueType`` decides the interpretation, never the wire shape.
"""
import typing as tp

from construct import ConstructError

from dexstate.codecs import AddressCodec, NumericCodec
from dexstate.consts import ValueType
from dexstate.errors import MalformedValue
from dexstate.layouts import BYTE_LIST_LAYOUT, SCALAR_LAYOUTS

OPAQUE_CL_TYPES = ("Any", {"List": "U8"})


def _is_opaque(cl_type) -> bool:
    return cl_type in OPAQUE_CL_TYPES or (isinstance(cl_type, dict) and "ByteArray" in cl_type)


def opaque_bytes(cl_value: tp.Dict) -> bytes:
    """Serialized payload carried by an opaque CLValue."""
    parsed = cl_value.get("parsed")
    if isinstance(parsed, list) and all(isinstance(item, int) for item in parsed):
        return bytes(parsed)
    try:
        raw = bytes.fromhex(cl_value.get("bytes") or "")
    except ValueError:
        raise MalformedValue(f"CLValue bytes are not hex: {cl_value.get('bytes')!r}")
    if cl_value.get("cl_type") == {"List": "U8"}:
        try:
            return bytes(BYTE_LIST_LAYOUT.parse(raw))
        except ConstructError as e:
            raise MalformedValue(f"bad List<U8> payload: {e}")
    return raw


def decode_big_uint(raw: bytes) -> int:
    """Platform form of U128/U256/U512: one length byte, then the little-endian digits."""
    try:
        value, consumed = NumericCodec.decode_prefixed_uint(raw)
    except ValueError as e:
        raise MalformedValue(f"cannot decode big integer from {bytes(raw).hex()!r}: {e}")
    if consumed != len(raw):
        raise MalformedValue(f"{len(raw) - consumed} bytes left after big integer {bytes(raw).hex()!r}")
    return value


def decode_serialized(value_type: ValueType, raw: bytes, prefixed: bool = True) -> tp.Any:
    """Decode a serialized value; ``prefixed=False`` reads big integers as bare little-endian bytes."""
    if value_type == ValueType.ADDRESS:
        return AddressCodec.decode(raw)
    if value_type in (ValueType.BYTES, ValueType.EVENT):
        return bytes(raw)
    if value_type.is_big_uint:
        return decode_big_uint(raw) if prefixed else NumericCodec.decode_uint(raw)
    try:
        return SCALAR_LAYOUTS[value_type].parse(raw)
    except ConstructError as e:
        raise MalformedValue(f"cannot decode {value_type.value} from {raw.hex()!r}: {e}")


def decode_native(value_type: ValueType, parsed: tp.Any) -> tp.Any:
    if value_type == ValueType.ADDRESS:
        return AddressCodec.decode_ambiguous(parsed)
    if value_type in (ValueType.BYTES, ValueType.EVENT):
        if isinstance(parsed, str):
            return bytes.fromhex(parsed)
        return bytes(parsed)
    if value_type == ValueType.BOOL:
        return bool(parsed)
    if value_type == ValueType.STRING:
        return str(parsed)
    try:
        return int(parsed)
    except (TypeError, ValueError):
        raise MalformedValue(f"cannot decode {value_type.value} from {parsed!r}")


def decode_value(value_type: ValueType, cl_value: tp.Any) -> tp.Any:
    if value_type == ValueType.ADDRESS:
        return AddressCodec.decode_ambiguous(cl_value)
    if isinstance(cl_value, dict) and "cl_type" in cl_value:
        if _is_opaque(cl_value["cl_type"]):
            return decode_serialized(value_type, opaque_bytes(cl_value))
        if cl_value.get("parsed") is None:
            return decode_serialized(value_type, bytes.fromhex(cl_value.get("bytes") or ""))
        return decode_native(value_type, cl_value["parsed"])
    # a bare byte list carries no length prefix
    if isinstance(cl_value, (bytes, bytearray, list)):
        return decode_serialized(value_type, bytes(cl_value), prefixed=False)
    return decode_native(value_type, cl_value)


def encode_cl_value(value_type: ValueType, value: tp.Any) -> tp.Dict:
    """Opaque CLValue for a value, as the contract runtime stores it."""
    if value_type == ValueType.ADDRESS:
        raw = AddressCodec.encode(value)
    elif value_type in (ValueType.BYTES, ValueType.EVENT):
        raw = bytes(value)
    elif value_type.is_big_uint:
        raw = NumericCodec.encode_prefixed_uint(value)
    else:
        raw = SCALAR_LAYOUTS[value_type].build(value)
    return {"cl_type": "Any", "bytes": raw.hex(), "parsed": None}
