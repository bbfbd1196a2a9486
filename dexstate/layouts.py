from construct import (
    Bytes,
    Flag,
    Int8ul,
    Int32ub,
    Int32ul,
    Int64ul,
    OneOf,
    PascalString,
    PrefixedArray,
    Struct,
    this,
)

from dexstate.consts import IDENTIFIER_HASH_LENGTH, IdentifierTag, ValueType


IDENTIFIER_LAYOUT = Struct(
    "tag" / OneOf(Int8ul, [int(tag) for tag in IdentifierTag]),
    "hash" / Bytes(IDENTIFIER_HASH_LENGTH),
)


STORAGE_INDEX_LAYOUT = Int32ub


# U128/U256/U512: one length byte, then that many little-endian bytes
BIG_UINT_LAYOUT = Struct(
    "length" / Int8ul,
    "data" / Bytes(this.length),
)


STRING_LAYOUT = PascalString(Int32ul, "utf8")


BYTE_LIST_LAYOUT = PrefixedArray(Int32ul, Int8ul)


EVENT_SEQUENCE_LAYOUT = Int32ul


SCALAR_LAYOUTS = {
    ValueType.BOOL: Flag,
    ValueType.U8: Int8ul,
    ValueType.U32: Int32ul,
    ValueType.U64: Int64ul,
    ValueType.STRING: STRING_LAYOUT,
}
