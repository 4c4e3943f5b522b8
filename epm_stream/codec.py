#!/usr/bin/env python3
"""
EPM Record Codec

Encodes and decodes a single Entity Profile Message (EPM) as a FlatBuffer.

The record layout is owned by the Space Data Standards EPM schema; this module
only touches the four string fields the service exchanges. Only those slots
are written, the remaining schema fields are left absent.

Encoded Blob Format:
    [SIZE PREFIX (4 bytes)] [FLATBUFFER PAYLOAD (variable)]

Payload Format (FlatBuffers, little-endian):
    Bytes 0-3: Root table offset (uint32)
    Bytes 4-7: File identifier "$EPM"
    Bytes 8+:  Tables, vtables and strings

Field Slots (EPM table, 15 fields):
    0:  DN
    1:  LEGAL_NAME
    11: EMAIL
    12: TELEPHONE
"""

import struct
from dataclasses import dataclass
from typing import Optional

import flatbuffers
from flatbuffers import encode, number_types, packer, table, util


# =============================================================================
# Constants
# =============================================================================

# FlatBuffer file identifier embedded in every EPM payload
EPM_FILE_IDENTIFIER = b"$EPM"

# Offset of the file identifier inside a payload (after the root offset)
FILE_IDENTIFIER_OFFSET = 4

# Smallest payload that can hold a root offset and the identifier
MIN_PAYLOAD_SIZE = FILE_IDENTIFIER_OFFSET + len(EPM_FILE_IDENTIFIER)

# Number of fields declared by the EPM table
EPM_FIELD_COUNT = 15

# Field slots used by the service
SLOT_DN = 0
SLOT_LEGAL_NAME = 1
SLOT_EMAIL = 11
SLOT_TELEPHONE = 12


def _vtable_offset(slot: int) -> int:
    """Convert a field slot to its vtable byte offset."""
    return 4 + 2 * slot


# =============================================================================
# Exceptions
# =============================================================================

class EpmStreamError(Exception):
    """Base class for EPM stream errors."""


class MalformedRecord(EpmStreamError):
    """Raised when a payload is not a readable EPM FlatBuffer."""


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class Record:
    """One decoded entity profile message."""
    dn: str
    legal_name: str
    email: str
    telephone: str

    @property
    def file_identifier(self) -> str:
        return EPM_FILE_IDENTIFIER.decode("ascii")


# =============================================================================
# FlatBuffer Table Accessor
# =============================================================================

class EPM(object):
    """Read accessor over an EPM table (FlatBuffers generated-code layout)."""

    __slots__ = ["_tab"]

    @classmethod
    def GetRootAs(cls, buf, offset=0):
        n = encode.Get(packer.uoffset, buf, offset)
        x = EPM()
        x.Init(buf, n + offset)
        return x

    @classmethod
    def EPMBufferHasIdentifier(cls, buf, offset, size_prefixed=False):
        return util.BufferHasIdentifier(
            buf, offset, EPM_FILE_IDENTIFIER, size_prefixed=size_prefixed
        )

    def Init(self, buf, pos):
        self._tab = table.Table(buf, pos)

    def _string(self, slot: int) -> Optional[bytes]:
        o = number_types.UOffsetTFlags.py_type(self._tab.Offset(_vtable_offset(slot)))
        if o == 0:
            return None

        # Table.String slices without checking the declared length
        buf = self._tab.Bytes
        off = o + self._tab.Pos
        off += encode.Get(packer.uoffset, buf, off)
        length = encode.Get(packer.uoffset, buf, off)
        end = off + number_types.UOffsetTFlags.bytewidth + length
        if end > len(buf):
            raise IndexError(
                f"String in slot {slot} overruns buffer: ends at {end}, buffer is {len(buf)} bytes"
            )
        return self._tab.String(o + self._tab.Pos)

    def DN(self):
        return self._string(SLOT_DN)

    def LEGAL_NAME(self):
        return self._string(SLOT_LEGAL_NAME)

    def EMAIL(self):
        return self._string(SLOT_EMAIL)

    def TELEPHONE(self):
        return self._string(SLOT_TELEPHONE)


# =============================================================================
# Encode / Decode
# =============================================================================

def encode_record(dn: str, legal_name: str, email: str, telephone: str) -> bytes:
    """
    Build a size-prefixed EPM FlatBuffer.

    Args:
        dn: Distinguished name.
        legal_name: Legal name.
        email: Email address.
        telephone: Telephone number.

    Returns:
        The encoded blob: 4-byte little-endian size followed by the payload.
    """
    builder = flatbuffers.Builder(0)

    # Strings must be created before the table is started
    dn_offset = builder.CreateString(dn)
    legal_name_offset = builder.CreateString(legal_name)
    email_offset = builder.CreateString(email)
    telephone_offset = builder.CreateString(telephone)

    builder.StartObject(EPM_FIELD_COUNT)
    builder.PrependUOffsetTRelativeSlot(SLOT_DN, dn_offset, 0)
    builder.PrependUOffsetTRelativeSlot(SLOT_LEGAL_NAME, legal_name_offset, 0)
    builder.PrependUOffsetTRelativeSlot(SLOT_EMAIL, email_offset, 0)
    builder.PrependUOffsetTRelativeSlot(SLOT_TELEPHONE, telephone_offset, 0)
    epm = builder.EndObject()

    builder.FinishSizePrefixed(epm, file_identifier=EPM_FILE_IDENTIFIER)
    return bytes(builder.Output())


def _text(value: Optional[bytes]) -> str:
    return value.decode("utf-8") if value is not None else ""


def decode_record(payload: bytes) -> Record:
    """
    Decode an EPM payload (the blob without its size prefix).

    Args:
        payload: FlatBuffer bytes starting at the root offset.

    Returns:
        The decoded record. Absent string fields decode as "".

    Raises:
        MalformedRecord: If the identifier does not match or the table
            cannot be read.
    """
    payload = bytes(payload)
    if len(payload) < MIN_PAYLOAD_SIZE:
        raise MalformedRecord(
            f"Payload too short: {len(payload)} < {MIN_PAYLOAD_SIZE} bytes"
        )

    if not EPM.EPMBufferHasIdentifier(payload, 0):
        found = payload[FILE_IDENTIFIER_OFFSET:MIN_PAYLOAD_SIZE]
        raise MalformedRecord(
            f"File identifier mismatch: expected {EPM_FILE_IDENTIFIER!r}, got {found!r}"
        )

    try:
        epm = EPM.GetRootAs(payload, 0)
        return Record(
            dn=_text(epm.DN()),
            legal_name=_text(epm.LEGAL_NAME()),
            email=_text(epm.EMAIL()),
            telephone=_text(epm.TELEPHONE()),
        )
    except (struct.error, IndexError, TypeError, ValueError) as e:
        # UnicodeDecodeError is a ValueError
        raise MalformedRecord(f"Unreadable EPM table: {e}") from e
