# SPDX-License-Identifier: GPL-2.0-only
# This file is part of krb5pac
# See https://scapy.net/ for more information

"""
PAC elements registry [MS-PAC] sect 2.4: maps the ulType of a
PAC_INFO_BUFFER to the class of the element it points to.
"""

import struct

from scapy.fields import Field, StrField
from scapy.packet import NoPayload, Packet

from krb5pac.credentials import PAC_CREDENTIAL_INFO
from krb5pac.error import MalformedInput, warning
from krb5pac.ndr import NDRPacket, ndr_deserialize1, ndr_serialize1
from krb5pac.structures import (
    KERB_VALIDATION_INFO,
    PAC_CLIENT_INFO,
    PAC_PRIVSVR_CHECKSUM,
    PAC_SERVER_CHECKSUM,
)

# Typing imports
from typing import (
    Tuple,
    Type,
    Union,
)

PAC_TYPE_LOGON_INFO = 0x00000001
PAC_TYPE_CREDENTIALS_INFO = 0x00000002
PAC_TYPE_SERVER_CHECKSUM = 0x00000006
PAC_TYPE_PRIVSVR_CHECKSUM = 0x00000007
PAC_TYPE_CLIENT_INFO = 0x0000000A

_PACTYPES = {
    PAC_TYPE_LOGON_INFO: KERB_VALIDATION_INFO,
    PAC_TYPE_CREDENTIALS_INFO: PAC_CREDENTIAL_INFO,
    PAC_TYPE_SERVER_CHECKSUM: PAC_SERVER_CHECKSUM,
    PAC_TYPE_PRIVSVR_CHECKSUM: PAC_PRIVSVR_CHECKSUM,
    PAC_TYPE_CLIENT_INFO: PAC_CLIENT_INFO,
}
_PACTYPES_REV = {v: k for k, v in _PACTYPES.items()}

PAC_TYPES_NAMES = {
    0x00000001: "Logon information",
    0x00000002: "Credentials information",
    0x00000006: "Server Signature",
    0x00000007: "KDC Signature",
    0x0000000A: "Client name and ticket information",
    0x0000000B: "Constrained delegation information",
    0x0000000C: "UPN and DNS information",
    0x0000000D: "Client claims information",
    0x0000000E: "Device information",
    0x0000000F: "Device claims information",
    0x00000010: "Ticket Signature",
    0x00000011: "PAC Attributes",
    0x00000012: "PAC Requestor",
    0x00000013: "Extended KDC (privilege server) checksum",
}


class _PACTypeField(Field[int, int]):
    """
    Holds the ulType of an element this module does not interpret. Not
    part of the element's bytes.
    """
    def __init__(self, name, default):
        # type: (str, int) -> None
        Field.__init__(self, name, default, fmt="<I")

    def addfield(self, pkt, s, val):
        # type: (Packet, bytes, int) -> bytes
        return s

    def getfield(self, pkt, s):
        # type: (Packet, bytes) -> Tuple[bytes, int]
        return s, self.default


class PAC_UNKNOWN(Packet):
    """
    An element whose type is not interpreted. Its bytes are kept as-is.
    """
    fields_desc = [
        _PACTypeField("ulType", 0),
        StrField("Data", b""),
    ]


PacElement = Union[
    KERB_VALIDATION_INFO,
    PAC_CREDENTIAL_INFO,
    PAC_SERVER_CHECKSUM,
    PAC_PRIVSVR_CHECKSUM,
    PAC_CLIENT_INFO,
    PAC_UNKNOWN,
]


def pac_type(element):
    # type: (Packet) -> int
    """
    Return the ulType of an element
    """
    if isinstance(element, PAC_UNKNOWN):
        return element.ulType
    try:
        return _PACTYPES_REV[type(element)]
    except KeyError:
        raise TypeError("%s is not a PAC element" % type(element).__name__)


def decode_element(ul_type, data):
    # type: (int, bytes) -> Packet
    """
    Dissect the bytes of an element, per its ulType. Unknown types give
    a PAC_UNKNOWN.

    :raises MalformedInput: the bytes do not match the type
    """
    cls = _PACTYPES.get(ul_type)  # type: Union[Type[Packet], None]
    if cls is None:
        return PAC_UNKNOWN(ulType=ul_type, Data=bytes(data))
    try:
        if issubclass(cls, NDRPacket):
            return ndr_deserialize1(data, cls)
        element = cls(data)
    except struct.error as ex:
        raise MalformedInput(
            "Truncated %s: %s" % (cls.__name__, ex)
        ) from ex
    if not isinstance(element.payload, NoPayload):
        # kept in the payload, so that it is built back
        warning("%d trailing bytes after %s", len(element.payload),
                cls.__name__)
    return element


def encode_element(element):
    # type: (Packet) -> Tuple[int, bytes]
    """
    Build an element. PAC_UNKNOWN elements are re-emitted verbatim.

    :return: (ulType, bytes)
    """
    if isinstance(element, PAC_UNKNOWN):
        return element.ulType, bytes(element.Data or b"")
    if isinstance(element, NDRPacket):
        return pac_type(element), ndr_serialize1(element)
    return pac_type(element), bytes(element)
