# SPDX-License-Identifier: GPL-2.0-only
# This file is part of krb5pac
# See https://scapy.net/ for more information

"""
[MS-PAC] structures: KERB_VALIDATION_INFO, PAC_CLIENT_INFO and
PAC_SIGNATURE_DATA, with the [MS-DTYP] types they are made of.

https://learn.microsoft.com/en-us/openspecs/windows_protocols/ms-pac/166d8064-c863-41e1-9c23-edaaa5f36962
"""

import datetime
import re
import struct

from scapy.fields import (
    FieldLenField,
    LEIntEnumField,
    StrField,
    StrLenFieldUtf16,
    UTCTimeField,
    XStrField,
)
from scapy.packet import Packet

from krb5pac.error import MalformedInput
from krb5pac.ndr import (
    NDRByteField,
    NDRConfArrayField,
    NDRConfVarStrFieldUtf16,
    NDRFixedArrayField,
    NDRFixedStrField,
    NDRFullPointerField,
    NDRIntField,
    NDRPacket,
    NDRPacketField,
    NDRShortField,
    XNDRIntField,
)

# Typing imports
from typing import (
    Any,
    List,
    Optional,
    Tuple,
)

# [MS-PAC] sect 2.5 and [MS-SAMR] sect 2.2.1.12

USER_NORMAL_ACCOUNT = 0x00000010
USER_DONT_EXPIRE_PASSWORD = 0x00000200

# [MS-DTYP] sect 2.4.2.4 / [MS-PAC] sect 2.2.1

SE_GROUP_MANDATORY = 0x00000001
SE_GROUP_ENABLED_BY_DEFAULT = 0x00000002
SE_GROUP_ENABLED = 0x00000004
SE_GROUP_ALL = SE_GROUP_MANDATORY | SE_GROUP_ENABLED_BY_DEFAULT | \
    SE_GROUP_ENABLED

# [MS-DTYP] sect 2.3.3

NEVER_EXPIRE = 0x7FFFFFFFFFFFFFFF
_FILETIME_EPOCH = datetime.datetime(1601, 1, 1, tzinfo=datetime.timezone.utc)


def filetime_from_datetime(dt):
    # type: (datetime.datetime) -> int
    """
    Convert a datetime (UTC if naive) to a FILETIME
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    delta = dt - _FILETIME_EPOCH
    return (delta.days * 86400 + delta.seconds) * 10000000 + \
        delta.microseconds * 10


def datetime_from_filetime(ft):
    # type: (int) -> datetime.datetime
    return _FILETIME_EPOCH + datetime.timedelta(microseconds=ft // 10)


class NDRFileTimeField(UTCTimeField):
    """
    A FILETIME: 100ns intervals since 1601, marshalled as two 32-bit halves
    (dwLowDateTime, dwHighDateTime), so aligned on 4.
    """
    def __init__(self, name, default):
        # type: (str, Any) -> None
        super(NDRFileTimeField, self).__init__(
            name, default, fmt="<Q",
            epoch=[1601, 1, 1, 0, 0, 0], custom_scaling=10000000,
        )

    def i2repr(self, pkt, x):
        # type: (Any, Any) -> str
        if x == 0:
            return "0"
        if x is not None and x >= NEVER_EXPIRE:
            return "never (0x%x)" % x
        return super(NDRFileTimeField, self).i2repr(pkt, x)

    def ndr_write(self, pkt, w, val, deferred):
        # type: (Any, Any, Any, List[Any]) -> None
        w.align(4)
        w.write(self.struct.pack(self.i2m(pkt, val)))

    def ndr_read(self, pkt, r, deferred):
        # type: (Any, Any, List[Any]) -> int
        r.align(4)
        return self.struct.unpack(r.read(8))[0]


# [MS-DTYP] sect 2.3.10


class RPC_UNICODE_STRING(NDRPacket):
    ALIGNMENT = 4
    fields_desc = [
        NDRShortField("Length", None, size_of="Buffer"),
        NDRShortField("MaximumLength", None, size_of="Buffer",
                      at_least=True),
        NDRFullPointerField(
            NDRConfVarStrFieldUtf16(
                "Buffer",
                "",
                size_is=lambda pkt: (pkt.MaximumLength or 0) // 2,
                length_is=lambda pkt: pkt.Length // 2,
            )
        ),
    ]

    @classmethod
    def fromstr(cls, x):
        # type: (str) -> RPC_UNICODE_STRING
        return cls(Buffer=x)

    def summary(self):
        # type: () -> str
        return repr(self.Buffer)


# [MS-DTYP] sect 2.4.2.3


class SID(NDRPacket):
    ALIGNMENT = 4
    DEPORTED_CONFORMANTS = ["SubAuthority"]
    fields_desc = [
        NDRByteField("Revision", 1),
        NDRByteField("SubAuthorityCount", None, size_of="SubAuthority"),
        NDRFixedStrField("IdentifierAuthority", b"\x00\x00\x00\x00\x00\x05", 6),
        NDRConfArrayField(
            "SubAuthority",
            [],
            NDRIntField("", 0),
            size_is=lambda pkt: pkt.SubAuthorityCount,
            conformant_in_struct=True,
        ),
    ]

    def summary(self):
        # type: () -> str
        return "S-%d-%d%s" % (
            self.Revision,
            struct.unpack(">Q", b"\x00\x00" + self.IdentifierAuthority)[0],
            "".join("-%d" % x for x in self.SubAuthority or []),
        )

    @classmethod
    def fromstr(cls, x):
        # type: (str) -> SID
        m = re.match(r"^S-(\d)-(\d+)((?:-\d+)*)$", x)
        if not m:
            raise ValueError("Invalid SID: %r" % x)
        return cls(
            Revision=int(m.group(1)),
            IdentifierAuthority=struct.pack(">Q", int(m.group(2)))[2:],
            SubAuthority=[int(y) for y in m.group(3).split("-")[1:]],
        )


# [MS-PAC] sect 2.2.2


class GROUP_MEMBERSHIP(NDRPacket):
    ALIGNMENT = 4
    fields_desc = [
        NDRIntField("RelativeId", 513),
        XNDRIntField("Attributes", SE_GROUP_ALL),
    ]


def group_memberships(rids, attributes=SE_GROUP_ALL):
    # type: (List[int], int) -> List[GROUP_MEMBERSHIP]
    """
    Build the GroupIds list of a KERB_VALIDATION_INFO from RIDs
    """
    return [GROUP_MEMBERSHIP(RelativeId=rid, Attributes=attributes)
            for rid in rids]


# [MS-PAC] sect 2.2.1


class KERB_SID_AND_ATTRIBUTES(NDRPacket):
    ALIGNMENT = 4
    fields_desc = [
        NDRFullPointerField(NDRPacketField("Sid", None, SID)),
        XNDRIntField("Attributes", SE_GROUP_ALL),
    ]


# [MS-PAC] sect 2.2.3


class CYPHER_BLOCK(NDRPacket):
    ALIGNMENT = 1
    fields_desc = [NDRFixedStrField("data", None, 8)]


class USER_SESSION_KEY(NDRPacket):
    ALIGNMENT = 1
    fields_desc = [
        NDRFixedArrayField(
            "data",
            [CYPHER_BLOCK(), CYPHER_BLOCK()],
            NDRPacketField("", None, CYPHER_BLOCK),
            2,
        )
    ]

    @classmethod
    def frombytes(cls, x):
        # type: (bytes) -> USER_SESSION_KEY
        if len(x) != 16:
            raise ValueError("A session key is 16 bytes long")
        return cls(data=[CYPHER_BLOCK(data=x[:8]), CYPHER_BLOCK(data=x[8:])])


# sect 2.5


class KERB_VALIDATION_INFO(NDRPacket):
    ALIGNMENT = 4
    fields_desc = [
        NDRFileTimeField("LogonTime", 0),
        NDRFileTimeField("LogoffTime", NEVER_EXPIRE),
        NDRFileTimeField("KickOffTime", NEVER_EXPIRE),
        NDRFileTimeField("PasswordLastSet", 0),
        NDRFileTimeField("PasswordCanChange", 0),
        NDRFileTimeField("PasswordMustChange", NEVER_EXPIRE),
        NDRPacketField("EffectiveName", RPC_UNICODE_STRING(), RPC_UNICODE_STRING),
        NDRPacketField("FullName", RPC_UNICODE_STRING(), RPC_UNICODE_STRING),
        NDRPacketField("LogonScript", RPC_UNICODE_STRING(), RPC_UNICODE_STRING),
        NDRPacketField("ProfilePath", RPC_UNICODE_STRING(), RPC_UNICODE_STRING),
        NDRPacketField("HomeDirectory", RPC_UNICODE_STRING(), RPC_UNICODE_STRING),
        NDRPacketField(
            "HomeDirectoryDrive", RPC_UNICODE_STRING(), RPC_UNICODE_STRING
        ),
        NDRShortField("LogonCount", 0),
        NDRShortField("BadPasswordCount", 0),
        NDRIntField("UserId", 500),
        NDRIntField("PrimaryGroupId", 513),
        NDRIntField("GroupCount", None, size_of="GroupIds"),
        NDRFullPointerField(
            NDRConfArrayField(
                "GroupIds",
                None,
                NDRPacketField("", None, GROUP_MEMBERSHIP),
                size_is=lambda pkt: pkt.GroupCount,
            )
        ),
        XNDRIntField("UserFlags", 0),
        NDRPacketField("UserSessionKey", USER_SESSION_KEY(), USER_SESSION_KEY),
        NDRPacketField("LogonServer", RPC_UNICODE_STRING(), RPC_UNICODE_STRING),
        NDRPacketField(
            "LogonDomainName", RPC_UNICODE_STRING(), RPC_UNICODE_STRING
        ),
        NDRFullPointerField(NDRPacketField("LogonDomainId", None, SID)),
        NDRFixedArrayField("Reserved1", [0, 0], NDRIntField("", 0), 2),
        XNDRIntField(
            "UserAccountControl",
            USER_NORMAL_ACCOUNT | USER_DONT_EXPIRE_PASSWORD,
        ),
        NDRIntField("SubAuthStatus", 0),
        NDRFileTimeField("LastSuccessfulILogon", 0),
        NDRFileTimeField("LastFailedILogon", 0),
        NDRIntField("FailedILogonCount", 0),
        NDRIntField("Reserved3", 0),
        NDRIntField("SidCount", None, size_of="ExtraSids"),
        NDRFullPointerField(
            NDRConfArrayField(
                "ExtraSids",
                None,
                NDRPacketField("", None, KERB_SID_AND_ATTRIBUTES),
                size_is=lambda pkt: pkt.SidCount,
            )
        ),
        NDRFullPointerField(NDRPacketField("ResourceGroupDomainSid", None, SID)),
        NDRIntField("ResourceGroupCount", None, size_of="ResourceGroupIds"),
        NDRFullPointerField(
            NDRConfArrayField(
                "ResourceGroupIds",
                None,
                NDRPacketField("", None, GROUP_MEMBERSHIP),
                size_is=lambda pkt: pkt.ResourceGroupCount,
            )
        ),
    ]


# sect 2.7


class _PACLenField(FieldLenField):
    """
    A FieldLenField that is recomputed on every build, even after
    a dissection.
    """
    def i2m(self, pkt, x):
        # type: (Any, Any) -> int
        return super(_PACLenField, self).i2m(pkt, None)


class PAC_CLIENT_INFO(Packet):
    fields_desc = [
        UTCTimeField(
            "ClientId", None, fmt="<Q", epoch=[1601, 1, 1, 0, 0, 0],
            custom_scaling=10000000,
        ),
        _PACLenField("NameLength", None, length_of="Name", fmt="<H"),
        StrLenFieldUtf16("Name", b"", length_from=lambda pkt: pkt.NameLength),
    ]

    def post_dissect(self, s):
        # type: (bytes) -> bytes
        if self.NameLength % 2:
            raise MalformedInput("Odd NameLength %d" % self.NameLength)
        if len(self.fields["Name"]) != self.NameLength:
            raise MalformedInput(
                "Truncated Name: %d bytes declared, %d available" % (
                    self.NameLength, len(self.fields["Name"])
                )
            )
        return s


# sect 2.8

_SIGNATURE_TYPES = {
    0x00000007: "RSA_MD5",
    0x0000000F: "HMAC_SHA1_96_AES128",
    0x00000010: "HMAC_SHA1_96_AES256",
    0xFFFFFF76: "HMAC_MD5",
}

# Length of the signature, per signature type. RSA_MD5 is not allowed by
# [MS-PAC] but is still what MS14-068 tickets carry.
_SIGNATURE_LENGTHS = {
    0x00000007: 16,
    0x0000000F: 12,
    0x00000010: 12,
    0xFFFFFF76: 16,
}


def normalize_signature_type(x):
    # type: (int) -> int
    """
    Signature types are signed 32-bit integers (HMAC_MD5 is -138): use
    their two's complement representation.
    """
    return x & 0xFFFFFFFF


def signature_length(signature_type):
    # type: (Optional[int]) -> int
    """
    Length of the signature of a PAC_SIGNATURE_DATA, per its SignatureType
    """
    if signature_type is None:
        raise MalformedInput("Missing SignatureType")
    try:
        return _SIGNATURE_LENGTHS[normalize_signature_type(signature_type)]
    except KeyError:
        raise MalformedInput(
            "Unknown SignatureType 0x%x" % normalize_signature_type(
                signature_type
            )
        )


class _SignatureTypeField(LEIntEnumField):
    def any2i(self, pkt, x):
        # type: (Any, Any) -> Any
        if isinstance(x, int):
            x = normalize_signature_type(x)
        return super(_SignatureTypeField, self).any2i(pkt, x)


class _SignatureField(XStrField):
    """
    The signature, whose length is mandated by the SignatureType.
    None stands for a zeroed placeholder of the right length.
    """
    def addfield(self, pkt, s, val):
        # type: (Any, bytes, Optional[bytes]) -> bytes
        length = signature_length(pkt.SignatureType)
        if val is None:
            return s + b"\x00" * length
        if len(val) != length:
            raise MalformedInput(
                "A %s signature is %d bytes long, not %d" % (
                    _SIGNATURE_TYPES[pkt.SignatureType], length, len(val)
                )
            )
        return s + val

    def getfield(self, pkt, s):
        # type: (Any, bytes) -> Tuple[bytes, bytes]
        length = signature_length(pkt.SignatureType)
        if len(s) < length:
            raise MalformedInput(
                "Truncated signature: %d bytes needed, %d available" % (
                    length, len(s)
                )
            )
        return s[length:], s[:length]


class PAC_SIGNATURE_DATA(Packet):
    fields_desc = [
        _SignatureTypeField("SignatureType", 0x00000010, _SIGNATURE_TYPES),
        _SignatureField("Signature", None),
        StrField("RODCIdentifier", b""),
    ]


class PAC_SERVER_CHECKSUM(PAC_SIGNATURE_DATA):
    name = "PAC_SIGNATURE_DATA - Server Signature"


class PAC_PRIVSVR_CHECKSUM(PAC_SIGNATURE_DATA):
    name = "PAC_SIGNATURE_DATA - KDC Signature"
