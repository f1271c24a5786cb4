# SPDX-License-Identifier: GPL-2.0-only
# This file is part of krb5pac
# See https://scapy.net/ for more information

"""
PACTYPE [MS-PAC] sect 2.3: the PAC container, its layout engine and a
builder.

A PACTYPE holds two parallel lists: ``Buffers`` (the PAC_INFO_BUFFER
descriptors) and ``Payloads`` (the elements they point to). The elements are
authoritative: on build, every descriptor is recomputed from its element,
only the preset ``Offset`` values being kept.
"""

import datetime
import struct

from scapy.config import conf as scapy_conf
from scapy.fields import (
    FieldLenField,
    LEIntEnumField,
    LEIntField,
    LELongField,
    PacketListField,
)
from scapy.packet import Packet

from krb5pac.config import conf
from krb5pac.elements import (
    PAC_TYPES_NAMES,
    decode_element,
    encode_element,
    pac_type,
)
from krb5pac.error import MalformedInput, log_runtime
from krb5pac.signing import sign_pac
from krb5pac.structures import (
    KERB_VALIDATION_INFO,
    PAC_CLIENT_INFO,
    PAC_PRIVSVR_CHECKSUM,
    PAC_SERVER_CHECKSUM,
    RPC_UNICODE_STRING,
    SID,
    USER_SESSION_KEY,
    filetime_from_datetime,
    group_memberships,
)

# Typing imports
from typing import (
    Any,
    Callable,
    Iterable,
    List,
    Optional,
    Tuple,
    Type,
    Union,
)

# Size of the fixed part of PACTYPE, and of a PAC_INFO_BUFFER
_PACTYPE_HDR_LEN = 8
_PAC_INFO_BUFFER_LEN = 16


def _pad(offset, alignment):
    # type: (int, int) -> int
    return offset + (-offset) % alignment


# sect 2.4


class PAC_INFO_BUFFER(Packet):
    fields_desc = [
        LEIntEnumField("ulType", 0x00000001, PAC_TYPES_NAMES),
        LEIntField("cbBufferSize", None),
        LELongField("Offset", None),
    ]

    def default_payload_class(self, payload):
        # type: (bytes) -> Type[Packet]
        return scapy_conf.padding_layer


# sect 2.3


class PACTYPE(Packet):
    name = "PACTYPE - PAC"
    fields_desc = [
        FieldLenField("cBuffers", None, count_of="Payloads", fmt="<I"),
        LEIntField("Version", 0x00000000),
        PacketListField(
            "Buffers",
            [],
            PAC_INFO_BUFFER,
            count_from=lambda pkt: pkt.cBuffers,
        ),
        PacketListField("Payloads", [], None),
    ]

    @property
    def elements(self):
        # type: () -> List[Packet]
        return list(self.Payloads or [])

    def header_length(self):
        # type: () -> int
        """
        End of the PAC_INFO_BUFFER array
        """
        return _PACTYPE_HDR_LEN + _PAC_INFO_BUFFER_LEN * len(self.Payloads or [])

    def get_element(self, cls_or_type):
        # type: (Union[int, Type[Packet]]) -> Optional[Packet]
        """
        Return the first element of a given class or ulType, or None
        """
        for element in self.Payloads or []:
            if isinstance(cls_or_type, int):
                if pac_type(element) == cls_or_type:
                    return element
            elif isinstance(element, cls_or_type):
                return element
        return None

    def add_element(self, element):
        # type: (Packet) -> None
        """
        Append an element. As the header grows, all the elements will be
        laid out again.
        """
        pac_type(element)
        self.Payloads = (self.Payloads or []) + [element]
        self.Buffers = []

    def layout(self):
        # type: () -> List[Tuple[int, int, bytes]]
        """
        Compute where every element goes, without modifying the PAC.

        Elements whose PAC_INFO_BUFFER has a non-zero Offset stay where they
        are. The others are put after the header, in order, each one padded
        to conf.pac_alignment.

        :return: a list of (ulType, Offset, element bytes)
        :raises MalformedInput: the elements overlap, or one of them
            overlaps the header
        """
        payloads = self.Payloads or []
        buffers = self.Buffers or []
        if buffers and len(buffers) != len(payloads):
            raise MalformedInput(
                "%d PAC_INFO_BUFFER for %d elements" % (
                    len(buffers), len(payloads)
                )
            )
        hdr_end = self.header_length()
        cursor = hdr_end
        plan = []
        for i, element in enumerate(payloads):
            if element is None:
                raise MalformedInput("Element %d is empty" % i)
            ul_type, data = encode_element(element)
            offset = buffers[i].Offset if buffers else None
            if not offset:
                offset = cursor
                cursor = _pad(cursor + len(data), conf.pac_alignment)
                log_runtime.debug(
                    "PAC element %d (ulType 0x%x): %d bytes at offset %d",
                    i, ul_type, len(data), offset,
                )
            plan.append((ul_type, offset, data))
        # Check the result
        spans = sorted(
            (offset, offset + len(data), i)
            for i, (_, offset, data) in enumerate(plan)
        )
        for start, _, i in spans:
            if start < hdr_end:
                raise MalformedInput(
                    "Element %d at offset %d overlaps the header (%d bytes)" % (
                        i, start, hdr_end
                    )
                )
        for (_, end, i), (start, _, j) in zip(spans, spans[1:]):
            if end > start:
                raise MalformedInput(
                    "Elements %d and %d overlap" % (i, j)
                )
        return plan

    def calculate_offsets(self, reset=False):
        # type: (bool) -> None
        """
        Set the ulType, cbBufferSize and Offset of every PAC_INFO_BUFFER.

        :param reset: also move the elements that already have an Offset
        """
        if reset:
            self.Buffers = []
        plan = self.layout()
        self.Buffers = [
            PAC_INFO_BUFFER(ulType=ul_type, cbBufferSize=len(data), Offset=offset)
            for ul_type, offset, data in plan
        ]
        self.cBuffers = len(plan)

    def self_build(self):
        # type: () -> bytes
        if self.Version != 0:
            raise MalformedInput("Unsupported PACTYPE Version %d" % self.Version)
        plan = self.layout()
        end = max([self.header_length()] + [o + len(d) for _, o, d in plan])
        arena = bytearray(_pad(end, conf.pac_alignment))
        struct.pack_into("<II", arena, 0, len(plan), self.Version)
        for i, (ul_type, offset, data) in enumerate(plan):
            struct.pack_into(
                "<IIQ",
                arena,
                _PACTYPE_HDR_LEN + _PAC_INFO_BUFFER_LEN * i,
                ul_type,
                len(data),
                offset,
            )
            arena[offset:offset + len(data)] = data
        return bytes(arena)

    def do_dissect(self, s):
        # type: (bytes) -> bytes
        if len(s) < _PACTYPE_HDR_LEN:
            raise MalformedInput("Truncated PACTYPE (%d bytes)" % len(s))
        count, version = struct.unpack("<II", s[:_PACTYPE_HDR_LEN])
        if version != 0:
            raise MalformedInput("Unsupported PACTYPE Version %d" % version)
        hdr_end = _PACTYPE_HDR_LEN + _PAC_INFO_BUFFER_LEN * count
        if hdr_end > len(s):
            raise MalformedInput(
                "Truncated PACTYPE: %d PAC_INFO_BUFFER need %d bytes, "
                "%d available" % (count, hdr_end, len(s))
            )
        buffers = []
        payloads = []
        for i in range(count):
            pos = _PACTYPE_HDR_LEN + _PAC_INFO_BUFFER_LEN * i
            buf = PAC_INFO_BUFFER(s[pos:pos + _PAC_INFO_BUFFER_LEN])
            start, end = buf.Offset, buf.Offset + buf.cbBufferSize
            if start < hdr_end:
                raise MalformedInput(
                    "Element %d (ulType 0x%x) starts inside the header" % (
                        i, buf.ulType
                    )
                )
            if end > len(s):
                raise MalformedInput(
                    "Element %d (ulType 0x%x) ends at %d, after the end of "
                    "the PAC (%d)" % (i, buf.ulType, end, len(s))
                )
            try:
                element = decode_element(buf.ulType, s[start:end])
            except MalformedInput as ex:
                raise MalformedInput(
                    "Element %d (ulType 0x%x): %s" % (i, buf.ulType, ex)
                ) from ex
            buffers.append(buf)
            payloads.append(element)
        self.fields["cBuffers"] = count
        self.fields["Version"] = version
        self.fields["Buffers"] = buffers
        self.fields["Payloads"] = payloads
        self.raw_packet_cache = None
        self.explicit = 1
        return b""


class PacBuilder(object):
    """
    Accumulates PAC elements, then lays them out (and signs them) once.

    The elements are copied when added: changing them afterwards does not
    affect the builder.
    """

    def __init__(self, elements=None):
        # type: (Optional[Iterable[Packet]]) -> None
        self.elements = []  # type: List[Packet]
        if elements:
            self.extend(elements)

    def add(self, element):
        # type: (Packet) -> PacBuilder
        pac_type(element)
        self.elements.append(element.copy())
        return self

    def extend(self, elements):
        # type: (Iterable[Packet]) -> PacBuilder
        for element in elements:
            self.add(element)
        return self

    def build(self):
        # type: () -> PACTYPE
        """
        Return a PACTYPE with its offsets computed
        """
        pac = PACTYPE(Payloads=[x.copy() for x in self.elements])
        pac.calculate_offsets()
        return pac

    def sign(self, key, checksum_fn=None):
        # type: (Any, Optional[Callable[[int, Any, bytes], bytes]]) -> PACTYPE
        """
        Return a signed PACTYPE. See :func:`krb5pac.signing.sign_pac`
        """
        pac = self.build()
        sign_pac(pac, key, checksum_fn=checksum_fn)
        return pac

    @classmethod
    def default(cls,
                user_name,  # type: str
                domain_name,  # type: str
                domain_sid,  # type: str
                user_id=500,  # type: int
                group_ids=None,  # type: Optional[List[int]]
                primary_group_id=513,  # type: int
                logon_time=None,  # type: Optional[Any]
                checksum_type=0xFFFFFF76,  # type: int
                ):
        # type: (...) -> PacBuilder
        """
        A builder holding a typical PAC: LogonInfo, ClientInfo, and the
        server and KDC checksums.

        :param domain_sid: the domain SID, as "S-1-5-21-..."
        :param group_ids: the RIDs of the user's groups. Defaults to Domain
            Users, Domain Admins, Group Policy Creator Owners, Schema Admins
            and Enterprise Admins
        :param logon_time: a datetime or a FILETIME. Defaults to now
        """
        if group_ids is None:
            group_ids = [513, 512, 520, 518, 519]
        if logon_time is None or isinstance(logon_time, int):
            filetime = logon_time
        else:
            filetime = filetime_from_datetime(logon_time)
        if filetime is None:
            filetime = filetime_from_datetime(
                datetime.datetime.now(datetime.timezone.utc)
            )
        logon_info = KERB_VALIDATION_INFO(
            LogonTime=filetime,
            EffectiveName=RPC_UNICODE_STRING(Buffer=user_name),
            UserId=user_id,
            PrimaryGroupId=primary_group_id,
            GroupIds=group_memberships(group_ids),
            UserSessionKey=USER_SESSION_KEY.frombytes(b"\x00" * 16),
            LogonDomainName=RPC_UNICODE_STRING(
                Buffer=domain_name.split(".", 1)[0].upper()
            ),
            LogonDomainId=SID.fromstr(domain_sid),
        )
        client_info = PAC_CLIENT_INFO(ClientId=filetime, Name=user_name)
        return cls([
            logon_info,
            client_info,
            PAC_SERVER_CHECKSUM(SignatureType=checksum_type),
            PAC_PRIVSVR_CHECKSUM(SignatureType=checksum_type),
        ])

