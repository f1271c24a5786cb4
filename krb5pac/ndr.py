# SPDX-License-Identifier: GPL-2.0-only
# This file is part of krb5pac
# See https://scapy.net/ for more information

"""
NDR - Network Data Representation

Little-endian NDR32 (transfer syntax version 1), restricted to the
constructed types used by [MS-PAC]:

- fixed and conformant arrays, conformant varying strings
- embedded full pointers, whose referents are deferred
- Type Serialization Version 1 [MS-RPCE] sect 2.2.6

https://pubs.opengroup.org/onlinepubs/9629399/chap14.htm

NDR structures are Scapy packets. Instead of the usual addfield/getfield
protocol, every field below knows how to write itself on a
:class:`NDRWriter` and read itself from a :class:`NDRReader`, queuing the
referents of its pointers so that they are marshalled after the
constructed type holding them.
"""

import struct

from scapy.compat import bytes_encode
from scapy.config import conf as scapy_conf
from scapy.fields import (
    ByteField,
    Field,
    LEIntField,
    LEShortField,
    StrFieldUtf16,
    XLEIntField,
    XStrField,
    XStrFixedLenField,
    _FieldContainer,
)
from scapy.packet import Packet

from krb5pac.config import conf
from krb5pac.error import MalformedInput

# Typing imports
from typing import (
    Any,
    Callable,
    List,
    Optional,
    Type,
)

_TYPE1_S_PAD = 8


##############
#  Streams   #
##############


class _NDRStream(object):
    __slots__ = []  # type: List[str]

    def constructed(self, func):
        # type: (Callable[[List[Any]], None]) -> None
        """
        Marshal a constructed type with ``func(deferred)``, then the
        referents it queued in ``deferred``, in order. Each referent is
        itself marshalled as a constructed type, so its own referents
        follow it immediately.
        """
        deferred = []  # type: List[Callable[[List[Any]], None]]
        func(deferred)
        for referent in deferred:
            self.constructed(referent)


class NDRWriter(_NDRStream):
    """
    Output NDR stream.
    """
    __slots__ = ["buf", "referent_id"]

    def __init__(self):
        # type: () -> None
        self.buf = bytearray()
        self.referent_id = conf.ndr_referent_id

    @property
    def offset(self):
        # type: () -> int
        return len(self.buf)

    def align(self, align):
        # type: (int) -> None
        self.buf += b"\x00" * (-len(self.buf) % align)

    def write(self, data):
        # type: (bytes) -> None
        self.buf += data

    def pack(self, fmt, *args):
        # type: (str, *Any) -> None
        self.buf += struct.pack(fmt, *args)

    def next_referent(self):
        # type: () -> int
        referent_id = self.referent_id
        self.referent_id += conf.ndr_referent_step
        return referent_id

    def getvalue(self):
        # type: () -> bytes
        return bytes(self.buf)


class NDRReader(_NDRStream):
    """
    Input NDR stream. Every read is bound checked.
    """
    __slots__ = ["data", "offset", "conformances"]

    def __init__(self, data):
        # type: (bytes) -> None
        self.data = bytes(data)
        self.offset = 0
        # max_counts hoisted in front of a conformant structure
        self.conformances = []  # type: List[int]

    def remaining(self):
        # type: () -> int
        return len(self.data) - self.offset

    def align(self, align):
        # type: (int) -> None
        pad = -self.offset % align
        if self.offset + pad > len(self.data):
            raise MalformedInput(
                "Aligning to %d bytes at offset %d runs past the end of the "
                "buffer (%d bytes)" % (align, self.offset, len(self.data))
            )
        self.offset += pad

    def read(self, size):
        # type: (int) -> bytes
        if size < 0 or self.offset + size > len(self.data):
            raise MalformedInput(
                "Truncated buffer: %d bytes needed at offset %d, %d left" % (
                    size, self.offset, self.remaining()
                )
            )
        data = self.data[self.offset:self.offset + size]
        self.offset += size
        return data

    def unpack(self, fmt):
        # type: (str) -> Any
        st = struct.Struct(fmt)
        return st.unpack(self.read(st.size))[0]


##############
#   Fields   #
##############


class _NDRValueField(Field[int, int]):
    """
    A NDR primitive, aligned on its own size.

    :param size_of: name of the field this one counts. The value is then
        derived when building, from ``i2len`` of the counted field.
    :param adjust: transformation applied to the derived value
    :param at_least: a value that is set (e.g. dissected) is kept, unless it
        is smaller than the derived one. Used for maximum lengths.
    """
    __slots__ = ["size_of", "adjust", "at_least"]

    def __init__(self, name, default, fmt, size_of=None,
                 adjust=lambda pkt, x: x, at_least=False):
        # type: (str, Optional[int], str, Optional[str], Callable[[Any, int], int], bool) -> None  # noqa: E501
        Field.__init__(self, name, default, fmt=fmt)
        self.size_of = size_of
        self.adjust = adjust
        self.at_least = at_least

    def i2m(self, pkt, x):
        # type: (Optional[Packet], Optional[int]) -> int
        if self.size_of is not None and pkt is not None:
            fld, fval = pkt.getfield_and_val(self.size_of)
            size = self.adjust(pkt, fld.i2len(pkt, fval))
            if self.at_least and x is not None:
                return max(x, size)
            return size
        if x is None:
            return 0
        return x

    def ndr_write(self, pkt, w, val, deferred):
        # type: (Packet, NDRWriter, Optional[int], List[Any]) -> None
        w.align(self.sz)
        w.write(self.struct.pack(self.i2m(pkt, val)))

    def ndr_read(self, pkt, r, deferred):
        # type: (Packet, NDRReader, List[Any]) -> int
        r.align(self.sz)
        return self.m2i(pkt, self.struct.unpack(r.read(self.sz))[0])


class NDRByteField(_NDRValueField):
    def __init__(self, name, default, **kwargs):
        # type: (str, Optional[int], **Any) -> None
        super(NDRByteField, self).__init__(name, default, "<B", **kwargs)


class NDRShortField(_NDRValueField):
    def __init__(self, name, default, **kwargs):
        # type: (str, Optional[int], **Any) -> None
        super(NDRShortField, self).__init__(name, default, "<H", **kwargs)


class NDRIntField(_NDRValueField):
    def __init__(self, name, default, **kwargs):
        # type: (str, Optional[int], **Any) -> None
        super(NDRIntField, self).__init__(name, default, "<I", **kwargs)


class XNDRIntField(NDRIntField):
    def i2repr(self, pkt, x):
        # type: (Optional[Packet], Optional[int]) -> str
        if x is None:
            return repr(x)
        return "0x%08x" % x


class NDRLongField(_NDRValueField):
    def __init__(self, name, default, **kwargs):
        # type: (str, Optional[int], **Any) -> None
        super(NDRLongField, self).__init__(name, default, "<Q", **kwargs)


class NDRFixedStrField(XStrFixedLenField):
    """
    A fixed array of bytes, e.g. ``UCHAR x[16]``
    """
    def __init__(self, name, default, length):
        # type: (str, Optional[bytes], int) -> None
        if default is None:
            default = b"\x00" * length
        super(NDRFixedStrField, self).__init__(name, default, length=length)

    def ndr_write(self, pkt, w, val, deferred):
        # type: (Packet, NDRWriter, Optional[bytes], List[Any]) -> None
        val = bytes_encode(val or b"")
        if len(val) != self.sz:
            raise MalformedInput("%s must be %d bytes long, not %d" % (
                self.name, self.sz, len(val)
            ))
        w.write(val)

    def ndr_read(self, pkt, r, deferred):
        # type: (Packet, NDRReader, List[Any]) -> bytes
        return r.read(self.sz)


class _NDRListField(Field[List[Any], List[Any]]):
    """
    Base class of NDR arrays. ``fld`` describes one element.
    """
    __slots__ = ["fld"]
    islist = 1

    def __init__(self, name, default, fld):
        # type: (str, Optional[List[Any]], Any) -> None
        self.fld = fld
        Field.__init__(self, name, default, fmt="<I")

    @property
    def holds_packets(self):  # type: ignore
        # type: () -> bool
        return isinstance(self.fld, NDRPacketField)

    def any2i(self, pkt, x):
        # type: (Optional[Packet], Any) -> Optional[List[Any]]
        if x is None:
            return None
        if not isinstance(x, list):
            x = [x]
        return [self.fld.any2i(pkt, v) for v in x]

    def i2len(self, pkt, x):
        # type: (Optional[Packet], Optional[List[Any]]) -> int
        return len(x) if x else 0

    def i2repr(self, pkt, x):
        # type: (Optional[Packet], Optional[List[Any]]) -> str
        if x is None or self.holds_packets:
            return repr(x)
        return "[%s]" % ", ".join(self.fld.i2repr(pkt, v) for v in x)


class NDRFixedArrayField(_NDRListField):
    """
    A fixed array: ``count`` elements inline, no prefix
    """
    __slots__ = ["count"]

    def __init__(self, name, default, fld, count):
        # type: (str, Optional[List[Any]], Any, int) -> None
        self.count = count
        super(NDRFixedArrayField, self).__init__(name, default, fld)

    def ndr_write(self, pkt, w, val, deferred):
        # type: (Packet, NDRWriter, Optional[List[Any]], List[Any]) -> None
        val = val or []
        if len(val) != self.count:
            raise MalformedInput("%s must hold %d elements, not %d" % (
                self.name, self.count, len(val)
            ))
        for v in val:
            self.fld.ndr_write(pkt, w, v, deferred)

    def ndr_read(self, pkt, r, deferred):
        # type: (Packet, NDRReader, List[Any]) -> List[Any]
        return [self.fld.ndr_read(pkt, r, deferred) for _ in range(self.count)]


class NDRConfArrayField(_NDRListField):
    """
    A conformant array: a 32-bit max_count then the elements.

    :param size_is: returns the count declared by the owner structure. It is
        checked against max_count when dissecting.
    :param conformant_in_struct: the array is the last member of a
        structure. Its max_count is then hoisted in front of the structure
        (see ``NDRPacket.DEPORTED_CONFORMANTS``).
    """
    __slots__ = ["size_is", "conformant_in_struct"]

    def __init__(self, name, default, fld, size_is=None,
                 conformant_in_struct=False):
        # type: (str, Optional[List[Any]], Any, Optional[Callable[[Any], int]], bool) -> None  # noqa: E501
        self.size_is = size_is
        self.conformant_in_struct = conformant_in_struct
        super(NDRConfArrayField, self).__init__(name, default, fld)

    def ndr_write(self, pkt, w, val, deferred):
        # type: (Packet, NDRWriter, Optional[List[Any]], List[Any]) -> None
        val = val or []
        if not self.conformant_in_struct:
            w.align(4)
            w.pack("<I", len(val))
        for v in val:
            self.fld.ndr_write(pkt, w, v, deferred)

    def ndr_read(self, pkt, r, deferred):
        # type: (Packet, NDRReader, List[Any]) -> List[Any]
        if self.conformant_in_struct:
            count = r.conformances.pop(0)
        else:
            r.align(4)
            count = r.unpack("<I")
        if self.size_is is not None and self.size_is(pkt) != count:
            raise MalformedInput(
                "%s: max_count %d disagrees with the declared count %d" % (
                    self.name, count, self.size_is(pkt)
                )
            )
        return [self.fld.ndr_read(pkt, r, deferred) for _ in range(count)]


class NDRConfStrField(XStrField):
    """
    A conformant array of bytes, e.g. ``[size_is(n)] PUCHAR x``
    """
    __slots__ = ["size_is"]

    def __init__(self, name, default, size_is=None):
        # type: (str, Optional[bytes], Optional[Callable[[Any], int]]) -> None  # noqa: E501
        self.size_is = size_is
        super(NDRConfStrField, self).__init__(name, default)

    def ndr_write(self, pkt, w, val, deferred):
        # type: (Packet, NDRWriter, Optional[bytes], List[Any]) -> None
        val = bytes_encode(val or b"")
        w.align(4)
        w.pack("<I", len(val))
        w.write(val)

    def ndr_read(self, pkt, r, deferred):
        # type: (Packet, NDRReader, List[Any]) -> bytes
        r.align(4)
        count = r.unpack("<I")
        if self.size_is is not None and self.size_is(pkt) != count:
            raise MalformedInput(
                "%s: max_count %d disagrees with the declared size %d" % (
                    self.name, count, self.size_is(pkt)
                )
            )
        return r.read(count)


class NDRConfVarStrFieldUtf16(StrFieldUtf16):
    """
    A conformant varying UTF-16 string: max_count, offset, actual_count,
    then the characters. Not null-terminated.

    :param size_is: returns the declared max_count
    :param length_is: returns the declared actual_count
    """
    __slots__ = ["size_is", "length_is"]

    def __init__(self, name, default, size_is=None, length_is=None):
        # type: (str, Any, Optional[Callable[[Any], int]], Optional[Callable[[Any], int]]) -> None  # noqa: E501
        self.size_is = size_is
        self.length_is = length_is
        super(NDRConfVarStrFieldUtf16, self).__init__(name, default)

    def ndr_write(self, pkt, w, val, deferred):
        # type: (Packet, NDRWriter, Optional[bytes], List[Any]) -> None
        val = bytes_encode(val or b"")
        count = len(val) // 2
        max_count = count
        if self.size_is is not None:
            max_count = max(count, self.size_is(pkt))
        w.align(4)
        w.pack("<III", max_count, 0, count)
        w.write(val[:count * 2])

    def ndr_read(self, pkt, r, deferred):
        # type: (Packet, NDRReader, List[Any]) -> bytes
        r.align(4)
        max_count = r.unpack("<I")
        offset = r.unpack("<I")
        actual_count = r.unpack("<I")
        if offset != 0 or actual_count > max_count:
            raise MalformedInput(
                "%s: invalid varying array (max_count=%d, offset=%d, "
                "actual_count=%d)" % (self.name, max_count, offset,
                                      actual_count)
            )
        if self.size_is is not None and self.size_is(pkt) != max_count:
            raise MalformedInput(
                "%s: max_count %d disagrees with the declared size %d" % (
                    self.name, max_count, self.size_is(pkt)
                )
            )
        if self.length_is is not None and self.length_is(pkt) != actual_count:
            raise MalformedInput(
                "%s: actual_count %d disagrees with the declared length "
                "%d" % (self.name, actual_count, self.length_is(pkt))
            )
        return r.read(actual_count * 2)


class NDRFullPointerField(_FieldContainer):
    """
    An embedded full pointer. Inline, a 32-bit referent ID (0 is NULL).
    The referent, described by ``fld``, is deferred.

    ``None`` is the NULL pointer, any other value is the referent itself.
    """
    __slots__ = ["fld"]

    def __init__(self, fld):
        # type: (Any) -> None
        self.fld = fld

    def any2i(self, pkt, x):
        # type: (Optional[Packet], Any) -> Any
        if x is None:
            return None
        return self.fld.any2i(pkt, x)

    def h2i(self, pkt, x):
        # type: (Optional[Packet], Any) -> Any
        if x is None:
            return None
        return self.fld.h2i(pkt, x)

    def i2h(self, pkt, x):
        # type: (Optional[Packet], Any) -> Any
        if x is None:
            return None
        return self.fld.i2h(pkt, x)

    def i2repr(self, pkt, x):
        # type: (Optional[Packet], Any) -> str
        if x is None:
            return "NULL"
        return self.fld.i2repr(pkt, x)

    def i2len(self, pkt, x):
        # type: (Optional[Packet], Any) -> int
        if x is None:
            return 0
        return self.fld.i2len(pkt, x)

    def ndr_write(self, pkt, w, val, deferred):
        # type: (Packet, NDRWriter, Any, List[Any]) -> None
        w.align(4)
        if val is None:
            w.pack("<I", 0)
            return
        w.pack("<I", w.next_referent())
        deferred.append(lambda d: self.fld.ndr_write(pkt, w, val, d))

    def ndr_read(self, pkt, r, deferred):
        # type: (Packet, NDRReader, List[Any]) -> None
        r.align(4)
        if not r.unpack("<I"):
            size_is = getattr(self.fld, "size_is", None)
            if size_is is not None and size_is(pkt):
                raise MalformedInput(
                    "%s is NULL but %d elements are declared" % (
                        self.name, size_is(pkt)
                    )
                )
            return None

        def _read_referent(d):
            # type: (List[Any]) -> None
            pkt.fields[self.name] = self.fld.ndr_read(pkt, r, d)
        deferred.append(_read_referent)
        return None


class NDRPacketField(Field[Any, Any]):
    """
    A NDR structure embedded inline.
    """
    __slots__ = ["cls"]
    holds_packets = 1

    def __init__(self, name, default, cls):
        # type: (str, Any, Type[NDRPacket]) -> None
        self.cls = cls
        Field.__init__(self, name, default, fmt="<I")

    def any2i(self, pkt, x):
        # type: (Optional[Packet], Any) -> Any
        # User-friendly helper: NDRPacketField("x", None, SID) accepts
        # "S-1-5-..." and so on.
        if isinstance(x, str) and hasattr(self.cls, "fromstr"):
            return self.cls.fromstr(x)
        return x

    def i2len(self, pkt, x):
        # type: (Optional[Packet], Any) -> int
        return len(bytes(x)) if x is not None else 0

    def ndr_write(self, pkt, w, val, deferred):
        # type: (Packet, NDRWriter, Optional[NDRPacket], List[Any]) -> None
        if val is None:
            val = self.cls()
        val.ndr_write(w, deferred)

    def ndr_read(self, pkt, r, deferred):
        # type: (Packet, NDRReader, List[Any]) -> NDRPacket
        val = self.cls()
        val.ndr_read(r, deferred)
        return val


##############
#  Packets   #
##############


class NDRPacket(Packet):
    """
    A NDR constructed type (structure).

    :cvar ALIGNMENT: alignment of the structure, i.e. of its largest member
    :cvar DEPORTED_CONFORMANTS: the conformant arrays of the structure. Their
        max_count is written in front of the structure.
    """
    ALIGNMENT = 4
    DEPORTED_CONFORMANTS = []  # type: List[str]

    def ndr_write(self, w, deferred):
        # type: (NDRWriter, List[Any]) -> None
        if self.DEPORTED_CONFORMANTS:
            w.align(4)
            for name in self.DEPORTED_CONFORMANTS:
                fld, fval = self.getfield_and_val(name)
                w.pack("<I", fld.i2len(self, fval))
        w.align(self.ALIGNMENT)
        for fld in self.fields_desc:
            fld.ndr_write(self, w, self.getfieldval(fld.name), deferred)

    def ndr_read(self, r, deferred):
        # type: (NDRReader, List[Any]) -> None
        if self.DEPORTED_CONFORMANTS:
            r.align(4)
            for _ in self.DEPORTED_CONFORMANTS:
                r.conformances.append(r.unpack("<I"))
        r.align(self.ALIGNMENT)
        for fld in self.fields_desc:
            self.fields[fld.name] = fld.ndr_read(self, r, deferred)

    def self_build(self):
        # type: () -> bytes
        w = NDRWriter()
        w.constructed(lambda deferred: self.ndr_write(w, deferred))
        return w.getvalue()

    def do_dissect(self, s):
        # type: (bytes) -> bytes
        r = NDRReader(s)
        r.constructed(lambda deferred: self.ndr_read(r, deferred))
        # derived fields are always recomputed: never re-emit the input
        self.raw_packet_cache = None
        self.explicit = 1
        return s[r.offset:]

    def default_payload_class(self, payload):
        # type: (bytes) -> Type[Packet]
        return scapy_conf.padding_layer


# [MS-RPCE] sect 2.2.6.1 and 2.2.6.2


class NDRSerialization1Header(Packet):
    name = "Type Serialization Version 1 - Common header"
    fields_desc = [
        ByteField("Version", 1),
        ByteField("Endianness", 0x10),  # little endian
        LEShortField("CommonHeaderLength", 8),
        XLEIntField("Filler", 0xCCCCCCCC),
    ]

    def default_payload_class(self, payload):
        # type: (bytes) -> Type[Packet]
        return scapy_conf.padding_layer


class NDRSerialization1PrivateHeader(Packet):
    name = "Type Serialization Version 1 - Private header"
    fields_desc = [
        LEIntField("ObjectBufferLength", 0),
        XLEIntField("Filler", 0),
    ]

    def default_payload_class(self, payload):
        # type: (bytes) -> Type[Packet]
        return scapy_conf.padding_layer


def ndr_serialize1(pkt):
    # type: (NDRPacket) -> bytes
    """
    Serialize a NDR structure with Type Serialization Version 1: the
    structure is the referent of a top-level pointer.
    """
    w = NDRWriter()

    def _top(deferred):
        # type: (List[Any]) -> None
        w.pack("<I", w.next_referent())
        deferred.append(lambda d: pkt.ndr_write(w, d))
    w.constructed(_top)
    w.align(_TYPE1_S_PAD)
    body = w.getvalue()
    return (
        bytes(NDRSerialization1Header()) +
        bytes(NDRSerialization1PrivateHeader(ObjectBufferLength=len(body))) +
        body
    )


def ndr_deserialize1(data, cls):
    # type: (bytes, Type[NDRPacket]) -> NDRPacket
    """
    Dissect a structure of class ``cls`` serialized with Type
    Serialization Version 1.
    """
    if len(data) < 16:
        raise MalformedInput(
            "Truncated Type Serialization Version 1 header (%d bytes)" %
            len(data)
        )
    hdr = NDRSerialization1Header(data[:8])
    if hdr.Version != 1 or hdr.Endianness != 0x10 or \
            hdr.CommonHeaderLength != 8:
        raise MalformedInput(
            "Unsupported Type Serialization header: Version=%d "
            "Endianness=0x%x CommonHeaderLength=%d" % (
                hdr.Version, hdr.Endianness, hdr.CommonHeaderLength
            )
        )
    length = NDRSerialization1PrivateHeader(data[8:16]).ObjectBufferLength
    if length > len(data) - 16:
        raise MalformedInput(
            "ObjectBufferLength %d exceeds the %d bytes available" % (
                length, len(data) - 16
            )
        )
    r = NDRReader(data[16:16 + length])
    obj = cls()

    def _top(deferred):
        # type: (List[Any]) -> None
        if not r.unpack("<I"):
            raise MalformedInput("NULL top-level %s" % cls.__name__)
        deferred.append(lambda d: obj.ndr_read(r, d))
    r.constructed(_top)
    return obj
