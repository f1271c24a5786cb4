# SPDX-License-Identifier: GPL-2.0-only
# This file is part of krb5pac
# See https://scapy.net/ for more information

import datetime
import struct

import pytest

from krb5pac.config import conf
from krb5pac.elements import (
    PAC_TYPE_CLIENT_INFO,
    PAC_TYPE_LOGON_INFO,
    PAC_UNKNOWN,
    decode_element,
    encode_element,
    pac_type,
)
from krb5pac.error import MalformedInput
from krb5pac.pac import PAC_INFO_BUFFER, PACTYPE, PacBuilder
from krb5pac.structures import (
    KERB_VALIDATION_INFO,
    PAC_CLIENT_INFO,
    PAC_PRIVSVR_CHECKSUM,
    PAC_SERVER_CHECKSUM,
)

CLIENT_ID = 0x01D93E7A6A2B3C00


def _default_builder():
    return PacBuilder.default(
        "alice",
        "example.com",
        "S-1-5-21-1-2-3",
        user_id=1105,
        logon_time=datetime.datetime(2024, 1, 2, 3, 4, 5),
    )


def test_element_dispatch():
    assert pac_type(KERB_VALIDATION_INFO()) == 1
    assert pac_type(PAC_SERVER_CHECKSUM()) == 6
    assert pac_type(PAC_PRIVSVR_CHECKSUM()) == 7
    assert pac_type(PAC_CLIENT_INFO()) == 0xA
    assert pac_type(PAC_UNKNOWN(ulType=0x11)) == 0x11
    with pytest.raises(TypeError):
        pac_type(PAC_INFO_BUFFER())


def test_decode_unknown_element():
    element = decode_element(0x12, b"\x01\x02\x03")
    assert isinstance(element, PAC_UNKNOWN)
    assert element.ulType == 0x12
    assert encode_element(element) == (0x12, b"\x01\x02\x03")


def test_decode_element_trailing_bytes(caplog):
    data = bytes(PAC_CLIENT_INFO(ClientId=CLIENT_ID, Name="a")) + b"\xff\xff"
    element = decode_element(PAC_TYPE_CLIENT_INFO, data)
    assert element.Name == "a"
    assert "2 trailing bytes after PAC_CLIENT_INFO" in caplog.text
    assert encode_element(element) == (PAC_TYPE_CLIENT_INFO, data)


def test_build_layout():
    pac = PacBuilder([
        PAC_CLIENT_INFO(ClientId=CLIENT_ID, Name="a"),
        PAC_UNKNOWN(ulType=0xC, Data=b"\x01\x02\x03"),
    ]).build()
    assert [x.Offset for x in pac.Buffers] == [40, 56]
    assert [x.cbBufferSize for x in pac.Buffers] == [12, 3]
    assert bytes(pac) == (
        struct.pack("<II", 2, 0) +
        struct.pack("<IIQ", 0xA, 12, 40) +
        struct.pack("<IIQ", 0xC, 3, 56) +
        struct.pack("<QH", CLIENT_ID, 2) + b"a\x00" + b"\x00" * 4 +
        b"\x01\x02\x03" + b"\x00" * 5
    )


def test_decode():
    raw = bytes(PacBuilder([
        PAC_CLIENT_INFO(ClientId=CLIENT_ID, Name="a"),
        PAC_UNKNOWN(ulType=0xC, Data=b"\x01\x02\x03"),
    ]).build())
    pac = PACTYPE(raw)
    assert pac.cBuffers == 2
    assert pac.Version == 0
    assert [x.ulType for x in pac.Buffers] == [0xA, 0xC]
    client_info, unknown = pac.elements
    assert isinstance(client_info, PAC_CLIENT_INFO)
    assert client_info.Name == "a"
    assert client_info.ClientId == CLIENT_ID
    assert isinstance(unknown, PAC_UNKNOWN)
    assert unknown.ulType == 0xC
    assert unknown.Data == b"\x01\x02\x03"
    assert bytes(pac) == raw


def test_round_trip():
    pac = _default_builder().build()
    raw = bytes(pac)
    decoded = PACTYPE(raw)
    assert [pac_type(x) for x in decoded.elements] == [1, 0xA, 6, 7]
    assert [encode_element(x) for x in decoded.elements] == \
        [encode_element(x) for x in pac.elements]
    assert bytes(decoded) == raw
    logon_info = decoded.get_element(KERB_VALIDATION_INFO)
    assert logon_info.EffectiveName.Buffer == "alice"
    assert logon_info.LogonDomainName.Buffer == "EXAMPLE"
    assert logon_info.UserId == 1105
    assert logon_info.LogonDomainId.summary() == "S-1-5-21-1-2-3"
    assert [x.RelativeId for x in logon_info.GroupIds] == \
        [513, 512, 520, 518, 519]


def test_offsets_aligned_and_disjoint():
    pac = _default_builder().build()
    spans = sorted((x.Offset, x.Offset + x.cbBufferSize) for x in pac.Buffers)
    assert spans[0][0] == 8 + 16 * 4
    for offset, _ in spans:
        assert offset % 8 == 0
    for (_, end), (start, _) in zip(spans, spans[1:]):
        assert end <= start
    assert len(bytes(pac)) % 8 == 0


def test_unknown_element_fidelity():
    data = bytes(range(13))
    raw = bytes(PacBuilder([
        PAC_CLIENT_INFO(ClientId=CLIENT_ID, Name="a"),
        PAC_UNKNOWN(ulType=0x10, Data=data),
    ]).build())
    pac = PACTYPE(raw)
    assert pac.elements[1].Data == data
    out = bytes(pac)
    assert out == raw
    buf = PACTYPE(out).Buffers[1]
    assert out[buf.Offset:buf.Offset + buf.cbBufferSize] == data


def test_preset_offsets_kept():
    pac = PACTYPE(
        Buffers=[PAC_INFO_BUFFER(ulType=0xC, Offset=64)],
        Payloads=[PAC_UNKNOWN(ulType=0xC, Data=b"\xff")],
    )
    raw = bytes(pac)
    assert len(raw) == 72
    assert raw[64] == 0xff
    assert raw[24:64] == b"\x00" * 40
    # building does not modify the PAC
    assert pac.Buffers[0].cbBufferSize is None
    pac.calculate_offsets()
    assert pac.Buffers[0].Offset == 64
    assert pac.Buffers[0].cbBufferSize == 1
    pac.calculate_offsets(reset=True)
    assert pac.Buffers[0].Offset == 24


def test_overlapping_elements():
    pac = PACTYPE(
        Buffers=[
            PAC_INFO_BUFFER(ulType=0xC, Offset=40),
            PAC_INFO_BUFFER(ulType=0xC, Offset=48),
        ],
        Payloads=[
            PAC_UNKNOWN(ulType=0xC, Data=b"\x00" * 10),
            PAC_UNKNOWN(ulType=0xC, Data=b"\x00"),
        ],
    )
    with pytest.raises(MalformedInput):
        bytes(pac)


def test_element_in_header():
    pac = PACTYPE(
        Buffers=[PAC_INFO_BUFFER(ulType=0xC, Offset=16)],
        Payloads=[PAC_UNKNOWN(ulType=0xC, Data=b"\x00")],
    )
    with pytest.raises(MalformedInput):
        bytes(pac)


def test_buffers_payloads_mismatch():
    pac = PACTYPE(
        Buffers=[PAC_INFO_BUFFER(), PAC_INFO_BUFFER()],
        Payloads=[PAC_UNKNOWN(ulType=0xC, Data=b"\x00")],
    )
    with pytest.raises(MalformedInput):
        pac.layout()


def test_build_bad_version():
    pac = PacBuilder([PAC_UNKNOWN(ulType=0xC, Data=b"\x00")]).build()
    pac.Version = 1
    with pytest.raises(MalformedInput):
        bytes(pac)


def test_decode_bad_version():
    with pytest.raises(MalformedInput):
        PACTYPE(struct.pack("<II", 0, 1))


def test_decode_truncated_header():
    with pytest.raises(MalformedInput):
        PACTYPE(b"\x01\x00\x00")
    with pytest.raises(MalformedInput):
        PACTYPE(struct.pack("<II", 1, 0) + b"\x00" * 8)


def test_decode_element_out_of_bounds():
    raw = struct.pack("<II", 1, 0) + struct.pack("<IIQ", 0xC, 9, 24) + \
        b"\x00" * 8
    with pytest.raises(MalformedInput):
        PACTYPE(raw)


def test_decode_element_inside_header():
    raw = struct.pack("<II", 1, 0) + struct.pack("<IIQ", 0xC, 4, 8) + \
        b"\x00" * 8
    with pytest.raises(MalformedInput):
        PACTYPE(raw)


def test_decode_error_names_element():
    raw = bytearray(bytes(PacBuilder([
        PAC_UNKNOWN(ulType=0x11, Data=b"\x00" * 4),
        PAC_CLIENT_INFO(ClientId=0, Name="ab"),
    ]).build()))
    # the PAC_CLIENT_INFO starts at 48, its NameLength at 56
    assert raw[56:58] == b"\x04\x00"
    raw[56] = 3
    with pytest.raises(MalformedInput, match=r"Element 1 \(ulType 0xa\)"):
        PACTYPE(bytes(raw))


def test_decode_error_bad_ndr_header():
    raw = bytearray(bytes(_default_builder().build()))
    offset = struct.unpack("<Q", raw[16:24])[0]
    raw[offset] = 2  # Type Serialization Version
    with pytest.raises(MalformedInput, match=r"Element 0 \(ulType 0x1\)"):
        PACTYPE(bytes(raw))


def test_empty_pac():
    assert bytes(PACTYPE()) == b"\x00" * 8
    pac = PACTYPE(b"\x00" * 8)
    assert pac.elements == []


def test_get_element():
    pac = _default_builder().build()
    assert isinstance(pac.get_element(PAC_TYPE_LOGON_INFO),
                      KERB_VALIDATION_INFO)
    assert isinstance(pac.get_element(PAC_CLIENT_INFO), PAC_CLIENT_INFO)
    assert pac.get_element(PAC_TYPE_CLIENT_INFO).Name == "alice"
    assert pac.get_element(0x11) is None


def test_add_element():
    pac = PacBuilder([PAC_CLIENT_INFO(ClientId=CLIENT_ID, Name="a")]).build()
    pac.add_element(PAC_UNKNOWN(ulType=0xC, Data=b"\x01"))
    decoded = PACTYPE(bytes(pac))
    assert [pac_type(x) for x in decoded.elements] == [0xA, 0xC]
    assert decoded.Buffers[0].Offset == 40


def test_builder_copies_elements():
    client_info = PAC_CLIENT_INFO(ClientId=CLIENT_ID, Name="a")
    builder = PacBuilder([client_info])
    client_info.Name = "bbbb"
    pac = builder.build()
    assert pac.elements[0].Name == "a"
    assert pac.elements[0] is not builder.elements[0]


def test_builder_rejects_non_elements():
    with pytest.raises(TypeError):
        PacBuilder().add(PAC_INFO_BUFFER())


def test_alignment_conf():
    with pytest.raises(ValueError):
        conf.pac_alignment = 3
    conf.pac_alignment = 16
    pac = PacBuilder([
        PAC_CLIENT_INFO(ClientId=CLIENT_ID, Name="a"),
        PAC_UNKNOWN(ulType=0xC, Data=b"\x01\x02\x03"),
    ]).build()
    assert [x.Offset for x in pac.Buffers] == [40, 64]
    assert len(bytes(pac)) == 80
