# SPDX-License-Identifier: GPL-2.0-only
# This file is part of krb5pac
# See https://scapy.net/ for more information

import datetime

import pytest

from krb5pac.error import MalformedInput
from krb5pac.ndr import ndr_deserialize1, ndr_serialize1
from krb5pac.structures import (
    KERB_SID_AND_ATTRIBUTES,
    KERB_VALIDATION_INFO,
    NEVER_EXPIRE,
    PAC_CLIENT_INFO,
    PAC_SIGNATURE_DATA,
    RPC_UNICODE_STRING,
    SE_GROUP_ALL,
    SID,
    USER_SESSION_KEY,
    datetime_from_filetime,
    filetime_from_datetime,
    group_memberships,
    signature_length,
)


def _validation_info():
    return KERB_VALIDATION_INFO(
        LogonTime=filetime_from_datetime(datetime.datetime(2024, 1, 2, 3, 4, 5)),
        EffectiveName=RPC_UNICODE_STRING(Buffer="alice"),
        FullName=RPC_UNICODE_STRING(Buffer="Alice Liddell"),
        LogonCount=3,
        UserId=1105,
        GroupIds=group_memberships([513, 512]),
        UserSessionKey=USER_SESSION_KEY.frombytes(bytes(range(16))),
        LogonServer=RPC_UNICODE_STRING(Buffer="DC1"),
        LogonDomainName=RPC_UNICODE_STRING(Buffer="EXAMPLE"),
        LogonDomainId="S-1-5-21-1-2-3",
        ExtraSids=[
            KERB_SID_AND_ATTRIBUTES(Sid="S-1-18-1"),
            KERB_SID_AND_ATTRIBUTES(Sid="S-1-5-21-4-5-6-519"),
        ],
    )


def test_filetime():
    dt = datetime.datetime(1601, 1, 1, 0, 0, 1, tzinfo=datetime.timezone.utc)
    assert filetime_from_datetime(dt) == 10000000
    dt = datetime.datetime(2024, 1, 2, 3, 4, 5, tzinfo=datetime.timezone.utc)
    assert datetime_from_filetime(filetime_from_datetime(dt)) == dt


def test_validation_info_derived_counts():
    info = ndr_deserialize1(ndr_serialize1(_validation_info()),
                            KERB_VALIDATION_INFO)
    assert info.GroupCount == 2
    assert info.SidCount == 2
    assert info.ResourceGroupCount == 0
    assert info.ResourceGroupIds is None
    assert info.ResourceGroupDomainSid is None


def test_validation_info_round_trip():
    data = ndr_serialize1(_validation_info())
    info = ndr_deserialize1(data, KERB_VALIDATION_INFO)
    assert info.EffectiveName.Buffer == "alice"
    assert info.FullName.Buffer == "Alice Liddell"
    assert info.FullName.Length == 26
    assert info.LogonServer.Buffer == "DC1"
    assert info.LogonDomainName.Buffer == "EXAMPLE"
    assert info.LogonCount == 3
    assert info.UserId == 1105
    assert info.PrimaryGroupId == 513
    assert [g.RelativeId for g in info.GroupIds] == [513, 512]
    assert all(g.Attributes == SE_GROUP_ALL for g in info.GroupIds)
    assert info.LogonDomainId.summary() == "S-1-5-21-1-2-3"
    assert [x.Sid.summary() for x in info.ExtraSids] == [
        "S-1-18-1", "S-1-5-21-4-5-6-519"
    ]
    assert info.LogoffTime == NEVER_EXPIRE
    assert b"".join(x.data for x in info.UserSessionKey.data) == \
        bytes(range(16))
    assert ndr_serialize1(info) == data


def test_validation_info_group_count_mismatch():
    info = _validation_info()
    info.GroupCount = 3
    data = ndr_serialize1(info)
    # GroupCount is derived when building
    assert ndr_deserialize1(data, KERB_VALIDATION_INFO).GroupCount == 2


def test_validation_info_truncated():
    data = ndr_serialize1(_validation_info())
    with pytest.raises(MalformedInput):
        ndr_deserialize1(data[:100], KERB_VALIDATION_INFO)


def test_session_key_length():
    with pytest.raises(ValueError):
        USER_SESSION_KEY.frombytes(b"\x00" * 8)


def test_client_info():
    pkt = PAC_CLIENT_INFO(ClientId=0x01D93E7A6A2B3C00, Name="bob")
    data = bytes(pkt)
    assert data == (
        b"\x00\x3c\x2b\x6a\x7a\x3e\xd9\x01"
        b"\x06\x00"
        b"b\x00o\x00b\x00"
    )
    pkt = PAC_CLIENT_INFO(data)
    assert pkt.Name == "bob"
    assert pkt.NameLength == 6
    assert pkt.ClientId == 0x01D93E7A6A2B3C00


def test_client_info_odd_length():
    with pytest.raises(MalformedInput):
        PAC_CLIENT_INFO(b"\x00" * 8 + b"\x03\x00" + b"b\x00o")


def test_client_info_truncated():
    with pytest.raises(MalformedInput):
        PAC_CLIENT_INFO(b"\x00" * 8 + b"\x08\x00" + b"b\x00o\x00")


@pytest.mark.parametrize("signature_type,length", [
    (0x00000007, 16),
    (0x0000000F, 12),
    (0x00000010, 12),
    (0xFFFFFF76, 16),
    (-138, 16),
])
def test_signature_length(signature_type, length):
    assert signature_length(signature_type) == length
    pkt = PAC_SIGNATURE_DATA(SignatureType=signature_type)
    assert len(bytes(pkt)) == 4 + length


def test_signature_unknown_type():
    with pytest.raises(MalformedInput):
        signature_length(5)
    with pytest.raises(MalformedInput):
        bytes(PAC_SIGNATURE_DATA(SignatureType=5))
    with pytest.raises(MalformedInput):
        PAC_SIGNATURE_DATA(b"\x05\x00\x00\x00" + b"\x00" * 16)


def test_signature_wrong_length():
    with pytest.raises(MalformedInput):
        bytes(PAC_SIGNATURE_DATA(SignatureType=0x10, Signature=b"\x00" * 16))


def test_signature_truncated():
    with pytest.raises(MalformedInput):
        PAC_SIGNATURE_DATA(b"\x10\x00\x00\x00" + b"\x00" * 8)


def test_signature_type_twos_complement():
    pkt = PAC_SIGNATURE_DATA(SignatureType=-138, Signature=b"\xaa" * 16)
    assert pkt.SignatureType == 0xFFFFFF76
    data = bytes(pkt)
    assert data == b"\x76\xff\xff\xff" + b"\xaa" * 16
    pkt = PAC_SIGNATURE_DATA(data)
    assert pkt.SignatureType == 0xFFFFFF76
    assert pkt.Signature == b"\xaa" * 16
    assert bytes(pkt) == data


def test_signature_rodc_identifier():
    data = b"\x10\x00\x00\x00" + b"\x01" * 12 + b"\x02\x00\x03\x00"
    pkt = PAC_SIGNATURE_DATA(data)
    assert pkt.RODCIdentifier == b"\x02\x00\x03\x00"
    assert bytes(pkt) == data


def test_sid_string_field():
    sid = SID.fromstr("S-1-5-32-544")
    assert sid.IdentifierAuthority == b"\x00\x00\x00\x00\x00\x05"
    assert sid.SubAuthority == [32, 544]
