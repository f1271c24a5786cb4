# SPDX-License-Identifier: GPL-2.0-only
# This file is part of krb5pac
# See https://scapy.net/ for more information

"""
PAC credentials [MS-PAC] sect 2.6: PAC_CREDENTIAL_INFO, its decrypted
PAC_CREDENTIAL_DATA, and the NTLM hashes it carries (PKINIT).
"""

import binascii

from scapy.fields import (
    FlagsField,
    LEIntEnumField,
    LEIntField,
    StrFixedLenField,
    XStrField,
)
from scapy.packet import Packet

from krb5pac.config import conf
from krb5pac.crypto import decrypt, encrypt
from krb5pac.error import MalformedInput, log_runtime
from krb5pac.ndr import (
    NDRConfArrayField,
    NDRConfStrField,
    NDRFullPointerField,
    NDRIntField,
    NDRPacket,
    NDRPacketField,
    ndr_deserialize1,
    ndr_serialize1,
)
from krb5pac.structures import RPC_UNICODE_STRING

# Typing imports
from typing import (
    Any,
    Callable,
    Optional,
)

# LM hash of the empty password
EMPTY_LM_HASH = "aad3b435b51404eeaad3b435b51404ee"

# sect 2.6.1


class PAC_CREDENTIAL_INFO(Packet):
    fields_desc = [
        LEIntField("Version", 0),
        LEIntEnumField(
            "EncryptionType",
            0x12,
            {
                0x00000001: "DES-CBC-CRC",
                0x00000003: "DES-CBC-MD5",
                0x00000011: "AES128_CTS_HMAC_SHA1_96",
                0x00000012: "AES256_CTS_HMAC_SHA1_96",
                0x00000017: "RC4-HMAC",
            },
        ),
        XStrField("SerializedData", b""),
    ]


# sect 2.6.4

NTLM_LM_PRESENT = 0x00000001
NTLM_NT_PRESENT = 0x00000002


class NTLM_SUPPLEMENTAL_CREDENTIAL(Packet):
    fields_desc = [
        LEIntField("Version", 0),
        FlagsField("Flags", 0, -32, {
            NTLM_LM_PRESENT: "NTLM_LM_PRESENT",
            NTLM_NT_PRESENT: "NTLM_NT_PRESENT",
        }),
        StrFixedLenField("LmPassword", b"\x00" * 16, length=16),
        StrFixedLenField("NtPassword", b"\x00" * 16, length=16),
    ]


# sect 2.6.3


class SECPKG_SUPPLEMENTAL_CRED(NDRPacket):
    ALIGNMENT = 4
    fields_desc = [
        NDRPacketField("PackageName", RPC_UNICODE_STRING(), RPC_UNICODE_STRING),
        NDRIntField("CredentialSize", None, size_of="Credentials"),
        NDRFullPointerField(
            NDRConfStrField(
                "Credentials", b"", size_is=lambda pkt: pkt.CredentialSize
            )
        ),
    ]


# sect 2.6.2


class PAC_CREDENTIAL_DATA(NDRPacket):
    ALIGNMENT = 4
    DEPORTED_CONFORMANTS = ["Credentials"]
    fields_desc = [
        NDRIntField("CredentialCount", None, size_of="Credentials"),
        NDRConfArrayField(
            "Credentials",
            [],
            NDRPacketField("", None, SECPKG_SUPPLEMENTAL_CRED),
            size_is=lambda pkt: pkt.CredentialCount,
            conformant_in_struct=True,
        ),
    ]


def decrypt_credential_info(credential_info, key, decrypt_fn=None):
    # type: (PAC_CREDENTIAL_INFO, Any, Optional[Callable[[int, Any, bytes], bytes]]) -> PAC_CREDENTIAL_DATA  # noqa: E501
    """
    Decrypt the SerializedData of a PAC_CREDENTIAL_INFO.

    :param credential_info: the PAC_CREDENTIAL_INFO element
    :param key: the AS-REP reply key
    :param decrypt_fn: ``decrypt_fn(etype, key, data)``. Defaults to
        :func:`krb5pac.crypto.decrypt`
    :raises UnsupportedAlgorithm: unknown EncryptionType
    :raises CryptoFailure: decryption or integrity failure
    :raises MalformedInput: the plaintext is not a PAC_CREDENTIAL_DATA
    """
    decrypt_fn = decrypt_fn or decrypt
    plaintext = decrypt_fn(
        credential_info.EncryptionType,
        key,
        credential_info.SerializedData,
    )
    return ndr_deserialize1(plaintext, PAC_CREDENTIAL_DATA)


def encrypt_credential_data(credential_data, key, etype=0x12,
                            encrypt_fn=None):
    # type: (PAC_CREDENTIAL_DATA, Any, int, Optional[Callable[[int, Any, bytes], bytes]]) -> PAC_CREDENTIAL_INFO  # noqa: E501
    """
    Build a PAC_CREDENTIAL_INFO from a PAC_CREDENTIAL_DATA.

    :param encrypt_fn: ``encrypt_fn(etype, key, data)``. Defaults to
        :func:`krb5pac.crypto.encrypt`
    """
    encrypt_fn = encrypt_fn or encrypt
    return PAC_CREDENTIAL_INFO(
        EncryptionType=etype,
        SerializedData=encrypt_fn(etype, key, ndr_serialize1(credential_data)),
    )


def ntlm_credential_data(nt_hash, lm_hash=None):
    # type: (bytes, Optional[bytes]) -> PAC_CREDENTIAL_DATA
    """
    Build a PAC_CREDENTIAL_DATA holding the NTLM hashes of a user
    """
    flags = "NTLM_NT_PRESENT"
    if lm_hash:
        flags += "+NTLM_LM_PRESENT"
    creds = NTLM_SUPPLEMENTAL_CREDENTIAL(
        Flags=flags,
        LmPassword=lm_hash or b"\x00" * 16,
        NtPassword=nt_hash,
    )
    return PAC_CREDENTIAL_DATA(
        Credentials=[
            SECPKG_SUPPLEMENTAL_CRED(
                PackageName=RPC_UNICODE_STRING(Buffer=conf.ntlm_package_name),
                Credentials=bytes(creds),
            )
        ]
    )


def extract_ntlm_hash(credential_data):
    # type: (PAC_CREDENTIAL_DATA) -> Optional[str]
    """
    Return the "LMHASH:NTHASH" carried by a PAC_CREDENTIAL_DATA, or None
    if it has no NTLM package.
    """
    for cred in credential_data.Credentials or []:
        if cred.PackageName is None or \
                cred.PackageName.Buffer != conf.ntlm_package_name:
            continue
        data = cred.Credentials or b""
        if len(data) < 40:
            raise MalformedInput(
                "Truncated NTLM_SUPPLEMENTAL_CREDENTIAL (%d bytes)" % len(data)
            )
        ntlm = NTLM_SUPPLEMENTAL_CREDENTIAL(data)
        if any(ntlm.LmPassword):
            lm_hash = binascii.hexlify(ntlm.LmPassword).decode()
        else:
            lm_hash = EMPTY_LM_HASH
        return "%s:%s" % (lm_hash, binascii.hexlify(ntlm.NtPassword).decode())
    log_runtime.debug("No %s package in PAC_CREDENTIAL_DATA",
                      conf.ntlm_package_name)
    return None
