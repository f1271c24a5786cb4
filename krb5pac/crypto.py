# SPDX-License-Identifier: GPL-2.0-only
# This file is part of krb5pac
# See https://scapy.net/ for more information

"""
Default checksum and cipher collaborators, based on Scapy's RFC3961
implementation.

Every function here can be replaced by a caller-supplied callable with the
same signature:

- ``checksum_fn(signature_type, key, data) -> bytes``
- ``decrypt_fn(etype, key, data) -> bytes``
- ``encrypt_fn(etype, key, data) -> bytes``

``key`` is either the raw key bytes or a :class:`scapy.libs.rfc3961.Key`.
"""

from scapy.layers.tls.crypto.hash import Hash_MD5
from scapy.libs.rfc3961 import (
    ChecksumType,
    EncryptionType,
    InvalidChecksum,
    Key,
    _checksums,
    _enctypes,
)

from krb5pac.config import conf
from krb5pac.error import CryptoFailure, UnsupportedAlgorithm

# Typing imports
from typing import (
    Union,
)

_RSA_MD5 = 0x00000007


def _key_bytes(key):
    # type: (Union[bytes, Key]) -> bytes
    if isinstance(key, Key):
        key = key.key
    if not key:
        raise CryptoFailure("Empty key")
    return bytes(key)


def _checksum_type(signature_type):
    # type: (int) -> ChecksumType
    # PAC signature types are stored as unsigned 32-bit integers
    signature_type &= 0xFFFFFFFF
    if signature_type & 0x80000000:
        signature_type -= 1 << 32
    try:
        cksumtype = ChecksumType(signature_type)
    except ValueError:
        cksumtype = None
    if cksumtype is None or cksumtype not in _checksums:
        raise UnsupportedAlgorithm(
            "No checksum implementation for signature type %d" %
            signature_type
        )
    return cksumtype


def _encryption_type(etype):
    # type: (int) -> EncryptionType
    try:
        enctype = EncryptionType(etype)
    except ValueError:
        enctype = None
    if enctype is None or enctype not in _enctypes:
        raise UnsupportedAlgorithm(
            "No cipher implementation for encryption type %d" % etype
        )
    return enctype


def make_checksum(signature_type, key, data):
    # type: (int, Union[bytes, Key], bytes) -> bytes
    """
    Compute the checksum of a PAC_SIGNATURE_DATA, with the key usage
    KERB_NON_KERB_CKSUM_SALT.
    """
    if signature_type == _RSA_MD5:
        # unkeyed, see MS14-068
        return Hash_MD5().digest(bytes(data))
    cksumtype = _checksum_type(signature_type)
    key = _key_bytes(key)
    try:
        return Key(cksumtype=cksumtype, key=key).make_checksum(
            conf.checksum_key_usage, bytes(data)
        )
    except (InvalidChecksum, ValueError) as ex:
        raise CryptoFailure(
            "%s checksum failed: %s" % (cksumtype.name, ex)
        ) from ex


def decrypt(etype, key, data):
    # type: (int, Union[bytes, Key], bytes) -> bytes
    """
    Decrypt the SerializedData of a PAC_CREDENTIAL_INFO, with the key usage
    KERB_NON_KERB_SALT.
    """
    enctype = _encryption_type(etype)
    key = _key_bytes(key)
    try:
        return Key(enctype, key=key).decrypt(
            conf.credential_key_usage, bytes(data)
        )
    except (InvalidChecksum, ValueError) as ex:
        raise CryptoFailure(
            "%s decryption failed: %s" % (enctype.name, ex)
        ) from ex


def encrypt(etype, key, data):
    # type: (int, Union[bytes, Key], bytes) -> bytes
    """
    Encrypt a serialized PAC_CREDENTIAL_DATA, with the key usage
    KERB_NON_KERB_SALT.
    """
    enctype = _encryption_type(etype)
    key = _key_bytes(key)
    try:
        return Key(enctype, key=key).encrypt(
            conf.credential_key_usage, bytes(data)
        )
    except ValueError as ex:
        raise CryptoFailure(
            "%s encryption failed: %s" % (enctype.name, ex)
        ) from ex
