# SPDX-License-Identifier: GPL-2.0-only
# This file is part of krb5pac
# See https://scapy.net/ for more information

"""
PAC signatures [MS-PAC] sect 2.8.

The server checksum is computed over the whole PAC, its own signature and
the KDC signature being zeroed. The KDC (privilege server) checksum is then
computed over the server signature only.
"""

import hmac

from krb5pac.crypto import make_checksum
from krb5pac.error import CryptoFailure, MissingElement, log_runtime
from krb5pac.structures import (
    PAC_PRIVSVR_CHECKSUM,
    PAC_SERVER_CHECKSUM,
    PAC_SIGNATURE_DATA,
    signature_length,
)

# Typing imports
from typing import (
    Any,
    Callable,
    Optional,
    Tuple,
)

_ChecksumFn = Callable[[int, Any, bytes], bytes]


def _checksum_elements(pac):
    # type: (Any) -> Tuple[PAC_SERVER_CHECKSUM, PAC_PRIVSVR_CHECKSUM]
    server = pac.get_element(PAC_SERVER_CHECKSUM)
    if server is None:
        raise MissingElement("The PAC has no server checksum")
    privsvr = pac.get_element(PAC_PRIVSVR_CHECKSUM)
    if privsvr is None:
        raise MissingElement("The PAC has no KDC checksum")
    return server, privsvr


def _checksum(checksum_fn, element, key, data):
    # type: (_ChecksumFn, PAC_SIGNATURE_DATA, Any, bytes) -> bytes
    length = signature_length(element.SignatureType)
    sig = checksum_fn(element.SignatureType, key, data)
    if len(sig) != length:
        raise CryptoFailure(
            "The checksum of type 0x%x is %d bytes long, not %d" % (
                element.SignatureType, len(sig), length
            )
        )
    return bytes(sig)


def _zero_signatures(server, privsvr):
    # type: (PAC_SIGNATURE_DATA, PAC_SIGNATURE_DATA) -> None
    for element in (server, privsvr):
        element.Signature = b"\x00" * signature_length(element.SignatureType)


def sign_pac(pac, key, checksum_fn=None):
    # type: (Any, Any, Optional[_ChecksumFn]) -> None
    """
    Lay out a PACTYPE, then compute its server and KDC checksums, in place.

    :param pac: the PACTYPE
    :param key: the key passed to checksum_fn
    :param checksum_fn: ``checksum_fn(signature_type, key, data)``. Defaults
        to :func:`krb5pac.crypto.make_checksum`
    :raises MissingElement: one of the checksum elements is missing. The PAC
        is then left untouched
    :raises CryptoFailure: a checksum has the wrong length, or checksum_fn
        failed. The signatures and buffers are then restored
    """
    checksum_fn = checksum_fn or make_checksum
    server, privsvr = _checksum_elements(pac)
    saved = (server.Signature, privsvr.Signature, pac.Buffers, pac.cBuffers)
    try:
        _zero_signatures(server, privsvr)
        pac.calculate_offsets()
        # Server checksum
        server_sig = _checksum(checksum_fn, server, key, bytes(pac))
        # KDC checksum
        privsvr_sig = _checksum(checksum_fn, privsvr, key, server_sig)
    except Exception:
        (server.Signature, privsvr.Signature,
         pac.Buffers, pac.cBuffers) = saved
        raise
    server.Signature = server_sig
    log_runtime.debug("Server checksum (0x%x) computed", server.SignatureType)
    privsvr.Signature = privsvr_sig
    log_runtime.debug("KDC checksum (0x%x) computed", privsvr.SignatureType)


def verify_pac(pac, key, checksum_fn=None):
    # type: (Any, Any, Optional[_ChecksumFn]) -> bool
    """
    Check the server and KDC checksums of a PACTYPE.

    :raises MissingElement: one of the checksum elements is missing
    """
    checksum_fn = checksum_fn or make_checksum
    server, privsvr = _checksum_elements(pac)
    expected_server = server.Signature
    expected_privsvr = privsvr.Signature
    if expected_server is None or expected_privsvr is None:
        return False
    pac = pac.copy()
    server_copy, privsvr_copy = _checksum_elements(pac)
    _zero_signatures(server_copy, privsvr_copy)
    server_sig = _checksum(checksum_fn, server_copy, key, bytes(pac))
    if not hmac.compare_digest(server_sig, bytes(expected_server)):
        log_runtime.debug("Bad server checksum")
        return False
    privsvr_sig = _checksum(checksum_fn, privsvr_copy, key, server_sig)
    if not hmac.compare_digest(privsvr_sig, bytes(expected_privsvr)):
        log_runtime.debug("Bad KDC checksum")
        return False
    return True
