# SPDX-License-Identifier: GPL-2.0-only
# This file is part of krb5pac
# See https://scapy.net/ for more information

"""
Logging subsystem and exception classes.
"""

import logging

from scapy.error import Scapy_Exception, ScapyFreqFilter


class Krb5PacError(Scapy_Exception):
    pass


class MalformedInput(Krb5PacError):
    """Truncated buffer, bad alignment, count mismatch or bad constant"""
    pass


class UnsupportedAlgorithm(Krb5PacError):
    """No implementation is bound to an encryption or checksum type"""
    pass


class CryptoFailure(Krb5PacError):
    """Raised by the checksum/cipher collaborators"""
    pass


class MissingElement(Krb5PacError):
    """A PAC element required by the operation is absent"""
    pass


log_krb5pac = logging.getLogger("krb5pac")
# override the level if not already set
if log_krb5pac.level == logging.NOTSET:
    log_krb5pac.setLevel(logging.WARNING)
_handler = logging.StreamHandler()
_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
log_krb5pac.addHandler(_handler)
# logs at runtime
log_runtime = logging.getLogger("krb5pac.runtime")
log_runtime.addFilter(ScapyFreqFilter())


def warning(x, *args, **kargs):
    """
    Prints a warning during runtime.
    """
    log_runtime.warning(x, *args, **kargs)
