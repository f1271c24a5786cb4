# SPDX-License-Identifier: GPL-2.0-only
# This file is part of krb5pac
# See https://scapy.net/ for more information

import hashlib
import hmac

import pytest

from krb5pac.config import conf
from krb5pac.structures import signature_length


def stub_checksum(signature_type, key, data):
    """A keyed checksum of the right length, independent of rfc3961"""
    digest = hmac.new(key, data, hashlib.sha256).digest()
    return digest[:signature_length(signature_type)]


@pytest.fixture
def checksum_fn():
    calls = []

    def _fn(signature_type, key, data):
        calls.append((signature_type, key, bytes(data)))
        return stub_checksum(signature_type, key, data)
    _fn.calls = calls
    return _fn


@pytest.fixture(autouse=True)
def restore_conf():
    saved = conf.pac_alignment
    yield
    conf.pac_alignment = saved
