# SPDX-License-Identifier: GPL-2.0-only
# This file is part of krb5pac
# See https://scapy.net/ for more information

"""
Aggregate top level objects from all krb5pac modules.
"""

# flake8: noqa: F403

from krb5pac.error import *
from krb5pac.config import *

from krb5pac.ndr import *
from krb5pac.structures import *
from krb5pac.credentials import *
from krb5pac.elements import *
from krb5pac.pac import *
from krb5pac.signing import *
from krb5pac.crypto import *
