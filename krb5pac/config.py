# SPDX-License-Identifier: GPL-2.0-only
# This file is part of krb5pac
# See https://scapy.net/ for more information

"""
Implementation of the configuration object.
"""

from scapy.config import ConfClass, Interceptor

from krb5pac import VERSION
from krb5pac.error import log_krb5pac


def _loglevel_changer(attr, val, old):
    # type: (str, int, int) -> int
    """Handle a change of conf.logLevel"""
    log_krb5pac.setLevel(val)
    return val


def _alignment_checker(attr, val, old):
    # type: (str, int, int) -> int
    if val <= 0 or val & (val - 1):
        raise ValueError("%s must be a power of two !" % attr)
    return val


class Conf(ConfClass):
    """
    This object contains the configuration of krb5pac.
    """
    version = VERSION
    #: level of the "krb5pac" logger
    logLevel = Interceptor("logLevel", log_krb5pac.level, _loglevel_changer)
    #: alignment of the elements inside a PACTYPE [MS-PAC sect 2.3]
    pac_alignment = Interceptor("pac_alignment", 8, _alignment_checker)
    #: first referent ID used when marshalling NDR full pointers
    ndr_referent_id = 0x00020000
    #: increment between two consecutive referent IDs
    ndr_referent_step = 4
    #: key usage of the server and KDC checksums (KERB_NON_KERB_CKSUM_SALT)
    checksum_key_usage = 17
    #: key usage of PAC_CREDENTIAL_INFO encryption (KERB_NON_KERB_SALT)
    credential_key_usage = 16
    #: package name of the NTLM supplemental credentials
    ntlm_package_name = "NTLM"


conf = Conf()
