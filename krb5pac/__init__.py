# SPDX-License-Identifier: GPL-2.0-only
# This file is part of krb5pac
# See https://scapy.net/ for more information

"""
krb5pac: encode, decode and sign Kerberos PACs.

Built on Scapy's packet model. See [MS-PAC]:
https://learn.microsoft.com/en-us/openspecs/windows_protocols/ms-pac/
"""

import datetime
import os
import re
import subprocess

__all__ = [
    "VERSION",
    "__version__",
]

_KRB5PAC_PKG_DIR = os.path.dirname(__file__)


def _parse_tag(tag):
    # type: (str) -> str
    """
    Parse a tag from ``git describe`` into a version.

    Example::

        v0.3.1-12-g164a52c075c8 -> '0.3.1.dev12'
    """
    match = re.match('^v?(.+?)-(\\d+)-g[a-f0-9]+$', tag)
    if match:
        # remove the 'v' prefix and add a '.devN' suffix
        return '%s.dev%s' % (match.group(1), match.group(2))
    else:
        match = re.match('^v?([\\d\\.]+(rc\\d+)?)$', tag)
        if match:
            # tagged release version
            return '%s' % (match.group(1))
        else:
            raise ValueError('tag has invalid format')


def _version_from_git_describe():
    # type: () -> str
    """
    Read the version from ``git describe``.

    :raises CalledProcessError: if git is unavailable
    :return: krb5pac's latest tag
    """
    if not os.path.isdir(os.path.join(os.path.dirname(_KRB5PAC_PKG_DIR), '.git')):  # noqa: E501
        raise ValueError('not in krb5pac git repo')

    process = subprocess.Popen(
        "git describe --tags --always --long".split(),
        cwd=_KRB5PAC_PKG_DIR,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE
    )
    out, err = process.communicate()
    if process.returncode != 0:
        raise subprocess.CalledProcessError(process.returncode, err)
    return _parse_tag(out.decode().strip())


def _version():
    # type: () -> str
    """Returns the krb5pac version from multiple methods

    :return: the krb5pac version
    """
    # Method 0: from external packaging
    try:
        return os.environ['KRB5PAC_VERSION']
    except KeyError:
        pass

    # Method 1: from the VERSION file, included in sdist and wheels
    version_file = os.path.join(_KRB5PAC_PKG_DIR, 'VERSION')
    try:
        with open(version_file, 'r') as fdsec:
            return fdsec.read().strip()
    except (FileNotFoundError, NotADirectoryError):
        pass

    # Method 2: from git itself, used when krb5pac was cloned
    try:
        return _version_from_git_describe()
    except (ValueError, OSError, subprocess.CalledProcessError):
        pass

    # last resort, use the modification date of __init__.py
    d = datetime.datetime.fromtimestamp(
        os.path.getmtime(__file__), datetime.timezone.utc
    )
    return d.strftime('%Y.%m.%d')


VERSION = __version__ = _version()
