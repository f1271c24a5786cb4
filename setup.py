#! /usr/bin/env python

"""
Setuptools setup file for krb5pac.
"""

import io
import os
import sys

if sys.version_info[0] <= 2:
    raise OSError("krb5pac does not support Python 2 !")

try:
    from setuptools import setup
    from setuptools.command.sdist import sdist
    from setuptools.command.build_py import build_py
except ImportError:
    raise ImportError("setuptools is required to install krb5pac !")


def get_long_description():
    """
    Extract description from README.md, for PyPI's usage
    """
    try:
        fpath = os.path.join(os.path.dirname(__file__), "README.md")
        with io.open(fpath, encoding="utf-8") as f:
            return f.read()
    except IOError:
        return None


# The version is computed at runtime by krb5pac/__init__.py, from git when
# possible. Archives and wheels carry it in a krb5pac/VERSION file instead.


def _build_version(path):
    """
    This adds the krb5pac/VERSION file when creating a sdist and a wheel
    """
    fn = os.path.join(path, 'krb5pac', 'VERSION')
    with open(fn, 'w') as f:
        f.write(__import__('krb5pac').VERSION)


class SDist(sdist):
    """
    Modified sdist to create krb5pac/VERSION file
    """
    def make_release_tree(self, base_dir, *args, **kwargs):
        super(SDist, self).make_release_tree(base_dir, *args, **kwargs)
        # ensure there's a krb5pac/VERSION file
        _build_version(base_dir)


class BuildPy(build_py):
    """
    Modified build_py to create krb5pac/VERSION file
    """
    def build_package_data(self):
        super(BuildPy, self).build_package_data()
        # ensure there's a krb5pac/VERSION file
        _build_version(self.build_lib)


setup(
    name='krb5pac',
    version=__import__('krb5pac').VERSION,
    description='Encode, decode and sign Kerberos PACs (MS-PAC)',
    license='GPL-2.0-only',
    packages=['krb5pac'],
    python_requires='>=3.7, <4',
    install_requires=[
        'scapy>=2.6.0',
        'cryptography',
    ],
    extras_require={
        'test': ['pytest'],
    },
    cmdclass={'sdist': SDist, 'build_py': BuildPy},
    long_description=get_long_description(),
    long_description_content_type='text/markdown',
    classifiers=[
        'License :: OSI Approved :: GNU General Public License v2 (GPLv2)',
        'Programming Language :: Python :: 3',
        'Topic :: Security',
        'Topic :: System :: Networking',
    ],
)
