#!/usr/bin/env python3

import os
import re

from setuptools import find_packages, setup

TOPDIR = os.path.dirname(os.path.abspath(__file__))
PACKAGEDIR = os.path.join(TOPDIR, 'src')
MODULE = 'distbuild'


def version():
    """Determine the project version from the package's __init__ module."""
    with open(os.path.join(PACKAGEDIR, MODULE, '__init__.py')) as f:
        return re.search(r"^__version__ = '([^']+)'", f.read(), re.MULTILINE).group(1)


def readme():
    """Determine the long description from the readme, if there is one."""
    for name in ('README.rst', 'README.md'):
        try:
            with open(os.path.join(TOPDIR, name)) as f:
                return f.read()
        except FileNotFoundError:
            continue
    return None


setup(**dict(
    name=MODULE,
    version=version(),
    long_description=readme(),
    description='python package build orchestration across interpreter implementations',
    license='BSD',
    packages=find_packages(PACKAGEDIR),
    package_dir={'': os.path.basename(PACKAGEDIR)},
    python_requires='>=3.11',
    install_requires=['packaging', 'snakeoil'],
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'pdistbuild = distbuild.scripts:main',
        ],
        'pytest11': [
            'distbuild = distbuild.pytest.plugin',
        ],
    },
    classifiers=[
        'License :: OSI Approved :: BSD License',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Programming Language :: Python :: 3.13',
    ],
))
