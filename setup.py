#!/usr/bin/env python
from setuptools import setup, find_packages

with open("README.md", "r") as fh:
    long_description = fh.read()

setup(
    name='adprobe',
    version='1.0.0',
    description='Diagnose and exercise LDAP and Active Directory servers: bind tests, user and group provisioning, moves',
    long_description=long_description,
    long_description_content_type="text/markdown",
    keywords=['ldap', 'active directory'],
    author="Caltech IMSS ADS",
    author_email="imss-ads-staff@caltech.edu",
    packages=find_packages(exclude=['bin']),
    include_package_data=True,
    python_requires='>=3.10',
    install_requires=[
        'django',
        'ldap_filter',
        'python-ldap',
    ],
    extras_require={
        'test': [
            'python-ldap-faker',
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3"
    ],
)
