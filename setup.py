#!/usr/bin/env python
from setuptools import setup, find_packages

with open("README.md", "r") as fh:
    long_description = fh.read()

setup(
    name='django-ldapconnector',
    version='1.0.0',
    description='An identity management connector for LDAP directories',
    long_description=long_description,
    long_description_content_type="text/markdown",
    keywords=['django', 'ldap', 'identity', 'provisioning'],
    author="Caltech IMSS ADS",
    author_email="imss-ads-staff@caltech.edu",
    packages=find_packages(exclude=['bin', 'sandbox', 'sandbox.*']),
    include_package_data=True,
    python_requires='>=3.10',
    install_requires=[
        'Django',
        'pytz',
        'ldap_filter',
        'python-ldap',
    ],
    extras_require={
        'test': [
            'python-ldap-faker',
            'pytest',
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3"
    ],
)
