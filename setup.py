#!/usr/bin/env python
from setuptools import setup, find_packages

with open("README.md", "r") as fh:
    long_description = fh.read()

setup(
    name='django-vhost-ldap',
    version='1.0.0',
    description='Resolve web server virtual hosts from an LDAP directory at connection time',
    long_description=long_description,
    long_description_content_type="text/markdown",
    keywords=['django', 'ldap', 'vhost'],
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
    classifiers=[
        "Programming Language :: Python :: 3"
    ],
)
