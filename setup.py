#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""The setup script."""

from setuptools import setup, find_packages

with open('README.rst') as readme_file:
    readme = readme_file.read()

requirements = [
    'cryptography',
    'kubernetes',
    'mach.py',
    'netaddr',
    'PyYAML',
    'requests',
    'urllib3',
]

test_requirements = ['pytest', ]

setup(
    name='kubestrap',
    version='0.4.0',
    description='Bootstrap a single node home-lab with MicroK8s, Harbor '
                'and GitHub Actions runners',
    long_description=readme,
    long_description_content_type='text/x-rst',
    packages=find_packages(exclude=['tests', 'tests.*']),
    include_package_data=True,
    install_requires=requirements,
    extras_require={'test': test_requirements},
    tests_require=test_requirements,
    python_requires='>=3.8',
    entry_points={
        'console_scripts': [
            'kubestrap=kubestrap.kubestrap:main',
        ],
    },
    license='Apache Software License 2.0',
    classifiers=[
        'Environment :: Console',
        'Intended Audience :: System Administrators',
        'Programming Language :: Python :: 3',
        'Topic :: System :: Installation/Setup',
    ],
)
