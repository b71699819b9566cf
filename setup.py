#!/usr/bin/env python
# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""The setup script for modulex"""

import os

from setuptools import find_packages, setup

DIR_HERE = os.path.abspath(os.path.dirname(__file__))

try:
    with open(f"{DIR_HERE}/README.rst", encoding="utf-8") as readme_file:
        readme = readme_file.read()
except FileNotFoundError:
    readme = "modulex"

requirements = []
with open(f"{DIR_HERE}/requirements.txt") as req_fd:
    for line in req_fd:
        if line.strip():
            requirements.append(line.strip())

test_requirements = []
try:
    with open(f"{DIR_HERE}/requirements_dev.txt") as req_fd:
        for line in req_fd:
            if line.strip():
                test_requirements.append(line.strip())
except FileNotFoundError:
    print("Failed to load dev requirements. Skipping")

setup(
    author="John Preston",
    author_email="john@compose-x.io",
    python_requires=">=3.8",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: Mozilla Public License 2.0 (MPL 2.0)",
        "Natural Language :: English",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
    ],
    description="Compiles serverless modules definitions into AWS CloudFormation templates and deploys them",
    entry_points={
        "console_scripts": [
            "modulex=modulex.cli:main",
        ]
    },
    install_requires=requirements,
    extras_require={"dev": test_requirements},
    license="MPL-2.0",
    long_description=readme,
    long_description_content_type="text/x-rst",
    include_package_data=True,
    keywords="modulex aws cloudformation iac lambda serverless",
    name="modulex",
    packages=find_packages(include=["modulex", "modulex.*"]),
    test_suite="tests",
    tests_require=test_requirements,
    url="https://github.com/compose-x/modulex",
    version="0.1.0",
    zip_safe=False,
)
