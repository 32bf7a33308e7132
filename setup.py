# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Setup configuration for the Server Installation Manager
"""

from setuptools import setup, find_packages

setup(
    name="server-installation-manager",
    version="1.0.0",
    description="Revision-tracked update and revert staging for server installations",
    author="Jason Cafarelli",
    package_dir={"": "src"},
    packages=find_packages("src"),
    python_requires=">=3.11",
    install_requires=[
        "pydantic>=2.0.0",
        "httpx>=0.25.0",
        "PyYAML>=6.0",
        "packaging>=23.0",
        "python-gnupg>=0.5.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ]
    },
)
