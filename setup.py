#!/usr/bin/python
# -*- encoding: utf-8 -*-
import ast
import re

from setuptools import find_packages
from setuptools import setup

## The version number is kept in one place only, zotapi/__init__.py
_version_re = re.compile(r"__version__\s+=\s+(.*)")
with open("zotapi/__init__.py", "rb") as f:
    version = str(
        ast.literal_eval(_version_re.search(f.read().decode("utf-8")).group(1))
    )

if __name__ == "__main__":
    test_packages = [
        "pytest",
        "pytest-asyncio",
        "pytest-coverage",
        "coverage",
        "multidict",
        "urllib3",
    ]

    setup(
        name="zotapi",
        version=version,
        description="Test client for the Zotero web API",
        long_description=open("README.md").read(),
        long_description_content_type="text/markdown",
        classifiers=[
            "Development Status :: 3 - Alpha",
            "Intended Audience :: Developers",
            "License :: OSI Approved :: GNU Affero General Public License v3",
            "Operating System :: OS Independent",
            "Programming Language :: Python",
            "Programming Language :: Python :: 3",
            "Topic :: Software Development :: Testing",
            "Topic :: Software Development :: Libraries " ":: Python Modules",
        ],
        keywords="zotero api test",
        python_requires=">=3.10",
        license="AGPL",
        packages=find_packages(exclude=["tests", "tests.*"]),
        include_package_data=True,
        zip_safe=False,
        install_requires=[
            "lxml",
            "requests",
            "aiohttp",
            "pyyaml",
            "typing_extensions",
        ],
        extras_require={
            "test": test_packages,
        },
    )
