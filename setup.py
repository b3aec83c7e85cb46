#!/usr/bin/env python3

from setuptools import setup
import os

# Read long description safely
long_description = "RouterOS address-list scripts from the Spamhaus DROP lists"
if os.path.exists("README.md"):
    with open("README.md", "r", encoding="utf-8") as f:
        long_description = f.read()

setup(
    name="routeros-drop-generator",
    version="1.0.0",
    description="RouterOS address-list scripts from the Spamhaus DROP lists",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="RouterOS DROP List Generator",
    py_modules=["generate_droplist"],
    python_requires=">=3.8",
    install_requires=[
        "requests>=2.25.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "routeros-drop=generate_droplist:main",
        ],
    },
    classifiers=[
        "Development Status :: 5 - Production/Stable",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: System :: Networking :: Firewalls",
        "Topic :: Security",
    ],
)
