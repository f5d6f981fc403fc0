#!/usr/bin/env python3
"""
Setup configuration for the SCR Connectivity package
"""

from setuptools import setup, find_packages
import os

# Read README for long description
def read_readme():
    if os.path.exists("README.md"):
        with open("README.md", "r", encoding="utf-8") as f:
            return f.read()
    return "Spatial capture-recapture with ecological distance and landscape connectivity surfaces"

# Read requirements
def read_requirements():
    requirements = []
    if os.path.exists("requirements.txt"):
        with open("requirements.txt", "r", encoding="utf-8") as f:
            requirements = [
                line.strip()
                for line in f
                if line.strip() and not line.startswith("#")
            ]
    return requirements

setup(
    name="scr-connectivity",
    version="0.1.0",
    description="Spatial capture-recapture with ecological distance and landscape connectivity surfaces",
    long_description=read_readme(),
    long_description_content_type="text/markdown",
    author="Guillaume Atencia",

    # Package discovery
    packages=find_packages(where="src"),
    package_dir={"": "src"},

    # Dependencies
    install_requires=read_requirements(),

    # Optional dependencies
    extras_require={
        "dev": [
            "pytest>=7.3.0",
            "pytest-cov>=4.1.0",
        ],
    },

    # Entry points for command-line scripts
    entry_points={
        "console_scripts": [
            "scr-connectivity=scr_connectivity.cli:main",
        ],
    },

    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: GIS",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],

    python_requires=">=3.9",

    keywords=[
        "capture-recapture", "spatial capture-recapture", "ecological distance",
        "landscape connectivity", "least-cost path", "ecology"
    ],
)
