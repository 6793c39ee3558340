#!/usr/bin/env python3
"""
Setup script for Chess UCI Driver.

A library for driving UCI chess engines over standard input/output and
running timed games against them with a multi-stage chess clock.
"""

from pathlib import Path
from setuptools import setup, find_packages

# Read the contents of README file
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text(encoding='utf-8') if (this_directory / "README.md").exists() else ""

# Read version from package
version_file = this_directory / "chess_uci_driver" / "__init__.py"
version = "0.1.0"  # Default version
if version_file.exists():
    with open(version_file, encoding='utf-8') as f:
        for line in f:
            if line.startswith('__version__'):
                version = line.split('=')[1].strip().strip('"').strip("'")
                break

setup(
    name="chess-uci-driver",
    version=version,
    description="Drive UCI chess engines and run timed games against them",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Chess UCI Driver Team",
    author_email="chess-uci-driver@example.com",

    # Package discovery
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.8",

    # Dependencies
    install_requires=[
        "python-chess[engine]>=1.999",
        "rich>=13.0.0",
    ],

    # Optional dependencies
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "mypy>=1.0.0",
            "black>=23.0.0",
            "flake8>=6.0.0",
            "isort>=5.0.0",
        ],
    },

    # Classifiers
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Topic :: Games/Entertainment :: Board Games",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Operating System :: OS Independent",
        "Framework :: AsyncIO",
    ],

    # Keywords
    keywords=[
        "chess",
        "uci",
        "engine",
        "stockfish",
        "chess-clock",
        "polyglot",
        "opening-book",
    ],

    zip_safe=False,

    # Test configuration
    test_suite="tests",
)
