"""Packaging for the B.Keeper command line tool."""

from setuptools import setup, find_packages

setup(
    name="bkeeper-cli",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "click>=8.1.0",
        "pydantic>=2.0.0",
        "rich>=13.0.0",
        "PyYAML>=6.0",
        "anthropic>=0.40.0",
        "supabase>=2.0.0",
        "httpx>=0.24.0",
    ],
    extras_require={
        "test": ["pytest>=7.0.0"],
    },
    entry_points={
        "console_scripts": [
            "bkeeper=bkeeper.cli:cli",
        ],
    },
    python_requires=">=3.9",
)
