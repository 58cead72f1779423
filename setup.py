#!/usr/bin/env python3
"""
Legacy setup.py for backward compatibility.
This project uses pyproject.toml for modern packaging.
"""

from setuptools import setup

# Use pyproject.toml for all configuration
if __name__ == "__main__":
    setup()
