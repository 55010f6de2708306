#!/usr/bin/env python3
"""
Spyglass - loaded-file model for a .NET and PE inspection tool
Setup configuration for backward compatibility
"""

from setuptools import setup

# Configuration is in pyproject.toml
# This file exists for backward compatibility with older pip versions
setup()
