#!/usr/bin/env python
"""
Setup script for ProcLink.

This file exists for backwards compatibility with older pip versions
and editable installs. The main configuration is in pyproject.toml.
"""

from setuptools import setup

if __name__ == "__main__":
    setup()
