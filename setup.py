"""Setuptools build hooks for peach."""

from __future__ import annotations

from setuptools import setup

# Project metadata lives in pyproject.toml. The package is pure Python, so
# the default command classes produce a ``py3-none-any`` wheel.
setup()
