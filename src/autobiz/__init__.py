"""Autonomous business builder: phase progression, review gate and trading loop."""

__version__ = "0.1.0"
