"""Scheduling, tracking and reporting of policy-driven cluster upgrades."""

__version__ = "0.1.0"