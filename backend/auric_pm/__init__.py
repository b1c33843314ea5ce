"""
Auric PM
========

Ticket scheduling and dependency-aware dispatch for coding agents.
"""

__version__ = "1.0.0"
