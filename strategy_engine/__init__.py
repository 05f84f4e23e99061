"""
Strategy Engine

Persistence, lifecycle and execution for automated trading strategies.
"""

__version__ = "1.0.0"
