"""Multi-chain wallet portfolio tracking with cached market prices."""

__version__ = "0.1.0"
