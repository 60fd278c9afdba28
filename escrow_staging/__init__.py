"""
Escrow deposit staging pipeline.

Stages full (RDE) and thin (BRDA) point-in-time escrow deposits for every
TLD, advancing a per-TLD cursor exactly once per completed deposit.
"""

__version__ = "0.1.0"
