"""
Firestock Kernel - Shift Inventory Check core

A collaborative, time-bounded verification session for fire apparatus with:
- One active check per apparatus
- Immutable, uniquely keyed verification records
- Compare-and-swap lifecycle transitions
- In-memory compartment locks with take-over
- Best-effort event fan-out per apparatus
"""

__version__ = "0.1.0"
