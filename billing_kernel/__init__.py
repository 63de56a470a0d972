"""
Billing Kernel - shared foundation for the agency billing engine.

Provides:
- Structured JSON logging with request-scoped context
- Typed exception hierarchy with machine-readable codes
- Currency normalization and Decimal coercion helpers
"""

__version__ = "0.1.0"
