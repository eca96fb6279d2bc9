"""
Billing Kernel

Shared foundation for the tanker billing core:
- Typed exception hierarchy with machine-readable codes
- Structured JSON logging with request-scoped context
- SQLAlchemy base classes, engine and session management
- Money/Currency value objects and explicit rounding
- Injectable clock and request-scoped tenant context
"""

__version__ = "0.1.0"
