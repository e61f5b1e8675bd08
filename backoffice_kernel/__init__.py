"""
Back-office Kernel

Shared infrastructure for the back-office application:
- Declarative ORM base with UUID keys and audit metadata
- Engine/session management with commit-or-rollback scopes
- Injectable clock
- Structured JSON logging
- Typed exception hierarchy
"""

__version__ = "0.1.0"
