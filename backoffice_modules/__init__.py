"""
Back-office Modules.

Business domains that the recurring schedule engine creates records in.
Each module contains:
- Domain models (frozen request/record dataclasses)
- ORM models (persistence)
- A service that owns record creation

Modules:
- Jobs: Work orders scheduled for a customer
- Invoicing: Customer invoices and their line items
"""
