# mailing/__init__.py
"""
Mail request reconciliation subsystem.

Provides:
- Configuration & endpoints for the fulfillment provider
- Core domain enums & models (MailRequest, status, conditions, orders)
- Services for order building/validation, the fulfillment gateway,
  the deletion guard, the reconciliation engine and its work-queue controller
- An in-memory store implementing the optimistic-concurrency store contract
"""
