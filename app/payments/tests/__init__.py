"""
Tests for payments app.

This package contains test modules for:
- test_policy.py: Refund tiers, decision order and policy loading
- test_models.py: Payment, refund, webhook event, cancellation and settlement models
- test_payment_ledger.py: Ledger transitions driven by the gateway
- test_cancellation_service.py: Automatic and administrator cancellation paths
- test_tasks.py: Reconciliation sweeps and refund retries
- test_views.py: API endpoint tests

Usage:
    pytest payments/tests/
    pytest payments/tests/test_cancellation_service.py
"""
