"""
Payment service package initialization.

The billing ledger, payment row repository and payment/refund service.
"""
