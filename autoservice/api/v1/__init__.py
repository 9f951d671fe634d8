"""
API v1 package initialization.

This module collects the v1 routers of the job order API.
"""

from autoservice.api.v1.approvals import router as approvals_router
from autoservice.api.v1.job_orders import router as job_orders_router
from autoservice.api.v1.payments import router as payments_router

__all__ = ["approvals_router", "job_orders_router", "payments_router"]
