"""
AutoService job order engine.

Lifecycle, billing and approval workflows for vehicle-service job orders,
served through a FastAPI application.
"""
