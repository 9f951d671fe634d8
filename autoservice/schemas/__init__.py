"""
Schemas package initialization.

Pydantic models for job orders, payments and approval requests.
"""
