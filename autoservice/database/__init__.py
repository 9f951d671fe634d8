"""
Database package initialization.

The package follows a modular structure:
- base: declarative base and mixins
- connection: async engine and session management
- models: ORM models for job orders, payments and approval requests
"""

__all__ = []
