"""
Cache package initialization.

Redis connection management and cache key helpers shared by the services
that keep short-lived lookups out of the database.
"""
