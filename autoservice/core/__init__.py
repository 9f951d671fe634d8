"""
Core package for shared utilities.

Configuration, structured logging and the shared exception hierarchy used
across the job order engine.
"""
