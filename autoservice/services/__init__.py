"""
Services package initialization.

This module makes the services directory a Python package; each
subpackage owns one part of the job order engine.
"""
