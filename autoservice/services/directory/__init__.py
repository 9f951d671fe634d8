"""
Directory service package initialization.
"""
