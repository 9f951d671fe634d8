"""
Approval service package initialization.
"""
