"""
Job order service package initialization.

Status normalization, the roadmap state machine, eligibility gates, the
aggregate repository and the lifecycle service.
"""
