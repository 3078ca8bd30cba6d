"""
Business-rule validation for cached record collections.
"""

from .validator import (
    RuleSeverity,
    ValidationRule,
    ConsistencyReport,
    ConsistencyValidator,
    status_rule,
    excluded_value_rule,
    flag_rule,
    denylist_rule
)

__all__ = [
    'RuleSeverity',
    'ValidationRule',
    'ConsistencyReport',
    'ConsistencyValidator',
    'status_rule',
    'excluded_value_rule',
    'flag_rule',
    'denylist_rule'
]
