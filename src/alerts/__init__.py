"""
ICU Admission Alert System using note-embedding neighbors.

This module selects query patients, scores them from the lab values of their
most similar patients, and persists a ranked alert set.
"""

from .advisory import AdvisoryService, NullAdvisoryService, SafeAdvisor
from .alert_generator import IcuAlert, IcuAlertGenerator, rare_pattern_mask, select_query_patients

__all__ = [
    'AdvisoryService',
    'NullAdvisoryService',
    'SafeAdvisor',
    'IcuAlert',
    'IcuAlertGenerator',
    'rare_pattern_mask',
    'select_query_patients'
]
