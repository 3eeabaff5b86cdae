"""
End-to-end batch pipeline.
"""

from .runner import run_alert_stage, run_classifier_stage, run_pipeline

__all__ = [
    'run_alert_stage',
    'run_classifier_stage',
    'run_pipeline'
]
