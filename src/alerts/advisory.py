"""
Generative Advisory Service Boundary.

An optional external service may answer "does this patient need ICU?",
return a numeric risk, or write a short clinical summary. The heuristic and
classifier paths never depend on it: SafeAdvisor turns any failure or
malformed answer into ``None`` so callers keep their heuristic values.
"""

import logging
from typing import Dict, Optional

import numpy as np

logger = logging.getLogger(__name__)


class AdvisoryService:
    """
    Interface of a generative advisory collaborator.
    """

    def generate_bool(self, prompt: str) -> bool:
        raise NotImplementedError

    def generate_score(self, prompt: str) -> float:
        raise NotImplementedError

    def generate_summary(self, prompt: str) -> str:
        raise NotImplementedError


class NullAdvisoryService(AdvisoryService):
    """No service configured: every answer is absent."""

    def generate_bool(self, prompt: str) -> Optional[bool]:
        return None

    def generate_score(self, prompt: str) -> Optional[float]:
        return None

    def generate_summary(self, prompt: str) -> Optional[str]:
        return None


def build_prompt(task: str, note: str, labs: Optional[Dict[str, Optional[float]]]) -> str:
    """Prompt text combining the patient note with its lab values."""
    labs = labs or {}
    lab_text = ", ".join(
        f"{name}={'NULL' if value is None else value}" for name, value in labs.items()
    )
    return f"{task} Notes: {note}. Labs: {lab_text}"


class SafeAdvisor:
    """
    Wraps an AdvisoryService so its failures never reach the pipeline.
    """

    def __init__(self, service: Optional[AdvisoryService] = None):
        self.service = service or NullAdvisoryService()
        self.failures = 0

    def _call(self, method: str, prompt: str):
        try:
            return getattr(self.service, method)(prompt)
        except Exception as exc:
            self.failures += 1
            logger.warning("Advisory %s failed (%s); using heuristic values", method, exc)
            return None

    def needs_icu(self, note: str, labs: Optional[Dict]) -> Optional[bool]:
        answer = self._call(
            "generate_bool",
            build_prompt(
                "Based on these notes and labs, does this patient need ICU? Answer true or false.",
                note, labs
            ),
        )
        return answer if isinstance(answer, (bool, np.bool_)) else None

    def risk_score(self, note: str, labs: Optional[Dict]) -> Optional[float]:
        answer = self._call(
            "generate_score",
            build_prompt("Predict ICU-risk score 0.0-1.0.", note, labs),
        )
        try:
            value = float(answer)
        except (TypeError, ValueError):
            return None
        if np.isnan(value):
            return None
        return float(np.clip(value, 0.0, 1.0))

    def summary(self, note: str, labs: Optional[Dict]) -> Optional[str]:
        answer = self._call(
            "generate_summary",
            build_prompt("Summarize patient notes and recommend next steps.", note, labs),
        )
        if not isinstance(answer, str) or not answer.strip():
            return None
        return answer.strip()
