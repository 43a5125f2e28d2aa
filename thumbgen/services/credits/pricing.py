"""
Credit pricing: typed wrappers over thumbgen.core.config for per-quality unit costs.
"""
from __future__ import annotations

from enum import Enum

from thumbgen.core.config import settings


class QualityClass(str, Enum):
    """Output resolution class; each has its own unit cost."""

    K1 = "1K"
    K2 = "2K"
    K4 = "4K"


def get_resolution_credits() -> dict[QualityClass, int]:
    return {
        QualityClass.K1: settings.resolution_credits_1k,
        QualityClass.K2: settings.resolution_credits_2k,
        QualityClass.K4: settings.resolution_credits_4k,
    }


def get_unit_cost(quality_class: QualityClass | str) -> int:
    """Credits charged for one generated output of the given quality class."""
    return get_resolution_credits()[QualityClass(quality_class)]


def get_edit_cost() -> int:
    return settings.edit_credit_cost


def get_max_variations() -> int:
    return settings.max_variations
