"""Tests for credit pricing: per-quality unit costs from settings."""
from unittest.mock import patch

import pytest


def test_unit_cost_per_quality_class():
    with patch("thumbgen.services.credits.pricing.settings") as mock_settings:
        mock_settings.resolution_credits_1k = 1
        mock_settings.resolution_credits_2k = 3
        mock_settings.resolution_credits_4k = 6
        from thumbgen.services.credits.pricing import QualityClass, get_unit_cost

        assert get_unit_cost(QualityClass.K1) == 1
        assert get_unit_cost("2K") == 3
        assert get_unit_cost(QualityClass.K4) == 6


def test_unknown_quality_class_raises():
    from thumbgen.services.credits.pricing import get_unit_cost

    with pytest.raises(ValueError):
        get_unit_cost("8K")


def test_edit_cost_and_max_variations():
    with patch("thumbgen.services.credits.pricing.settings") as mock_settings:
        mock_settings.edit_credit_cost = 2
        mock_settings.max_variations = 4
        from thumbgen.services.credits.pricing import get_edit_cost, get_max_variations

        assert get_edit_cost() == 2
        assert get_max_variations() == 4
