# =============================================================================
# test_scoring.py — Unit tests for the lead score and write-time derived fields
#
# These tests verify that:
#   1. The score is deterministic and always within 0–100
#   2. Each band switches exactly at its threshold
#   3. Missing and zero inputs land in the "none" band
#   4. Weighted value, approval flag and profitability round the same way
#
# RUN TESTS:
#   pip install -e ".[test]" && pytest tests/ -v
# =============================================================================

import sys
import os
import itertools
import pytest

# Add the api/ directory to the Python path so we can import our modules
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "api"))

from models import EntityDraft, ScoreRequest
from scoring import (
    calculate_score,
    employees_band,
    mission_profitability,
    requires_approval,
    revenue_band,
    round_half_up,
    score_breakdown,
    status_band,
    weighted_value,
)


# ─── Test: Score Scenarios ────────────────────────────────────────────────────

class TestScoreScenarios:

    def test_top_of_every_band_scores_100(self):
        """100M revenue, 100 employees, client: 40 + 30 + 30."""
        assert calculate_score({"revenue": 100_000_000, "employees": 100, "status": "client"}) == 100

    def test_nothing_known_prospect_scores_25(self):
        """No revenue, no headcount, prospect: 5 + 5 + 15."""
        assert calculate_score({"revenue": None, "employees": None, "status": "prospect"}) == 25

    def test_mid_band_client_scores_85(self):
        breakdown = score_breakdown({"revenue": 75_000_000, "employees": 60, "status": "client"})
        assert breakdown.revenue_band == 30
        assert breakdown.employees_band == 25
        assert breakdown.status_band == 30
        assert breakdown.score == 85

    def test_accepts_models_and_dicts_alike(self):
        draft = EntityDraft(company_name="Sahel Mines", revenue=12_000_000, employees=15, status="client")
        request = ScoreRequest(revenue=12_000_000, employees=15, status="client")
        as_dict = {"revenue": 12_000_000, "employees": 15, "status": "client"}
        assert calculate_score(draft) == calculate_score(request) == calculate_score(as_dict) == 65

    def test_score_is_deterministic(self):
        entity = {"revenue": 42_000_000, "employees": 33, "status": "prospect"}
        assert calculate_score(entity) == calculate_score(entity)

    def test_score_always_within_bounds(self):
        """Every combination of band edges stays inside 0–100."""
        revenues = [None, 0, 1, 9_999_999, 10_000_000, 50_000_000, 100_000_000, 10**12]
        headcounts = [None, 0, 1, 9, 10, 20, 50, 100, 10**6]
        for revenue, employees, status in itertools.product(revenues, headcounts, ["client", "prospect"]):
            score = calculate_score({"revenue": revenue, "employees": employees, "status": status})
            assert 0 <= score <= 100, f"score {score} out of range for {revenue}, {employees}, {status}"


# ─── Test: Band Edges ─────────────────────────────────────────────────────────

class TestBands:

    @pytest.mark.parametrize("revenue,points", [
        (None, 5),
        (0, 5),
        (1, 10),
        (9_999_999, 10),
        (10_000_000, 20),
        (49_999_999, 20),
        (50_000_000, 30),
        (99_999_999, 30),
        (100_000_000, 40),
    ])
    def test_revenue_band(self, revenue, points):
        assert revenue_band(revenue) == points

    @pytest.mark.parametrize("employees,points", [
        (None, 5),
        (0, 5),
        (9, 10),
        (10, 15),
        (19, 15),
        (20, 20),
        (50, 25),
        (99, 25),
        (100, 30),
    ])
    def test_employees_band(self, employees, points):
        assert employees_band(employees) == points

    def test_status_band(self):
        assert status_band("client") == 30
        assert status_band("prospect") == 15
        assert status_band(None) == 15


# ─── Test: Derived Fields ─────────────────────────────────────────────────────

class TestDerivedFields:

    def test_round_half_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(2.4999) == 2
        assert round_half_up(-2.5) == -2

    def test_weighted_value(self):
        assert weighted_value(1_000_000, 75) == 750_000
        assert weighted_value(5, 50) == 3, "2.5 rounds up"
        assert weighted_value(1_000_000, 0) == 0

    def test_approval_threshold_is_strict(self):
        assert requires_approval(50_000_001) is True
        assert requires_approval(50_000_000) is False

    def test_approval_threshold_override(self):
        assert requires_approval(2_000, threshold=1_000) is True
        assert requires_approval(1_000, threshold=1_000) is False

    def test_profitability(self):
        assert mission_profitability(1_000_000, 800_000) == 20
        assert mission_profitability(100, 150) == -50, "Cost overruns give a negative margin"
        assert mission_profitability(3, 2) == 33

    def test_profitability_without_budget_is_zero(self):
        assert mission_profitability(0, 10_000) == 0
