"""
envcov test suite

Tests for the covariance estimation engine, its uncertainty report, the
demography front end and the supporting core and utility modules.
"""

import os

import pytest

# Define custom pytest markers for test categorization
pytest.mark.slow = pytest.mark.slow

# Test configuration based on environment
SKIP_SLOW_TESTS = os.environ.get("SKIP_SLOW_TESTS", "false").lower() == "true"
