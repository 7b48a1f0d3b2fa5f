# tests/test_config.py
"""
Tests for the layered configuration.
"""

import json

import numpy as np
import pytest

from envcov.core.config import (
    ConfigManager, get_config, get_numerical_config, reset_config, set_config
)
from envcov.core.exceptions import ConfigurationError
from envcov.models.covariance.likelihood import LogLikelihoodEvaluator


class TestDefaults:

    def test_numerical_defaults(self, default_config):
        config = get_numerical_config()
        assert config.optimization_method == "L-BFGS-B"
        assert config.max_iterations == 2000
        assert config.infeasible_penalty == 1e10
        assert config.initial_std_dev == 0.1

    def test_get_with_default(self, default_config):
        assert get_config("numerical", "gradient_tol") == 1e-6
        assert get_config("numerical", "missing", "fallback") == "fallback"
        assert get_config("missing", "option", 3) == 3


class TestSetConfig:

    def test_set_and_reset(self, default_config):
        set_config("numerical", "max_iterations", 50)
        assert get_numerical_config().max_iterations == 50

        reset_config("numerical", "max_iterations")
        assert get_numerical_config().max_iterations == 2000

    def test_values_are_coerced(self, default_config):
        set_config("numerical", "max_iterations", "75")
        assert get_numerical_config().max_iterations == 75

    @pytest.mark.parametrize("option, value", [
        ("optimization_method", "Nelder-Mead"),
        ("max_iterations", 0),
        ("gradient_tol", 2.0),
        ("infeasible_penalty", -1.0),
        ("initial_std_dev", 0.0),
        ("max_function_evals", "many"),
    ])
    def test_invalid_values(self, default_config, option, value):
        before = get_config("numerical", option)
        with pytest.raises(ConfigurationError):
            set_config("numerical", option, value)
        assert get_config("numerical", option) == before

    def test_unknown_section_and_option(self, default_config):
        with pytest.raises(ConfigurationError):
            set_config("plotting", "style", "dark")
        with pytest.raises(ConfigurationError):
            set_config("numerical", "step_size", 0.1)

    def test_invalid_log_level(self, default_config):
        with pytest.raises(ConfigurationError):
            set_config("logging", "log_level", "VERBOSE")

    def test_penalty_reaches_evaluator(self, default_config, three_year_residuals):
        set_config("numerical", "infeasible_penalty", 1e6)
        evaluator = LogLikelihoodEvaluator(three_year_residuals,
                                           np.zeros_like(three_year_residuals))
        assert evaluator.infeasible_penalty == 1e6

        explicit = LogLikelihoodEvaluator(three_year_residuals,
                                          np.zeros_like(three_year_residuals),
                                          infeasible_penalty=5.0)
        assert explicit.infeasible_penalty == 5.0


class TestOverrides:
    """Environment and file layers, applied by a fresh manager."""

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("ENVCOV_NUMERICAL_MAX_ITERATIONS", "123")
        monkeypatch.setenv("ENVCOV_NUMERICAL_OPTIMIZATION_METHOD", "BFGS")
        manager = ConfigManager()
        manager.initialize()

        assert manager.get("numerical", "max_iterations") == 123
        assert manager.get("numerical", "optimization_method") == "BFGS"

    def test_invalid_environment_value_is_ignored(self, monkeypatch):
        monkeypatch.setenv("ENVCOV_NUMERICAL_GRADIENT_TOL", "not-a-number")
        monkeypatch.setenv("ENVCOV_NUMERICAL_MAX_ITERATIONS", "-5")
        manager = ConfigManager()
        manager.initialize()

        assert manager.get("numerical", "gradient_tol") == 1e-6
        assert manager.get("numerical", "max_iterations") == 2000

    def test_config_file(self, monkeypatch, tmp_path):
        path = tmp_path / "envcov.json"
        path.write_text(json.dumps({
            "numerical": {"hessian_step": 1e-4, "max_iterations": 0},
            "plotting": {"style": "dark"},
        }))
        monkeypatch.setenv("ENVCOV_CONFIG_FILE", str(path))
        manager = ConfigManager()
        manager.initialize()

        assert manager.get("numerical", "hessian_step") == 1e-4
        assert manager.get("numerical", "max_iterations") == 2000

    def test_environment_wins_over_file(self, monkeypatch, tmp_path):
        path = tmp_path / "envcov.json"
        path.write_text(json.dumps({"numerical": {"max_iterations": 10}}))
        monkeypatch.setenv("ENVCOV_CONFIG_FILE", str(path))
        monkeypatch.setenv("ENVCOV_NUMERICAL_MAX_ITERATIONS", "20")
        manager = ConfigManager()
        manager.initialize()

        assert manager.get("numerical", "max_iterations") == 20

    def test_missing_file_keeps_defaults(self, monkeypatch, tmp_path):
        monkeypatch.setenv("ENVCOV_CONFIG_FILE", str(tmp_path / "absent.json"))
        manager = ConfigManager()
        manager.initialize()
        assert manager.to_dict()["numerical"]["max_iterations"] == 2000
