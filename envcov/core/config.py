'''
Configuration management for envcov.

Configuration is layered:

1. Defaults built into the dataclasses below
2. An optional JSON file named by the ENVCOV_CONFIG_FILE environment variable
3. Environment variables of the form ENVCOV_<SECTION>_<OPTION>
4. Runtime modifications through set_config

The numerical section holds the optimizer defaults used by the estimation
engine (method, iteration and evaluation caps, tolerances, the penalty
returned for infeasible parameter points and the finite-difference step used
for the Hessian). The logging section controls the package logger.
'''

import os
import json
import logging
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, Optional

from .exceptions import ConfigurationError
from .types import ConfigDict, LogLevel

logger = logging.getLogger("envcov.core.config")

CONFIG_ENV_PREFIX = "ENVCOV_"
CONFIG_FILE_ENV = "ENVCOV_CONFIG_FILE"

_OPTIMIZATION_METHODS = ("L-BFGS-B", "BFGS")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class NumericalConfig:
    """
    Numerical settings for the estimation engine.

    Attributes:
        optimization_method: scipy.optimize.minimize method (L-BFGS-B or BFGS)
        max_iterations: Iteration cap for the optimizer
        max_function_evals: Function-evaluation cap (L-BFGS-B only)
        gradient_tol: Gradient-norm convergence tolerance
        function_tol: Relative objective-improvement tolerance (L-BFGS-B only)
        infeasible_penalty: Objective value returned for infeasible points
        hessian_step: Step size for differencing the exact gradient
        initial_std_dev: Standard deviation used for default starting values
    """
    optimization_method: str = "L-BFGS-B"
    max_iterations: int = 2000
    max_function_evals: int = 5000
    gradient_tol: float = 1e-6
    function_tol: float = 1e-12
    infeasible_penalty: float = 1e10
    hessian_step: float = 1e-5
    initial_std_dev: float = 0.1


@dataclass
class LoggingConfig:
    """
    Logging settings for the package logger.

    Attributes:
        log_level: Level of the ``envcov`` logger
        log_format: Format string for log messages
        log_date_format: Format string for log message timestamps
        console_logging: Whether to attach a stream handler
    """
    log_level: LogLevel = "WARNING"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_date_format: str = "%Y-%m-%d %H:%M:%S"
    console_logging: bool = True


@dataclass
class EnvCovConfig:
    """Complete configuration, one attribute per section."""
    numerical: NumericalConfig
    logging: LoggingConfig

    @classmethod
    def defaults(cls) -> "EnvCovConfig":
        return cls(numerical=NumericalConfig(), logging=LoggingConfig())


def _coerce(current_value: Any, value: Any) -> Any:
    """Convert ``value`` to the type of ``current_value``."""
    value_type = type(current_value)
    if value_type is bool and isinstance(value, str):
        return value.lower() in ('true', 'yes', '1', 'y')
    if value_type is not type(value):
        return value_type(value)
    return value


def _check_constraint(section: str, option: str, value: Any) -> None:
    """Raise ConfigurationError if ``value`` is not valid for the option."""
    if option == "optimization_method" and value not in _OPTIMIZATION_METHODS:
        raise ConfigurationError(
            f"Invalid optimization_method: {value}",
            section=section,
            option=option,
            details=f"Supported methods: {', '.join(_OPTIMIZATION_METHODS)}"
        )
    if option in ("max_iterations", "max_function_evals") and value <= 0:
        raise ConfigurationError(f"{option} must be positive, got {value}",
                                 section=section, option=option)
    if option in ("gradient_tol", "function_tol", "hessian_step") and not 0 < value < 1:
        raise ConfigurationError(f"{option} must be between 0 and 1, got {value}",
                                 section=section, option=option)
    if option in ("infeasible_penalty", "initial_std_dev") and value <= 0:
        raise ConfigurationError(f"{option} must be positive, got {value}",
                                 section=section, option=option)
    if option == "log_level" and value not in _LOG_LEVELS:
        raise ConfigurationError(f"Invalid log level: {value}",
                                 section=section, option=option)


class ConfigManager:
    """
    Configuration manager for envcov.

    Holds the current configuration and applies file and environment
    overrides on first use.

    Attributes:
        _config: The current configuration object
        _initialized: Whether overrides have been applied
        _modified_keys: Options changed at runtime
    """

    def __init__(self):
        self._config = EnvCovConfig.defaults()
        self._initialized = False
        self._modified_keys = set()

    def initialize(self) -> None:
        """Apply the configuration file and environment overrides, then set up logging."""
        if self._initialized:
            return

        self._load_config_file()
        self._apply_env_overrides()
        self._setup_logging()

        self._initialized = True
        logger.debug("Configuration manager initialized")

    def _load_config_file(self) -> None:
        config_path = os.environ.get(CONFIG_FILE_ENV)
        if not config_path:
            return

        config_file = Path(config_path)
        if not config_file.exists():
            logger.warning(f"Configuration file {config_file} does not exist")
            return

        try:
            with open(config_file, 'r') as f:
                user_config = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load configuration file {config_file}: {e}")
            return

        self._update_from_dict(user_config)
        logger.debug(f"Loaded configuration from {config_file}")

    def _apply_env_overrides(self) -> None:
        """
        Apply ENVCOV_<SECTION>_<OPTION> environment variables.

        Invalid values are logged and ignored so that a bad environment
        cannot prevent the package from being used.
        """
        for env_var, value in os.environ.items():
            if not env_var.startswith(CONFIG_ENV_PREFIX) or env_var == CONFIG_FILE_ENV:
                continue

            key = env_var[len(CONFIG_ENV_PREFIX):]
            parts = key.lower().split('_', 1)
            if len(parts) != 2:
                continue

            section, option = parts
            section_obj = getattr(self._config, section, None)
            if section_obj is None or not hasattr(section_obj, option):
                continue

            try:
                typed_value = _coerce(getattr(section_obj, option), value)
                if option == "log_level":
                    typed_value = typed_value.upper()
                _check_constraint(section, option, typed_value)
            except (ValueError, ConfigurationError) as e:
                logger.warning(f"Failed to apply environment override {env_var}: {e}")
                continue

            setattr(section_obj, option, typed_value)
            logger.debug(f"Applied environment override: {env_var}={value}")

    def _setup_logging(self) -> None:
        """Configure the ``envcov`` logger from the logging section."""
        package_logger = logging.getLogger("envcov")

        for handler in package_logger.handlers[:]:
            package_logger.removeHandler(handler)

        package_logger.setLevel(getattr(logging, self._config.logging.log_level))

        if self._config.logging.console_logging:
            formatter = logging.Formatter(
                fmt=self._config.logging.log_format,
                datefmt=self._config.logging.log_date_format
            )
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(formatter)
            package_logger.addHandler(console_handler)

    def _update_from_dict(self, config_dict: ConfigDict) -> None:
        for section_name, section_dict in config_dict.items():
            if not hasattr(self._config, section_name):
                logger.warning(f"Unknown configuration section: {section_name}")
                continue

            for option_name, option_value in section_dict.items():
                try:
                    self.set(section_name, option_name, option_value)
                except ConfigurationError as e:
                    logger.warning(f"Ignoring configuration value {section_name}.{option_name}: {e.message}")

    def get_section(self, section: str) -> Any:
        """
        Get a configuration section object.

        Raises:
            ConfigurationError: If the section is not found
        """
        if not hasattr(self._config, section):
            raise ConfigurationError(f"Unknown configuration section: {section}", section=section)
        return getattr(self._config, section)

    def get(self, section: str, option: str, default: Any = None) -> Any:
        """
        Get a configuration value.

        Args:
            section: The configuration section
            option: The configuration option
            default: Default value if the option is not found

        Returns:
            The configuration value, or the default if not found
        """
        section_obj = getattr(self._config, section, None)
        if section_obj is None:
            return default
        return getattr(section_obj, option, default)

    def set(self, section: str, option: str, value: Any) -> None:
        """
        Set a configuration value.

        Args:
            section: The configuration section
            option: The configuration option
            value: The value to set

        Raises:
            ConfigurationError: If the section or option is not found, or the
                value is invalid for the option
        """
        section_obj = self.get_section(section)

        if not hasattr(section_obj, option):
            raise ConfigurationError(
                f"Unknown configuration option: {section}.{option}",
                section=section,
                option=option
            )

        try:
            typed_value = _coerce(getattr(section_obj, option), value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Failed to set configuration option: {section}.{option}",
                section=section,
                option=option,
                details=str(e)
            ) from e

        _check_constraint(section, option, typed_value)

        setattr(section_obj, option, typed_value)
        self._modified_keys.add(f"{section}.{option}")
        logger.debug(f"Set configuration option: {section}.{option}={typed_value}")

        if section == "logging" and self._initialized:
            self._setup_logging()

    def reset(self, section: Optional[str] = None, option: Optional[str] = None) -> None:
        """
        Reset configuration to default values.

        Args:
            section: The configuration section to reset, or None to reset all
            option: The configuration option to reset, or None to reset the entire section

        Raises:
            ConfigurationError: If the section or option is not found
        """
        defaults = EnvCovConfig.defaults()

        if section is None:
            self._config = defaults
            self._modified_keys.clear()
            logger.debug("Reset all configuration to defaults")
            return

        section_obj = self.get_section(section)
        default_section = getattr(defaults, section)

        if option is None:
            setattr(self._config, section, default_section)
            self._modified_keys = {k for k in self._modified_keys if not k.startswith(f"{section}.")}
            return

        if not hasattr(section_obj, option):
            raise ConfigurationError(
                f"Unknown configuration option: {section}.{option}",
                section=section,
                option=option
            )
        setattr(section_obj, option, getattr(default_section, option))
        self._modified_keys.discard(f"{section}.{option}")

    def to_dict(self) -> Dict[str, Any]:
        """Return the configuration as a nested dictionary."""
        return asdict(self._config)


# Module-level singleton
_config_manager = ConfigManager()


def initialize_config() -> None:
    """Apply file and environment overrides to the configuration."""
    _config_manager.initialize()


def get_config_manager() -> ConfigManager:
    """Get the (initialized) configuration manager instance."""
    if not _config_manager._initialized:
        initialize_config()
    return _config_manager


def get_config(section: str, option: str, default: Any = None) -> Any:
    """
    Get a configuration value.

    Args:
        section: The configuration section
        option: The configuration option
        default: Default value if the option is not found

    Returns:
        The configuration value, or the default if not found
    """
    return get_config_manager().get(section, option, default)


def set_config(section: str, option: str, value: Any) -> None:
    """
    Set a configuration value.

    Raises:
        ConfigurationError: If the section or option is not found or the value is invalid
    """
    get_config_manager().set(section, option, value)


def reset_config(section: Optional[str] = None, option: Optional[str] = None) -> None:
    """Reset configuration to default values."""
    get_config_manager().reset(section, option)


def get_numerical_config() -> NumericalConfig:
    """Get the numerical configuration section."""
    return get_config_manager().get_section("numerical")


def get_logging_config() -> LoggingConfig:
    """Get the logging configuration section."""
    return get_config_manager().get_section("logging")
