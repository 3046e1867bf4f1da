"""
Configuration service for loading and validating tool settings.
"""
import os
import configparser
from typing import Optional, Dict, Any
import logging

from ..models.config import Config, ConfigValidationError, ConfigValidationResult
from ..security.toolkit import parse_version


class ConfigService:
    """Service for loading and validating tool configuration."""

    CONFIG_MAPPING = {
        # Certificate settings
        "certificate.dir": ("cert_dir", str),
        "cert_dir": ("cert_dir", str),
        "certificate.ca_name": ("ca_name", str),
        "ca_name": ("ca_name", str),
        "certificate.node_name": ("node_name", str),
        "node_name": ("node_name", str),
        "certificate.ca_days": ("ca_cert_days", int),
        "ca_cert_days": ("ca_cert_days", int),
        "certificate.node_days": ("node_cert_days", int),
        "node_cert_days": ("node_cert_days", int),

        # Vault settings
        "vault.path": ("privatekeys_path", str),
        "privatekeys_path": ("privatekeys_path", str),
        "vault.retain_node_key_file": ("retain_node_key_file", bool),
        "retain_node_key_file": ("retain_node_key_file", bool),
        "vault.kdf_iterations": ("kdf_iterations", int),
        "kdf_iterations": ("kdf_iterations", int),

        # Toolkit settings
        "toolkit.openssl_path": ("openssl_path", str),
        "openssl_path": ("openssl_path", str),
        "toolkit.min_version": ("min_openssl_version", str),
        "min_openssl_version": ("min_openssl_version", str),

        # Application settings
        "app.log_level": ("log_level", str),
        "log_level": ("log_level", str),
        "app.log_file_path": ("log_file_path", str),
        "log_file_path": ("log_file_path", str),
    }

    def __init__(self, config_path: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        self._config = None
        if config_path:
            self._config = self.load_config(config_path)

    def get_config(self) -> Config:
        """
        Get the loaded configuration.

        Returns:
            Config object

        Raises:
            ValueError: If no configuration has been loaded
        """
        if self._config is None:
            raise ValueError("No configuration loaded. Call load_config() first.")
        return self._config

    def load_config(self, config_path: str) -> Config:
        """
        Load configuration from a property file.

        Args:
            config_path: Path to the configuration file

        Returns:
            Config object with loaded settings

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config file is invalid or has validation errors
        """
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        config_data = self._load_config_file(config_path)
        config = self._create_config_from_data(config_data)

        validation_result = self.validate_config(config)

        if validation_result.has_errors():
            error_summary = validation_result.get_error_summary()
            raise ValueError(f"Configuration validation failed:\n{error_summary}")

        if validation_result.has_warnings():
            warning_summary = validation_result.get_error_summary()
            self.logger.warning(f"Configuration warnings:\n{warning_summary}")

        self._config = config
        return config

    def _load_config_file(self, config_path: str) -> Dict[str, Any]:
        """Load configuration data from file."""
        config_parser = configparser.ConfigParser(interpolation=None)

        try:
            config_parser.read(config_path)
        except configparser.Error as e:
            raise ValueError(f"Failed to parse configuration file: {e}")

        # Flatten to section.key
        config_data = {}
        for section in config_parser.sections():
            for key, value in config_parser.items(section):
                config_data[f"{section}.{key}"] = value

        for key, value in config_parser.defaults().items():
            if key not in config_data:
                config_data[key] = value

        return config_data

    def _create_config_from_data(self, config_data: Dict[str, Any]) -> Config:
        """Create Config object from configuration data."""
        config_kwargs = {}

        for config_key, raw_value in config_data.items():
            if config_key not in self.CONFIG_MAPPING:
                continue
            field_name, field_type = self.CONFIG_MAPPING[config_key]
            try:
                if field_type == bool:
                    value = self._parse_bool(raw_value)
                elif field_type == int:
                    value = int(raw_value)
                else:
                    value = str(raw_value) if raw_value is not None else None

                config_kwargs[field_name] = value
            except (ValueError, TypeError) as e:
                raise ValueError(f"Invalid value for {config_key}: {raw_value} ({e})")

        return Config(**config_kwargs)

    def _parse_bool(self, value: Any) -> bool:
        """Parse boolean value from string."""
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.lower() in ("true", "yes", "1", "on", "enabled")
        return bool(value)

    def validate_config(self, config: Config) -> ConfigValidationResult:
        """
        Validate configuration settings.

        Args:
            config: Configuration object to validate

        Returns:
            ConfigValidationResult with validation results
        """
        errors = []
        warnings = []

        if config.ca_cert_days < config.node_cert_days:
            errors.append(ConfigValidationError(
                "ca_cert_days",
                "CA certificate validity must not be shorter than node certificate validity"
            ))

        if not config.cert_dir:
            errors.append(ConfigValidationError(
                "cert_dir",
                "Certificate directory is required"
            ))

        if not config.privatekeys_path:
            errors.append(ConfigValidationError(
                "privatekeys_path",
                "Private key vault path is required"
            ))

        if not parse_version(config.min_openssl_version):
            errors.append(ConfigValidationError(
                "min_openssl_version",
                f"Not a version number: {config.min_openssl_version}"
            ))

        if config.privatekeys_path:
            vault_dir = os.path.dirname(config.privatekeys_path)
            if vault_dir and not os.path.exists(vault_dir):
                warnings.append(ConfigValidationError(
                    "privatekeys_path",
                    f"Vault directory does not exist: {vault_dir}",
                    "warning"
                ))

        if config.log_file_path:
            log_dir = os.path.dirname(config.log_file_path)
            if log_dir and not os.path.exists(log_dir):
                warnings.append(ConfigValidationError(
                    "log_file_path",
                    f"Log directory does not exist: {log_dir}",
                    "warning"
                ))

        if config.kdf_iterations < 100000:
            warnings.append(ConfigValidationError(
                "kdf_iterations",
                "Fewer than 100000 key derivation iterations weakens the vault password",
                "warning"
            ))

        if config.node_cert_days > 397:
            warnings.append(ConfigValidationError(
                "node_cert_days",
                "Node certificates valid for more than 397 days are rarely renewed in time",
                "warning"
            ))

        all_issues = errors + warnings
        return ConfigValidationResult(
            is_valid=len(errors) == 0,
            errors=all_issues,
            warnings=[]
        )

    def create_default_config_file(self, config_path: str) -> None:
        """
        Create a default configuration file with example settings.

        Args:
            config_path: Path where to create the config file
        """
        config_content = """# Node certificate tool configuration

[certificate]
dir = ./cert
ca_name = my cool CA
node_name = my cool node name
ca_days = 7300
node_days = 375

[vault]
path = ./privatekeys.yaml
retain_node_key_file = true
kdf_iterations = 200000

[toolkit]
openssl_path = openssl
min_version = 3.0.2

[app]
log_level = INFO
log_file_path =
"""

        config_dir = os.path.dirname(config_path)
        if config_dir:
            os.makedirs(config_dir, exist_ok=True)

        with open(config_path, 'w') as f:
            f.write(config_content)

        self.logger.info(f"Created default configuration file: {config_path}")
