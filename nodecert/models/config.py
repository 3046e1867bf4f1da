"""
Configuration data models for the node certificate tool.
"""
from dataclasses import dataclass
from typing import List


@dataclass
class Config:
    """Main configuration class containing all tool settings."""

    # Certificate settings
    cert_dir: str = "./cert"
    ca_name: str = "my cool CA"
    node_name: str = "my cool node name"
    ca_cert_days: int = 7300
    node_cert_days: int = 375

    # Vault settings
    privatekeys_path: str = "./privatekeys.yaml"
    retain_node_key_file: bool = True
    kdf_iterations: int = 200000

    # Toolkit settings
    openssl_path: str = "openssl"
    min_openssl_version: str = "3.0.2"

    # Application settings
    log_level: str = "INFO"
    log_file_path: str = ""

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate_types()

    def _validate_types(self):
        """Ensure all configuration values have correct types."""
        if not isinstance(self.ca_cert_days, int) or self.ca_cert_days <= 0:
            raise ValueError("ca_cert_days must be a positive integer")

        if not isinstance(self.node_cert_days, int) or self.node_cert_days <= 0:
            raise ValueError("node_cert_days must be a positive integer")

        if not isinstance(self.kdf_iterations, int) or self.kdf_iterations <= 0:
            raise ValueError("kdf_iterations must be a positive integer")

        if not isinstance(self.retain_node_key_file, bool):
            raise ValueError("retain_node_key_file must be a boolean")

        if self.log_level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            raise ValueError("log_level must be one of: DEBUG, INFO, WARNING, ERROR, CRITICAL")


@dataclass
class ConfigValidationError:
    """Represents a configuration validation error."""
    field: str
    message: str
    severity: str = "error"  # error, warning

    def __str__(self):
        return f"{self.severity.upper()}: {self.field} - {self.message}"


@dataclass
class ConfigValidationResult:
    """Result of configuration validation."""
    is_valid: bool
    errors: List[ConfigValidationError]
    warnings: List[ConfigValidationError]

    def __post_init__(self):
        """Separate errors and warnings."""
        all_issues = self.errors + self.warnings
        self.errors = [e for e in all_issues if e.severity == "error"]
        self.warnings = [e for e in all_issues if e.severity == "warning"]

    def has_errors(self) -> bool:
        """Check if there are any validation errors."""
        return len(self.errors) > 0

    def has_warnings(self) -> bool:
        """Check if there are any validation warnings."""
        return len(self.warnings) > 0

    def get_error_summary(self) -> str:
        """Get a formatted summary of all errors and warnings."""
        lines = []

        if self.errors:
            lines.append("Configuration Errors:")
            for error in self.errors:
                lines.append(f"  - {error}")

        if self.warnings:
            lines.append("Configuration Warnings:")
            for warning in self.warnings:
                lines.append(f"  - {warning}")

        return "\n".join(lines) if lines else "Configuration is valid"
