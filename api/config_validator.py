"""
Configuration validation for the billing API
Validates the environment on startup
"""
import logging
import os
import sys
from typing import List, Tuple

logger = logging.getLogger("billing.config")


class ConfigValidator:
    """Validates environment configuration on startup"""

    REQUIRED_VARS = {
        "BILLING_DB_HOST": "PostgreSQL database host",
        "BILLING_DB_PORT": "PostgreSQL database port",
        "BILLING_DB_NAME": "PostgreSQL database name",
        "BILLING_DB_USER": "PostgreSQL database user",
        "BILLING_DB_PASSWORD": "PostgreSQL database password",
        "JWT_SECRET_KEY": "JWT signing secret key",
    }

    # Optional with defaults
    OPTIONAL_VARS = {
        "JWT_ALGORITHM": ("HS256", "JWT signing algorithm"),
        "DB_POOL_MIN_CONN": ("2", "Minimum pooled database connections"),
        "DB_POOL_MAX_CONN": ("10", "Maximum pooled database connections"),
        "QUOTA_CHECK_CACHE_TTL": ("5", "Quota check cache lifetime (seconds)"),
        "BILLING_ALLOWED_ORIGIN": ("http://localhost:5173", "CORS allowed origin"),
        "BILLING_API_PORT": ("8000", "Port of the standalone server"),
    }

    @classmethod
    def validate(cls) -> Tuple[bool, List[str], List[str]]:
        """
        Validate configuration
        Returns: (is_valid, errors, warnings)
        """
        errors = []
        warnings = []

        for var, description in cls.REQUIRED_VARS.items():
            value = os.getenv(var)
            if not value or value.strip() == "":
                errors.append(f"Missing required env var: {var} ({description})")

        for var, (default, description) in cls.OPTIONAL_VARS.items():
            value = os.getenv(var)
            if not value or value.strip() == "":
                warnings.append(f"Using default for {var}={default} ({description})")

        errors.extend(cls._validate_values())
        return len(errors) == 0, errors, warnings

    @staticmethod
    def _int_var(name: str, default: str, errors: List[str]) -> int:
        raw = os.getenv(name, default)
        try:
            return int(raw)
        except ValueError:
            errors.append(f"{name} must be a number: {raw}")
            return int(default)

    @classmethod
    def _validate_values(cls) -> List[str]:
        """Validate specific configuration values"""
        errors: List[str] = []

        jwt_secret = os.getenv("JWT_SECRET_KEY", "")
        if jwt_secret and len(jwt_secret) < 32:
            errors.append("JWT_SECRET_KEY should be at least 32 characters for security")

        db_port = cls._int_var("BILLING_DB_PORT", "5432", errors)
        if not (1 <= db_port <= 65535):
            errors.append(f"Invalid BILLING_DB_PORT: {db_port}")

        min_conn = cls._int_var("DB_POOL_MIN_CONN", "2", errors)
        max_conn = cls._int_var("DB_POOL_MAX_CONN", "10", errors)
        if min_conn < 1 or max_conn < min_conn:
            errors.append(
                f"DB_POOL_MIN_CONN ({min_conn}) must be >= 1 and <= DB_POOL_MAX_CONN ({max_conn})"
            )

        ttl = cls._int_var("QUOTA_CHECK_CACHE_TTL", "5", errors)
        if ttl < 0:
            errors.append("QUOTA_CHECK_CACHE_TTL must not be negative")

        api_port = cls._int_var("BILLING_API_PORT", "8000", errors)
        if not 0 < api_port < 65536:
            errors.append("BILLING_API_PORT must be between 1 and 65535")

        origin = os.getenv("BILLING_ALLOWED_ORIGIN", "")
        if origin and not (origin.startswith("http://") or origin.startswith("https://")):
            errors.append("BILLING_ALLOWED_ORIGIN must start with http:// or https://")

        return errors

    @classmethod
    def log_validation_results(cls, is_valid: bool, errors: List[str], warnings: List[str]) -> bool:
        for warning in warnings:
            logger.warning(warning)
        for error in errors:
            logger.error(error)
        if is_valid:
            logger.info("Configuration validation passed")
        else:
            logger.error("Configuration validation failed")
        return is_valid

    @classmethod
    def validate_and_exit_on_error(cls):
        """Validate configuration and exit if errors found"""
        is_valid, errors, warnings = cls.validate()
        cls.log_validation_results(is_valid, errors, warnings)

        if not is_valid:
            print("Fix configuration errors before starting the service.", file=sys.stderr)
            sys.exit(1)
