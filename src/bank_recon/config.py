"""Configuration loader and validation for reconciliation settings."""

from decimal import Decimal
from pathlib import Path
from typing import Any, Optional
import logging

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, model_validator

from .utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class InputConfig(BaseModel):
    """Configuration for CSV input file parsing."""

    encoding: str = "utf-8"
    delimiter: str = ","
    date_format: str = "%Y-%m-%d"
    statement_columns: dict[str, str] = Field(
        default_factory=lambda: {
            "id": "Transaction_ID",
            "date": "Date",
            "amount": "Amount",
            "description": "Description",
            "reference": "Reference",
        }
    )
    book_columns: dict[str, str] = Field(
        default_factory=lambda: {
            "id": "Transaction_ID",
            "date": "Date",
            "description": "Description",
            "debit": "Debit",
            "credit": "Credit",
            "reference": "Reference",
        }
    )


class MatchingSettings(BaseModel):
    """Weights and thresholds for the confidence scoring matcher."""

    amount_weight: float = 0.4
    date_weight: float = 0.3
    reference_weight: float = 0.2
    description_weight: float = 0.1

    amount_tolerance: Decimal = Decimal("0.01")

    high_confidence_threshold: float = 0.9
    medium_confidence_threshold: float = 0.7
    low_confidence_threshold: float = 0.5
    default_confidence_threshold: float = 0.7

    # Pair scoring is spread over a thread pool above this many pairs
    max_workers: int = 1
    parallel_pair_threshold: int = 250_000

    @model_validator(mode="after")
    def _check_weights(self) -> "MatchingSettings":
        total = (
            self.amount_weight
            + self.date_weight
            + self.reference_weight
            + self.description_weight
        )
        if abs(total - 1.0) > 1e-9:
            raise ValueError(f"Matching weights must sum to 1.0 (got {total})")
        if not (
            0.0
            <= self.low_confidence_threshold
            <= self.medium_confidence_threshold
            <= self.high_confidence_threshold
            <= 1.0
        ):
            raise ValueError("Confidence tier thresholds must be ordered low <= medium <= high")
        return self


class ImportSettings(BaseModel):
    """Statement import limits."""

    batch_size_limit: int = 10_000
    chunk_size: int = 1_000


class SessionSettings(BaseModel):
    """Session lifecycle rules."""

    max_period_days: int = 90
    manual_match_amount_warning: Decimal = Decimal("100.00")
    manual_match_date_warning_days: int = 30
    default_max_variance: Decimal = Decimal("0.00")
    currency: str = "USD"


class AdjustmentsConfig(BaseModel):
    """Ledger accounts used by adjusting entries."""

    bank_charge_expense_account_id: str = "6100-BANK-CHARGES"
    interest_income_account_id: str = "4500-INTEREST-INCOME"


class CollaboratorsConfig(BaseModel):
    """Settings for calls to ledger and repository collaborators."""

    timeout_seconds: float = 30.0
    page_size: int = 500


class SheetsConfig(BaseModel):
    """Sheet names for the Excel report."""

    summary: str = "Summary"
    matched: str = "Matched Transactions"
    reconciling_items: str = "Reconciling Items"
    unmatched: str = "Unmatched"
    variance: str = "Variance Analysis"
    audit_trail: str = "Audit Trail"


class OutputConfig(BaseModel):
    """Configuration for output."""

    filename_template: str = "reconciliation_report_{date}_{time}.xlsx"
    sheets: SheetsConfig = Field(default_factory=SheetsConfig)


class LoggingConfig(BaseModel):
    """Console level and format, plus the optional rotating audit log file."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 5


class ReconConfig(BaseModel):
    """Main configuration model for reconciliation."""

    input: InputConfig = Field(default_factory=InputConfig)
    matching: MatchingSettings = Field(default_factory=MatchingSettings)
    import_settings: ImportSettings = Field(default_factory=ImportSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    adjustments: AdjustmentsConfig = Field(default_factory=AdjustmentsConfig)
    collaborators: CollaboratorsConfig = Field(default_factory=CollaboratorsConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    config_file_path: Optional[str] = None


def get_default_config() -> dict[str, Any]:
    """Return the default configuration as a dictionary."""
    return {
        "input": {
            "encoding": "utf-8",
            "delimiter": ",",
            "date_format": "%Y-%m-%d",
            "statement_columns": {
                "id": "Transaction_ID",
                "date": "Date",
                "amount": "Amount",
                "description": "Description",
                "reference": "Reference",
            },
            "book_columns": {
                "id": "Transaction_ID",
                "date": "Date",
                "description": "Description",
                "debit": "Debit",
                "credit": "Credit",
                "reference": "Reference",
            },
        },
        "matching": {
            "amount_weight": 0.4,
            "date_weight": 0.3,
            "reference_weight": 0.2,
            "description_weight": 0.1,
            "amount_tolerance": "0.01",
            "high_confidence_threshold": 0.9,
            "medium_confidence_threshold": 0.7,
            "low_confidence_threshold": 0.5,
            "default_confidence_threshold": 0.7,
            "max_workers": 1,
            "parallel_pair_threshold": 250000,
        },
        "import_settings": {
            "batch_size_limit": 10000,
            "chunk_size": 1000,
        },
        "session": {
            "max_period_days": 90,
            "manual_match_amount_warning": "100.00",
            "manual_match_date_warning_days": 30,
            "default_max_variance": "0.00",
            "currency": "USD",
        },
        "adjustments": {
            "bank_charge_expense_account_id": "6100-BANK-CHARGES",
            "interest_income_account_id": "4500-INTEREST-INCOME",
        },
        "collaborators": {
            "timeout_seconds": 30.0,
            "page_size": 500,
        },
        "output": {
            "filename_template": "reconciliation_report_{date}_{time}.xlsx",
            "sheets": {
                "summary": "Summary",
                "matched": "Matched Transactions",
                "reconciling_items": "Reconciling Items",
                "unmatched": "Unmatched",
                "variance": "Variance Analysis",
                "audit_trail": "Audit Trail",
            },
        },
        "logging": {
            "level": "INFO",
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            "file": None,
            "max_bytes": 10485760,
            "backup_count": 5,
        },
    }


def load_config(config_path: Optional[Path] = None) -> ReconConfig:
    """
    Load configuration from a YAML file or use defaults.

    Args:
        config_path: Path to YAML configuration file (optional)

    Returns:
        ReconConfig object with loaded or default settings

    Raises:
        ConfigurationError: If the file cannot be read or fails validation
    """
    config_dict = get_default_config()

    if config_path and config_path.exists():
        logger.info(f"Loading configuration from: {config_path}")
        try:
            with open(config_path, "r") as f:
                user_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to read configuration file: {e}") from e

        if not isinstance(user_config, dict):
            raise ConfigurationError("Configuration file must contain a mapping")

        config_dict = _deep_merge(config_dict, user_config)
        config_dict["config_file_path"] = str(config_path)
    else:
        logger.info("Using default configuration")

    try:
        return ReconConfig(**config_dict)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Deep merge two dictionaries.

    Args:
        base: Base dictionary
        override: Dictionary to merge on top

    Returns:
        Merged dictionary
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def generate_default_config(output_path: Path) -> None:
    """
    Generate a default configuration file.

    Args:
        output_path: Path to write the configuration file
    """
    config_dict = get_default_config()

    yaml_content = """# Bank Reconciliation Engine Configuration
# Generated configuration file - customize as needed

"""
    yaml_content += yaml.dump(config_dict, default_flow_style=False, sort_keys=False)

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        f.write(yaml_content)

    logger.info(f"Generated configuration file: {output_path}")
