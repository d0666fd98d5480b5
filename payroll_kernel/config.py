"""
Payroll Core Configuration.

Defines the structure and defaults for the payroll core settings.
Values are loaded from a YAML file or a dictionary at startup:

    config = load_config(Path("payroll.yaml"))
    config = PayrollCoreConfig.from_dict({"max_workers": 8})
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from decimal import Decimal
from pathlib import Path
from typing import Any, Self

import yaml

from payroll_kernel.logging_config import get_logger

logger = get_logger("config")

VALIDATION_POLICIES = {"advisory", "blocking"}

# Maximum monthly insurable income by year (BGN).
DEFAULT_INSURABLE_INCOME_CEILINGS: dict[int, Decimal] = {
    2023: Decimal("3400.00"),
    2024: Decimal("3750.00"),
    2025: Decimal("4130.00"),
}


@dataclass
class PayrollCoreConfig:
    """
    Configuration schema for the payroll core.

    Field defaults are suitable for a single-node deployment. Override at
    instantiation or through ``from_dict``/``load_config``.
    """

    # Persistence
    database_url: str = "sqlite:///payroll.db"
    echo_sql: bool = False

    # Batch calculation
    max_workers: int = 4

    # Declarations
    validation_policy: str = "advisory"
    insurable_income_ceilings: dict[int, Decimal] = field(
        default_factory=lambda: dict(DEFAULT_INSURABLE_INCOME_CEILINGS)
    )
    amount_tolerance: Decimal = Decimal("0.01")
    file_encoding: str = "cp1251"

    # Bank payments
    bank_payment_description: str = "Заплата {month:02d}/{year}"

    def __post_init__(self):
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        if self.validation_policy not in VALIDATION_POLICIES:
            raise ValueError(
                f"validation_policy must be one of {VALIDATION_POLICIES}, "
                f"got '{self.validation_policy}'"
            )
        if self.amount_tolerance < 0:
            raise ValueError("amount_tolerance cannot be negative")
        for year, ceiling in self.insurable_income_ceilings.items():
            if ceiling <= 0:
                raise ValueError(f"insurable income ceiling for {year} must be positive")
        try:
            "".encode(self.file_encoding)
        except LookupError:
            raise ValueError(f"unknown file_encoding '{self.file_encoding}'") from None
        try:
            self.bank_payment_description.format(year=2000, month=1)
        except (KeyError, IndexError, ValueError):
            raise ValueError(
                "bank_payment_description may only reference {year} and {month}"
            ) from None

        logger.info(
            "payroll_config_initialized",
            extra={
                "max_workers": self.max_workers,
                "validation_policy": self.validation_policy,
                "ceiling_years": sorted(self.insurable_income_ceilings),
                "file_encoding": self.file_encoding,
            },
        )

    @property
    def blocks_on_validation(self) -> bool:
        return self.validation_policy == "blocking"

    def insurable_income_ceiling(self, year: int) -> Decimal | None:
        """Ceiling for the year, or None when the year is not configured."""
        return self.insurable_income_ceilings.get(year)

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with built-in defaults."""
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        """Create config from a dictionary (e.g. a parsed YAML document)."""
        logger.info(
            "payroll_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"unknown configuration keys: {unknown}")

        kwargs = dict(data)
        if "insurable_income_ceilings" in kwargs:
            kwargs["insurable_income_ceilings"] = {
                int(year): Decimal(str(value))
                for year, value in (kwargs["insurable_income_ceilings"] or {}).items()
            }
        if "amount_tolerance" in kwargs:
            kwargs["amount_tolerance"] = Decimal(str(kwargs["amount_tolerance"]))
        return cls(**kwargs)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def load_config(path: Path | str) -> PayrollCoreConfig:
    """Load a ``PayrollCoreConfig`` from a YAML file (empty file -> defaults)."""
    data = load_yaml_file(Path(path))
    if not isinstance(data, dict):
        raise ValueError(f"configuration root in {path} must be a mapping")
    logger.info("payroll_config_file_loaded", extra={"path": str(path)})
    return PayrollCoreConfig.from_dict(data)
