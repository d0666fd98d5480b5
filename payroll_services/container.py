"""
PayrollCore -- wiring for the payroll services.

Contract:
    Composes the month controller, declaration generator and bank payment
    service over one session factory, one clock and one configuration.
    Single place where service dependencies are assembled.

Usage:
    core = PayrollCore.from_config(load_config("payroll.yaml"), gateway, directory)
    core.controller.prepare_month(tenant_id, 2025, 6, actor_id)
"""

from __future__ import annotations

from sqlalchemy.orm import Session, sessionmaker

from payroll_kernel.config import PayrollCoreConfig
from payroll_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from payroll_kernel.db.immutability import register_immutability_listeners
from payroll_kernel.domain.clock import Clock, SystemClock
from payroll_kernel.logging_config import get_logger
from payroll_kernel.services.ports import CalculationGateway, EmployeeDirectory
from payroll_services.bank_payments import BankPaymentService
from payroll_services.declaration_generator import DeclarationGenerator
from payroll_services.month_controller import PayrollMonthController

logger = get_logger("services.container")


class PayrollCore:
    """
    DI container for the payroll core.

    Non-goals:
        - Does NOT own the engine lifecycle beyond ``from_config``.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        gateway: CalculationGateway,
        directory: EmployeeDirectory,
        config: PayrollCoreConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.config = config or PayrollCoreConfig()
        self.clock = clock or SystemClock()
        self.session_factory = session_factory
        self.gateway = gateway
        self.directory = directory

        self.controller = PayrollMonthController(
            session_factory, gateway, directory, config=self.config, clock=self.clock
        )
        self.declarations = DeclarationGenerator(
            session_factory, directory, config=self.config, clock=self.clock
        )
        self.bank_payments = BankPaymentService(
            session_factory, directory, config=self.config, clock=self.clock
        )

    @classmethod
    def from_config(
        cls,
        config: PayrollCoreConfig,
        gateway: CalculationGateway,
        directory: EmployeeDirectory,
        clock: Clock | None = None,
        create_schema: bool = True,
    ) -> PayrollCore:
        """Initialize the database engine from ``config`` and wire every service."""
        init_engine_from_url(config.database_url, echo=config.echo_sql)
        if create_schema:
            create_tables()
        register_immutability_listeners()
        logger.info(
            "payroll_core_wired",
            extra={"max_workers": config.max_workers, "validation_policy": config.validation_policy},
        )
        return cls(get_session_factory(), gateway, directory, config=config, clock=clock)
