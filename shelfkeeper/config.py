from __future__ import annotations

import logging
import os
from datetime import timedelta
from decimal import Decimal
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

ENV_PREFIX = "SHELFKEEPER_"

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


class LibraryPolicy(BaseModel):
    """
    Tunable lending rules.

    Money fields are Decimal, durations are timedelta. Values can be
    overridden from the environment with ``SHELFKEEPER_<FIELD_NAME>``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    loan_days: int = Field(14, gt=0, description="Days until a new borrowing is due")
    daily_overdue_rate: Decimal = Field(Decimal("0.50"), ge=0, description="Fine per overdue day")
    max_overdue_fine: Decimal = Field(Decimal("10.00"), ge=0, description="Cap on one overdue fine")
    unpaid_fine_threshold: Decimal = Field(
        Decimal("10.00"), ge=0, description="Unpaid total above which borrowing is blocked"
    )
    max_active_loans: int = Field(5, gt=0, description="Open borrowings allowed per member")
    allow_duplicate_loans: bool = Field(
        False, description="Whether a member may hold two copies of the same book"
    )
    reservation_ttl: timedelta = Field(timedelta(days=7), description="Default reservation lifetime")
    claim_window: timedelta = Field(timedelta(days=3), description="Time to collect a fulfilled reservation")
    default_replacement_cost: Decimal = Field(Decimal("25.00"), gt=0, description="Lost-book charge")
    max_txn_retries: int = Field(3, ge=0, description="Retries after an optimistic version conflict")

    @model_validator(mode="after")
    def _check_windows(self) -> "LibraryPolicy":
        if self.reservation_ttl <= timedelta(0):
            raise ValueError("reservation_ttl must be positive")
        if self.claim_window <= timedelta(0):
            raise ValueError("claim_window must be positive")
        return self

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "LibraryPolicy":
        env = os.environ if environ is None else environ
        values = {}
        for name in cls.model_fields:
            raw = env.get(ENV_PREFIX + name.upper())
            if raw is not None and raw != "":
                values[name] = raw
        return cls(**values)


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger("shelfkeeper")
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger
