"""
FILE: portfolio_allocator/core/models.py
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class WeightMode(str, Enum):
    PERCENT = "percent"
    BUDGET = "budget"


class SignalType(str, Enum):
    BUY = "Buy"
    HOLD = "Hold"


class BarInterval(str, Enum):
    MINUTE = "1m"
    HOUR = "1h"
    DAY = "1d"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _quantize_percent(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.0001"))


class StrategyStock(BaseModel):
    strategy_id: str = Field(description="Owning strategy identifier.", examples=["st_growth"])
    stock_id: str = Field(description="Member stock identifier.", examples=["stk_aapl"])
    eligible: bool = Field(
        default=True,
        description="Only eligible memberships receive cash from the strategy.",
        examples=[True],
    )


class Strategy(BaseModel):
    id: str = Field(description="Strategy identifier.", examples=["st_growth"])
    user_id: str = Field(description="Owning user identifier.", examples=["usr_001"])
    name: str = Field(description="Display name.", examples=["Growth"])
    weight_mode: WeightMode = Field(
        description="`percent` shares remaining cash, `budget` reserves a fixed amount.",
        examples=["percent"],
    )
    weight_value: Decimal = Field(
        description="Percent of remaining cash or absolute budget, depending on weight_mode.",
        examples=["60"],
    )
    stocks: List[StrategyStock] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class Stock(BaseModel):
    id: str = Field(description="Stock identifier.", examples=["stk_aapl"])
    ticker: str = Field(description="Unique upper-case exchange ticker.", examples=["AAPL"])
    name: str = Field(description="Company name.", examples=["Apple Inc."])
    sector: Optional[str] = Field(default=None, examples=["Technology"])
    exchange: str = Field(default="NASDAQ", examples=["NASDAQ"])
    current_signal: Optional["Signal"] = None

    @field_validator("ticker")
    @classmethod
    def _upper_ticker(cls, value: str) -> str:
        return value.strip().upper()


class Signal(BaseModel):
    stock_id: str = Field(description="Signalled stock identifier.", examples=["stk_aapl"])
    signal: SignalType = Field(description="Daily classification.", examples=["Buy"])
    date: datetime = Field(default_factory=_utc_now)


class AllocationConstraints(BaseModel):
    # Bounds are reported by ConstraintValidator rather than rejected here.
    max_allocation_per_stock: Decimal = Field(
        description="Per-stock cap as a percent of total investment, expected in (0, 100].",
        examples=["20"],
    )
    min_allocation_amount: Decimal = Field(
        description="Currency floor below which a stock is dropped, expected >= 0.",
        examples=["100"],
    )


class AllocationRequest(BaseModel):
    strategy_ids: List[str] = Field(
        description="Strategies to allocate across, in priority order.",
        examples=[["st_growth", "st_value"]],
    )
    total_investment: Decimal = Field(description="Cash to invest.", examples=["10000"])
    constraints: AllocationConstraints
    excluded_stocks: List[str] = Field(
        default_factory=list,
        description="Stock identifiers that must receive no allocation.",
        examples=[["stk_tsla"]],
    )


class StockAllocation(BaseModel):
    stock_id: str
    ticker: str
    name: str
    weight: Decimal = Field(
        default=Decimal("0"),
        description="Target weight as a percent of total investment.",
    )
    allocation_value: Decimal = Field(
        default=Decimal("0"),
        description="Target currency value before whole-share rounding.",
    )
    price: Decimal = Field(default=Decimal("0"))
    quantity: int = Field(default=0, description="Whole shares purchasable at price.")
    actual_value: Decimal = Field(default=Decimal("0"), description="price x quantity.")
    strategy_contrib: Dict[str, Decimal] = Field(
        default_factory=dict,
        description="Contributed target value keyed by strategy id.",
    )


class ConstraintViolation(BaseModel):
    type: str = Field(examples=["MAX_ALLOCATION_VIOLATION"])
    message: str
    stock_ticker: Optional[str] = None
    current_value: Decimal = Decimal("0")
    limit_value: Decimal = Decimal("0")
    suggestions: List[str] = Field(default_factory=list)


class ValidationResult(BaseModel):
    is_valid: bool
    violations: List[ConstraintViolation] = Field(default_factory=list)


class AllocationPreview(BaseModel):
    model_config = {"frozen": True}

    total_investment: Decimal
    allocations: List[StockAllocation] = Field(default_factory=list)
    unallocated_cash: Decimal = Field(
        description="total_investment minus the realized value of every allocation.",
    )
    total_allocated: Decimal
    constraints: AllocationConstraints
    warnings: List[ConstraintViolation] = Field(
        default_factory=list,
        description="Non-fatal diagnostics from detailed validation.",
    )


class Quote(BaseModel):
    symbol: str
    price: Decimal
    change: Decimal = Decimal("0")
    change_percent: Decimal = Decimal("0")
    volume: int = 0
    high: Decimal = Decimal("0")
    low: Decimal = Decimal("0")
    open: Decimal = Decimal("0")
    previous_close: Decimal = Decimal("0")
    timestamp: datetime = Field(default_factory=_utc_now)


class Bar(BaseModel):
    timestamp: datetime
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: int = 0


class Position(BaseModel):
    portfolio_id: str
    stock_id: str
    ticker: str = ""
    quantity: int
    entry_price: Decimal
    allocation_value: Decimal
    strategy_contrib: Dict[str, Decimal] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)
    current_price: Optional[Decimal] = None
    current_value: Optional[Decimal] = None
    pnl: Optional[Decimal] = None
    pnl_percentage: Optional[Decimal] = None

    def calculate_metrics(self, current_price: Decimal) -> None:
        self.current_price = current_price
        self.current_value = current_price * Decimal(self.quantity)
        self.pnl = self.current_value - self.allocation_value
        if self.allocation_value > 0:
            self.pnl_percentage = _quantize_percent(self.pnl / self.allocation_value * 100)
        else:
            self.pnl_percentage = Decimal("0")


class NavHistory(BaseModel):
    portfolio_id: str
    timestamp: datetime
    nav: Decimal
    pnl: Decimal
    drawdown: Optional[Decimal] = Field(
        default=None,
        description="Percent decline from the high-water mark, zero or negative.",
    )
    created_at: datetime = Field(default_factory=_utc_now)

    def calculate_drawdown(self, high_water_mark: Decimal) -> None:
        if high_water_mark > 0 and self.nav < high_water_mark:
            self.drawdown = _quantize_percent((self.nav - high_water_mark) / high_water_mark * 100)
        else:
            self.drawdown = Decimal("0")


class Portfolio(BaseModel):
    id: str
    user_id: str
    name: str
    total_investment: Decimal
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)
    positions: List[Position] = Field(default_factory=list)
    nav_history: List[NavHistory] = Field(default_factory=list)


class PerformanceMetrics(BaseModel):
    total_return: Decimal = Decimal("0")
    total_return_pct: Decimal = Decimal("0")
    annualized_return: Optional[Decimal] = None
    max_drawdown: Optional[Decimal] = None
    current_drawdown: Optional[Decimal] = None
    days_active: int = 0
    high_water_mark: Decimal = Decimal("0")


class CreatePositionRequest(BaseModel):
    stock_id: str = Field(examples=["stk_aapl"])
    quantity: int = Field(ge=0, examples=[33])
    entry_price: Decimal = Field(gt=0, examples=["150.25"])
    allocation_value: Decimal = Field(ge=0, examples=["5000"])
    strategy_contrib: Dict[str, Decimal] = Field(default_factory=dict)


class CreatePortfolioRequest(BaseModel):
    name: str = Field(examples=["Core growth"])
    total_investment: Decimal = Field(examples=["10000"])
    positions: List[CreatePositionRequest] = Field(default_factory=list)


class UpdatePortfolioRequest(BaseModel):
    name: Optional[str] = None
    total_investment: Optional[Decimal] = None


Stock.model_rebuild()
