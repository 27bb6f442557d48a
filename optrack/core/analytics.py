"""
Analytics Engine
================

Pure pricing math shared by the collectors:

- Volume weighted volatility estimate over one price-history fetch
- Normal CDF (Abramowitz-Stegun 7.1.26, max abs error ~1.5e-7) and density
- Black-Scholes price and Greeks with a continuous dividend yield

Time to expiry is passed in days and annualised with a 365 day year.
Nothing here touches I/O or shared state.
"""

import math
from typing import Iterable, NamedTuple, Union

import numpy as np
import pandas as pd

from optrack.core.models import Candle, ContractType, PriceHistorySummary

DAYS_PER_YEAR = 365.0

# erf approximation coefficients
_P = 0.3275911
_A1 = 0.254829592
_A2 = -0.284496736
_A3 = 1.421413741
_A4 = -1.453152027
_A5 = 1.061405429


class VolatilityEstimateError(ValueError):
    """Raised when a candle set cannot produce a finite volatility."""


class PricingError(ValueError):
    """Raised when Black-Scholes inputs leave d1 undefined."""


# =============================================================================
# VOLATILITY
# =============================================================================

def estimate_volatility(candles: Iterable[Candle]) -> PriceHistorySummary:
    """
    Volume weighted volatility of one fetch of candles.

    Candles with a zero close are dropped. volatility = stdDev / average where
    both moments are weighted by volume.

    Raises:
        VolatilityEstimateError: nothing left to weigh (empty set or zero
            total volume) or the result is not finite.
    """
    df = pd.DataFrame(
        [(c.close, c.volume) for c in candles],
        columns=["close", "volume"],
        dtype=float,
    )
    df = df[df["close"] != 0]

    total_volume = df["volume"].sum()
    if df.empty or total_volume <= 0:
        raise VolatilityEstimateError(f"No traded volume in {len(df)} candles")

    average = (df["close"] * df["volume"]).sum() / total_volume
    sum_squared_deviation = (((df["close"] - average) ** 2) * df["volume"]).sum()
    variance = sum_squared_deviation / total_volume
    std_dev = np.sqrt(variance)
    volatility = std_dev / average

    summary = (average, sum_squared_deviation, variance, std_dev, volatility)
    if not all(math.isfinite(v) for v in summary):
        raise VolatilityEstimateError(f"Non-finite volatility estimate: {summary}")

    return PriceHistorySummary(
        volume_weighted_average=float(average),
        sum_squared_deviation=float(sum_squared_deviation),
        variance=float(variance),
        std_dev=float(std_dev),
        volatility=float(volatility),
    )


# =============================================================================
# NORMAL DISTRIBUTION
# =============================================================================

def norm_cdf(x: float) -> float:
    """Standard normal CDF via the Abramowitz-Stegun erf approximation."""
    z = x / math.sqrt(2.0)
    t = 1.0 / (1.0 + _P * abs(z))
    erf = 1.0 - (((((_A5 * t + _A4) * t + _A3) * t + _A2) * t + _A1) * t) * math.exp(-z * z)
    sign = -1.0 if z < 0 else 1.0
    return 0.5 * (1.0 + sign * erf)


def norm_pdf(x: float) -> float:
    """Standard normal density."""
    return math.exp(-0.5 * x * x) / math.sqrt(2.0 * math.pi)


# =============================================================================
# BLACK-SCHOLES
# =============================================================================

def _contract_type(value: Union[ContractType, str]) -> ContractType:
    return ContractType(value.upper()) if isinstance(value, str) else value


def _validate(spot: float, strike: float, volatility: float, days: float):
    if spot <= 0 or strike <= 0 or volatility <= 0 or days <= 0:
        raise PricingError(
            f"Black-Scholes needs positive inputs (spot={spot}, strike={strike}, "
            f"volatility={volatility}, days={days})"
        )


def d1(spot, strike, volatility, rate, dividend, days) -> float:
    _validate(spot, strike, volatility, days)
    time = days / DAYS_PER_YEAR
    return (math.log(spot / strike) + (rate - dividend + volatility ** 2 / 2) * time) / (
        volatility * math.sqrt(time)
    )


def d2(spot, strike, volatility, rate, dividend, days) -> float:
    time = days / DAYS_PER_YEAR
    return d1(spot, strike, volatility, rate, dividend, days) - volatility * math.sqrt(time)


def option_price(spot, strike, volatility, rate, dividend, days, contract_type=ContractType.CALL) -> float:
    time = days / DAYS_PER_YEAR
    xert = strike * math.exp(-rate * time)
    seqt = spot * math.exp(-dividend * time)
    _d1 = d1(spot, strike, volatility, rate, dividend, days)
    _d2 = _d1 - volatility * math.sqrt(time)

    if _contract_type(contract_type) is ContractType.PUT:
        return xert * norm_cdf(-_d2) - seqt * norm_cdf(-_d1)
    return seqt * norm_cdf(_d1) - xert * norm_cdf(_d2)


def delta(spot, strike, volatility, rate, dividend, days, contract_type=ContractType.CALL) -> float:
    eqt = math.exp(-dividend * days / DAYS_PER_YEAR)
    nd1 = norm_cdf(d1(spot, strike, volatility, rate, dividend, days))
    if _contract_type(contract_type) is ContractType.PUT:
        return eqt * (nd1 - 1.0)
    return eqt * nd1


def gamma(spot, strike, volatility, rate, dividend, days) -> float:
    time = days / DAYS_PER_YEAR
    eqt = math.exp(-dividend * time)
    return norm_pdf(d1(spot, strike, volatility, rate, dividend, days)) * eqt / (
        spot * volatility * math.sqrt(time)
    )


def vega(spot, strike, volatility, rate, dividend, days) -> float:
    """Price change per one vol point."""
    time = days / DAYS_PER_YEAR
    eqt = math.exp(-dividend * time)
    return norm_pdf(d1(spot, strike, volatility, rate, dividend, days)) * eqt * spot * math.sqrt(time) / 100


def theta(spot, strike, volatility, rate, dividend, days, contract_type=ContractType.CALL) -> float:
    """Price change per calendar day."""
    time = days / DAYS_PER_YEAR
    eqt = math.exp(-dividend * time)
    xert = strike * math.exp(-rate * time)
    _d1 = d1(spot, strike, volatility, rate, dividend, days)
    _d2 = _d1 - volatility * math.sqrt(time)

    decay = -(spot * norm_pdf(_d1) * volatility * eqt) / (2 * math.sqrt(time))
    if _contract_type(contract_type) is ContractType.PUT:
        return (decay + rate * xert * norm_cdf(-_d2) - dividend * spot * eqt * norm_cdf(-_d1)) / DAYS_PER_YEAR
    return (decay - rate * xert * norm_cdf(_d2) + dividend * spot * eqt * norm_cdf(_d1)) / DAYS_PER_YEAR


def rho(spot, strike, volatility, rate, dividend, days, contract_type=ContractType.CALL) -> float:
    """Price change per one point of rate."""
    time = days / DAYS_PER_YEAR
    kert = strike * time * math.exp(-rate * time)
    _d2 = d2(spot, strike, volatility, rate, dividend, days)
    if _contract_type(contract_type) is ContractType.PUT:
        return -kert * norm_cdf(-_d2) / 100
    return kert * norm_cdf(_d2) / 100


class OptionGreeks(NamedTuple):
    price: float
    delta: float
    gamma: float
    vega: float
    theta: float
    rho: float


def price_option(spot, strike, volatility, rate, dividend, days, contract_type=ContractType.CALL) -> OptionGreeks:
    """Price and all Greeks for one contract. Raises PricingError on degenerate inputs."""
    args = (spot, strike, volatility, rate, dividend, days)
    return OptionGreeks(
        price=option_price(*args, contract_type),
        delta=delta(*args, contract_type),
        gamma=gamma(*args),
        vega=vega(*args),
        theta=theta(*args, contract_type),
        rho=rho(*args, contract_type),
    )
