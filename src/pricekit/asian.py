# asian.py
# Asian (average-rate and average-strike) options.
#
# Closed forms for geometric averaging under Black-Scholes-Merton, and a
# Monte Carlo engine for arithmetic averaging that uses the discrete
# geometric price as its control variate.

from __future__ import annotations
import enum
import math
import numpy as np
from scipy.stats import norm

from .black import BlackCalculator
from .core import CALL, PlainVanillaPayoff, EuropeanExercise, Results
from .errors import ConfigurationError, require
from .instruments import OneAssetOption, PricingEngine
from .montecarlo import MCConfig, _MCEngine
from .processes import GeneralizedBlackScholesProcess
from .settings import QL_EPSILON

__all__ = [
    "AverageType",
    "ContinuousAveragingAsianOption",
    "DiscreteAveragingAsianOption",
    "AnalyticContinuousGeometricAveragePriceAsianEngine",
    "AnalyticDiscreteGeometricAveragePriceAsianEngine",
    "AnalyticDiscreteGeometricAverageStrikeAsianEngine",
    "MCDiscreteArithmeticAPEngine",
]


class AverageType(enum.Enum):
    Arithmetic = "arithmetic"
    Geometric = "geometric"


# ---------------------------------------------------------------------------
# Instruments
# ---------------------------------------------------------------------------
class ContinuousAveragingAsianOption(OneAssetOption):
    def __init__(self, average_type: AverageType, payoff, exercise):
        super().__init__(payoff, exercise)
        self.average_type = AverageType(average_type)


class DiscreteAveragingAsianOption(OneAssetOption):
    """
    Average over ``fixing_dates``.

    Parameters
    ----------
    average_type : AverageType
    running_accumulator : float, optional
        Product (geometric) or sum (arithmetic) of the past fixings.
        Defaults to 1 or 0 respectively.
    past_fixings : int
        Number of fixings already observed.
    fixing_dates : list of date
    payoff : StrikedTypePayoff
    exercise : Exercise
    """

    def __init__(self, average_type: AverageType, running_accumulator, past_fixings: int,
                 fixing_dates, payoff, exercise):
        super().__init__(payoff, exercise)
        self.average_type = AverageType(average_type)
        if running_accumulator is None:
            running_accumulator = 1.0 if self.average_type is AverageType.Geometric else 0.0
        self.running_accumulator = float(running_accumulator)
        self.past_fixings = int(past_fixings or 0)
        require(self.past_fixings >= 0, "past_fixings must be non-negative")
        self.fixing_dates = sorted(fixing_dates)
        require(len(self.fixing_dates) + self.past_fixings > 0, "no fixings given")


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------
def _check_european_vanilla(option) -> PlainVanillaPayoff:
    if not isinstance(option.exercise, EuropeanExercise):
        raise ConfigurationError("not a European option")
    if not isinstance(option.payoff, PlainVanillaPayoff):
        raise ConfigurationError("non-plain payoff given")
    return option.payoff


def _black_scholes_theta(process, value, delta, gamma) -> float:
    # theta from the Black-Scholes PDE at the current spot
    u = process.x0()
    r = process.risk_free_rate.forward_rate(0.0, 0.0)
    q = process.dividend_yield.forward_rate(0.0, 0.0)
    v = process.diffusion(0.0, u)
    return r * value - (r - q) * u * delta - 0.5 * v * v * u * u * gamma


def _future_fixing_times(process, fixing_dates) -> list[float]:
    ref = process.risk_free_rate.reference_date
    vol_ts = process.black_volatility
    return [vol_ts.time_from_reference(d) for d in fixing_dates if d >= ref]


# ---------------------------------------------------------------------------
# Analytic engines
# ---------------------------------------------------------------------------
class AnalyticContinuousGeometricAveragePriceAsianEngine(PricingEngine):
    """Kemna-Vorst closed form for continuous geometric average price.

    The average of a log-normal asset is log-normal with volatility
    ``sigma / sqrt(3)`` and an adjusted dividend yield
    ``(r + q + sigma^2 / 6) / 2``.
    """

    def __init__(self, process: GeneralizedBlackScholesProcess):
        super().__init__()
        self.process = process
        self.register_with(process)

    def evaluation_date(self):
        return self.process.risk_free_rate.reference_date

    def calculate(self, option) -> Results:
        if option.average_type is not AverageType.Geometric:
            raise ConfigurationError("not a geometric average option")
        payoff = _check_european_vanilla(option)
        p = self.process
        exercise = option.exercise.last_date()

        volatility = p.black_volatility.black_vol(exercise, payoff.strike)
        variance = p.black_volatility.black_variance(exercise, payoff.strike)
        risk_free_discount = p.risk_free_rate.discount(exercise)
        dividend_yield = 0.5 * (p.risk_free_rate.zero_rate(exercise)
                                + p.dividend_yield.zero_rate(exercise)
                                + volatility * volatility / 6.0)
        t_q = p.dividend_yield.time_from_reference(exercise)
        dividend_discount = math.exp(-dividend_yield * t_q)

        spot = p.x0()
        require(spot > 0.0, "negative or null underlying")
        forward = spot * dividend_discount / risk_free_discount
        black = BlackCalculator(payoff, forward, math.sqrt(variance / 3.0), risk_free_discount)

        t_r = p.risk_free_rate.time_from_reference(exercise)
        t_v = p.black_volatility.time_from_reference(exercise)
        res = Results(value=black.value())
        res.greeks = {
            "delta": black.delta(spot),
            "gamma": black.gamma(spot),
            "dividend_rho": black.dividend_rho(t_q) / 2.0,
            "rho": black.rho(t_r) + 0.5 * black.dividend_rho(t_q),
            "vega": black.vega(t_v) / math.sqrt(3.0) + black.dividend_rho(t_q) * volatility / 6.0,
            "theta": black.theta(spot, t_v),
        }
        return res


def _discrete_geometric_price(process, option, payoff) -> Results:
    """Closed form for a discrete geometric average price option.

    Arithmetic options are priced as if geometric with no past fixings,
    which is what the arithmetic Monte Carlo control variate needs.
    """
    if option.average_type is AverageType.Geometric:
        require(option.running_accumulator > 0.0,
                f"positive running product required: {option.running_accumulator} not allowed")
        running_log = math.log(option.running_accumulator)
        past_fixings = option.past_fixings
    else:
        running_log = 1.0
        past_fixings = 0

    p = process
    fixing_times = _future_fixing_times(p, option.fixing_dates)
    remaining = len(fixing_times)
    N = float(past_fixings + remaining)
    past_weight = past_fixings / N
    future_weight = 1.0 - past_weight
    time_sum = float(sum(fixing_times))

    exercise = option.exercise.last_date()
    vola = p.black_volatility.black_vol(exercise, payoff.strike)
    temp = 0.0
    for i in range(past_fixings + 1, past_fixings + remaining):
        temp += fixing_times[i - past_fixings - 1] * (N - i)

    variance = vola * vola / N / N * (time_sum + 2.0 * temp)
    dsig_g_dsig = math.sqrt(time_sum + 2.0 * temp) / N
    sig_g = vola * dsig_g_dsig
    dmu_g_dsig = -(vola * time_sum) / N

    dividend_rate = p.dividend_yield.zero_rate(exercise)
    risk_free_rate = p.risk_free_rate.zero_rate(exercise)
    nu = risk_free_rate - dividend_rate - 0.5 * vola * vola

    s = p.x0()
    require(s > 0.0, "positive underlying value required")
    M = 1 if past_fixings == 0 else past_fixings
    mu_g = past_weight * running_log / M + future_weight * math.log(s) + nu * time_sum / N
    forward_price = math.exp(mu_g + variance / 2.0)
    risk_free_discount = p.risk_free_rate.discount(exercise)

    black = BlackCalculator(payoff, forward_price, math.sqrt(variance), risk_free_discount)
    value = black.value()
    delta = future_weight * black.delta(forward_price) * forward_price / s
    gamma = (forward_price * future_weight / (s * s)
             * (black.gamma(forward_price) * future_weight * forward_price
                - past_weight * black.delta(forward_price)))

    log_k = math.log(payoff.strike)
    if sig_g > QL_EPSILON:
        x_1 = (mu_g - log_k + variance) / sig_g
        n_x1, pdf_x1 = norm.cdf(x_1), norm.pdf(x_1)
    else:
        n_x1, pdf_x1 = (1.0 if mu_g > log_k else 0.0), 0.0
    vega = forward_price * risk_free_discount * ((dmu_g_dsig + sig_g * dsig_g_dsig) * n_x1
                                                 + pdf_x1 * dsig_g_dsig)
    if payoff.option_type != CALL:
        vega -= risk_free_discount * forward_price * (dmu_g_dsig + sig_g * dsig_g_dsig)

    t_rho = p.risk_free_rate.time_from_reference(exercise)
    t_div = p.dividend_yield.time_from_reference(exercise)
    res = Results(value=value)
    res.greeks = {
        "delta": delta,
        "gamma": gamma,
        "vega": vega,
        "rho": black.rho(t_rho) * time_sum / (N * t_rho) - (t_rho - time_sum / N) * value,
        "dividend_rho": black.dividend_rho(t_div) * time_sum / (N * t_div),
        "strike_sensitivity": black.strike_sensitivity(),
        "theta": _black_scholes_theta(p, value, delta, gamma),
    }
    return res


class AnalyticDiscreteGeometricAveragePriceAsianEngine(PricingEngine):
    """Discrete geometric average price, with running product and past fixings."""

    def __init__(self, process: GeneralizedBlackScholesProcess):
        super().__init__()
        self.process = process
        self.register_with(process)

    def evaluation_date(self):
        return self.process.risk_free_rate.reference_date

    def calculate(self, option) -> Results:
        payoff = _check_european_vanilla(option)
        return _discrete_geometric_price(self.process, option, payoff)


class AnalyticDiscreteGeometricAverageStrikeAsianEngine(PricingEngine):
    """Discrete geometric average strike: payoff on S_T against the average."""

    def __init__(self, process: GeneralizedBlackScholesProcess):
        super().__init__()
        self.process = process
        self.register_with(process)

    def evaluation_date(self):
        return self.process.risk_free_rate.reference_date

    def calculate(self, option) -> Results:
        if option.average_type is not AverageType.Geometric:
            raise ConfigurationError("not a geometric average option")
        payoff = _check_european_vanilla(option)
        require(option.running_accumulator > 0.0,
                f"positive running product required: {option.running_accumulator} not allowed")
        require(option.past_fixings == 0, "past fixings currently not managed")
        p = self.process
        dates = option.fixing_dates
        exercise = option.exercise.last_date()

        vol_dc = p.black_volatility.day_counter
        fixing_times = [vol_dc.year_fraction(dates[0], d) for d in dates]
        N = float(len(fixing_times))
        time_sum = float(sum(fixing_times))
        residual_time = p.risk_free_rate.day_counter.year_fraction(dates[0], exercise)

        underlying = p.x0()
        require(underlying > 0.0, "positive underlying value required")
        volatility = p.black_volatility.black_vol(exercise, underlying)
        dividend_rate = p.dividend_yield.zero_rate(exercise)
        risk_free_rate = p.risk_free_rate.zero_rate(exercise)
        nu = risk_free_rate - dividend_rate - 0.5 * volatility * volatility

        temp = 0.0
        for i in range(1, len(fixing_times)):
            temp += fixing_times[i - 1] * (N - i)
        variance = volatility * volatility / N / N * (time_sum + 2.0 * temp)
        covariance_term = volatility * volatility / N * time_sum
        sigma_sum_2 = variance + volatility * volatility * residual_time - 2.0 * covariance_term

        mu_g = math.log(underlying) + nu * time_sum / N
        y1 = ((math.log(underlying) + (risk_free_rate - dividend_rate) * residual_time
               - mu_g - variance / 2.0 + sigma_sum_2 / 2.0) / math.sqrt(sigma_sum_2))
        y2 = y1 - math.sqrt(sigma_sum_2)

        asset = underlying * math.exp(-dividend_rate * residual_time)
        average = math.exp(mu_g + variance / 2.0 - risk_free_rate * residual_time)
        if payoff.option_type == CALL:
            value = asset * norm.cdf(y1) - average * norm.cdf(y2)
        else:
            value = -asset * norm.cdf(-y1) + average * norm.cdf(-y2)
        return Results(value=float(value))


# ---------------------------------------------------------------------------
# Monte Carlo
# ---------------------------------------------------------------------------
class MCDiscreteArithmeticAPEngine(_MCEngine):
    """Arithmetic average price by Monte Carlo.

    Paths are sampled exactly at the future fixing times.  With
    ``config.control_variate`` the geometric average on the same paths is
    the control, with the discrete geometric closed form as its mean.
    """

    def __init__(self, process: GeneralizedBlackScholesProcess, config: MCConfig):
        super().__init__(process, config)

    def _check(self, option) -> None:
        if option.average_type is not AverageType.Arithmetic:
            raise ConfigurationError("not an arithmetic average option")
        _check_european_vanilla(option)

    def _time_grid(self, option, maturity):
        fixing_times = [t for t in _future_fixing_times(self.process, option.fixing_dates) if t > 0.0]
        require(len(fixing_times) > 0, "no future fixings")
        return np.concatenate([[0.0], fixing_times])

    def _control_value(self, option, maturity):
        return _discrete_geometric_price(self.process, option, option.payoff).value

    def _simulate(self, option, times, z):
        p = self.process
        n = z.shape[1]
        s0 = p.x0()
        at_start = sum(1 for d in option.fixing_dates if d == p.risk_free_rate.reference_date)
        s = np.full(n, s0, dtype=float)
        total = np.full(n, option.running_accumulator + at_start * s0)
        log_total = np.full(n, at_start * math.log(s0))
        for k in range(times.size - 1):
            s = p.evolve(times[k], s, times[k + 1] - times[k], z[k])
            total += s
            log_total += np.log(s)
        n_fix = option.past_fixings + at_start + (times.size - 1)
        average = total / n_fix
        geometric = np.exp(log_total / (at_start + times.size - 1))
        df = p.risk_free_rate.discount(option.exercise.last_date())
        return df * option.payoff(average), df * option.payoff(geometric)
