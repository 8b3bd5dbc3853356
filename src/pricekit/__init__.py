# pricekit: derivatives pricing and calibration
# Public API

# Errors
from .errors import PricingError, ConfigurationError, EngineNotSetError, ConvergenceError

# Market data: quotes, dates, curves
from .quotes import Observable, Observer, LazyObject, SimpleQuote
from .dates import (
    Frequency, Actual360, Actual365Fixed, ActualActual, Thirty360,
    add_months, add_years, Schedule,
)
from .termstructures import (
    FlatForward, ZeroCurve, BlackConstantVol, BlackVarianceCurve,
)

# Payoffs, exercises, instruments
from .core import (
    CALL, PUT, PlainVanillaPayoff, CashOrNothingPayoff, AssetOrNothingPayoff,
    EuropeanExercise, AmericanExercise, BermudanExercise, Results,
)
from .instruments import PricingEngine, Instrument, VanillaOption, EuropeanOption

# Processes
from .processes import (
    BlackScholesMertonProcess, BlackScholesProcess, Discretization, HestonProcess,
)

# Black formulas
from .black import (
    black_formula, black_implied_std_dev, black_scholes_price,
    black_scholes_implied_vol, BlackCalculator, AnalyticEuropeanEngine,
)

# Heston (semi-analytic)
from .heston import (
    HestonModel, PiecewiseTimeDependentHestonModel, ComplexLogFormula,
    Integration, AnalyticHestonEngine, AnalyticPTDHestonEngine,
)

# Monte Carlo
from .montecarlo import MCConfig, MCEuropeanEngine, MCEuropeanHestonEngine, MCDigitalEngine

# Asian options
from .asian import (
    AverageType, ContinuousAveragingAsianOption, DiscreteAveragingAsianOption,
    AnalyticContinuousGeometricAveragePriceAsianEngine,
    AnalyticDiscreteGeometricAveragePriceAsianEngine,
    AnalyticDiscreteGeometricAverageStrikeAsianEngine,
    MCDiscreteArithmeticAPEngine,
)

# Calibration
from .calibration import (
    EndCriteria, EndCriteriaType, LevenbergMarquardt,
    CalibrationErrorType, HestonModelHelper,
)

# Cash flows, coupons, bonds
from .cashflows import (
    SimpleCashFlow, Redemption, FixedRateCoupon, FloatingRateCoupon, IborCoupon,
    fixed_rate_leg, floating_rate_leg, leg_npv, leg_bps, leg_accrued_amount,
)
from .digital import Position, Replication, DigitalReplication, BlackIborCouponPricer, DigitalCoupon
from .bonds import (
    SIMPLE, COMPOUNDED, CONTINUOUS,
    Bond, FixedRateBond, DiscountingBondEngine, Swap, AssetSwap, DiscountingSwapEngine,
)

# Catastrophe bonds
from .catbonds import (
    EventSet, BetaRisk, NoOffset, DigitalNotionalRisk, ProportionalNotionalRisk,
    CatBond, FixedRateCatBond, FloatingCatBond, MonteCarloCatBondEngine,
)

# Risk engine
from .risk import numerical_greeks, scenario_grid

# Model validation
from .validation import cross_validate_heston, convergence_analysis

__all__ = [
    # Errors
    "PricingError", "ConfigurationError", "EngineNotSetError", "ConvergenceError",
    # Market data
    "Observable", "Observer", "LazyObject", "SimpleQuote",
    "Frequency", "Actual360", "Actual365Fixed", "ActualActual", "Thirty360",
    "add_months", "add_years", "Schedule",
    "FlatForward", "ZeroCurve", "BlackConstantVol", "BlackVarianceCurve",
    # Instruments
    "CALL", "PUT", "PlainVanillaPayoff", "CashOrNothingPayoff", "AssetOrNothingPayoff",
    "EuropeanExercise", "AmericanExercise", "BermudanExercise", "Results",
    "PricingEngine", "Instrument", "VanillaOption", "EuropeanOption",
    # Processes
    "BlackScholesMertonProcess", "BlackScholesProcess", "Discretization", "HestonProcess",
    # Black
    "black_formula", "black_implied_std_dev", "black_scholes_price",
    "black_scholes_implied_vol", "BlackCalculator", "AnalyticEuropeanEngine",
    # Heston
    "HestonModel", "PiecewiseTimeDependentHestonModel", "ComplexLogFormula",
    "Integration", "AnalyticHestonEngine", "AnalyticPTDHestonEngine",
    # Monte Carlo
    "MCConfig", "MCEuropeanEngine", "MCEuropeanHestonEngine", "MCDigitalEngine",
    # Asian
    "AverageType", "ContinuousAveragingAsianOption", "DiscreteAveragingAsianOption",
    "AnalyticContinuousGeometricAveragePriceAsianEngine",
    "AnalyticDiscreteGeometricAveragePriceAsianEngine",
    "AnalyticDiscreteGeometricAverageStrikeAsianEngine",
    "MCDiscreteArithmeticAPEngine",
    # Calibration
    "EndCriteria", "EndCriteriaType", "LevenbergMarquardt",
    "CalibrationErrorType", "HestonModelHelper",
    # Cash flows and bonds
    "SimpleCashFlow", "Redemption", "FixedRateCoupon", "FloatingRateCoupon", "IborCoupon",
    "fixed_rate_leg", "floating_rate_leg", "leg_npv", "leg_bps", "leg_accrued_amount",
    "Position", "Replication", "DigitalReplication", "BlackIborCouponPricer", "DigitalCoupon",
    "SIMPLE", "COMPOUNDED", "CONTINUOUS",
    "Bond", "FixedRateBond", "DiscountingBondEngine", "Swap", "AssetSwap",
    "DiscountingSwapEngine",
    # Cat bonds
    "EventSet", "BetaRisk", "NoOffset", "DigitalNotionalRisk", "ProportionalNotionalRisk",
    "CatBond", "FixedRateCatBond", "FloatingCatBond", "MonteCarloCatBondEngine",
    # Risk
    "numerical_greeks", "scenario_grid",
    # Validation
    "cross_validate_heston", "convergence_analysis",
]

__version__ = "0.4.0"
