import argparse
import datetime as dt
import logging

from .black import AnalyticEuropeanEngine
from .calibration import EndCriteria, HestonModelHelper, LevenbergMarquardt
from .core import CALL, PUT, PlainVanillaPayoff, EuropeanExercise
from .dates import Actual365Fixed, add_months
from .heston import AnalyticHestonEngine, HestonModel, Integration
from .instruments import VanillaOption
from .montecarlo import MCConfig, MCEuropeanEngine, MCEuropeanHestonEngine
from .processes import BlackScholesMertonProcess, Discretization, HestonProcess
from .randomnumbers import PSEUDORANDOM, LOWDISCREPANCY
from .termstructures import FlatForward, BlackConstantVol

_RULES = ("laguerre", "legendre", "chebyshev", "chebyshev2nd",
          "lobatto", "kronrod", "simpson", "trapezoid")


def _kind(s: str):
    s = s.lower()
    if s in {"call", "c"}:
        return CALL
    if s in {"put", "p"}:
        return PUT
    raise argparse.ArgumentTypeError("kind must be 'call' or 'put'")


def _date(s: str) -> dt.date:
    try:
        return dt.date.fromisoformat(s)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not an ISO date: {s!r}") from exc


def _integration(name: str, order: int, tolerance: float) -> Integration:
    if name == "laguerre":
        return Integration.gauss_laguerre(order)
    if name == "legendre":
        return Integration.gauss_legendre(order)
    if name == "chebyshev":
        return Integration.gauss_chebyshev(order)
    if name == "chebyshev2nd":
        return Integration.gauss_chebyshev2nd(order)
    if name == "lobatto":
        return Integration.gauss_lobatto(tolerance, None)
    if name == "kronrod":
        return Integration.gauss_kronrod(tolerance)
    if name == "simpson":
        return Integration.simpson(tolerance)
    return Integration.trapezoid(tolerance)


def add_common(parser: argparse.ArgumentParser):
    parser.add_argument("--S0", type=float, required=True)
    parser.add_argument("--K", type=float, required=True)
    parser.add_argument("--T", type=float, required=True, help="years")
    parser.add_argument("--r", type=float, required=True, help="cont. risk-free")
    parser.add_argument("--q", type=float, default=0.0, help="cont. dividend yield")
    parser.add_argument("--kind", type=_kind, default=CALL, help="call|put")
    parser.add_argument("--today", type=_date, default=None, help="evaluation date (ISO)")


def add_heston(parser: argparse.ArgumentParser):
    parser.add_argument("--v0", type=float, default=0.04)
    parser.add_argument("--kappa", type=float, default=1.0)
    parser.add_argument("--theta", type=float, default=0.04)
    parser.add_argument("--xi", type=float, default=0.5, help="vol of variance")
    parser.add_argument("--rho", type=float, default=-0.7)


# --- market plumbing ----------------------------------------------------------
def _market(args):
    today = args.today or dt.date.today()
    dc = Actual365Fixed()
    maturity = today + dt.timedelta(days=max(1, round(args.T * 365)))
    r_ts = FlatForward(today, args.r, dc)
    q_ts = FlatForward(today, args.q, dc)
    option = VanillaOption(PlainVanillaPayoff(args.kind, args.K), EuropeanExercise(maturity))
    return today, dc, r_ts, q_ts, option


def _heston_process(args, r_ts, q_ts):
    scheme = getattr(args, "scheme", None) or Discretization.QuadraticExponentialMartingale.value
    return HestonProcess(r_ts, q_ts, args.S0, args.v0, args.kappa, args.theta,
                         args.xi, args.rho, Discretization(scheme))


def cmd_bs(args):
    today, dc, r_ts, q_ts, option = _market(args)
    vol_ts = BlackConstantVol(today, args.sigma, dc)
    process = BlackScholesMertonProcess(args.S0, q_ts, r_ts, vol_ts)
    option.set_pricing_engine(AnalyticEuropeanEngine(process))
    print(f"{option.npv():.10f}")
    for name in ("delta", "gamma", "vega", "theta", "rho"):
        print(f"  {name:<6} {option.result(name):.10f}")


def cmd_heston(args):
    _, _, r_ts, q_ts, option = _market(args)
    model = HestonModel(_heston_process(args, r_ts, q_ts))
    engine = AnalyticHestonEngine(model, integration=_integration(args.rule, args.order,
                                                                  args.tolerance))
    option.set_pricing_engine(engine)
    print(f"{option.npv():.10f}  ({engine.number_of_evaluations()} evaluations)")


def cmd_mc(args):
    today, dc, r_ts, q_ts, option = _market(args)
    config = MCConfig(
        steps_per_year=args.steps_per_year,
        samples=args.samples,
        seed=args.seed,
        antithetic=not args.no_antithetic,
        control_variate=args.control_variate,
        sequence_type=args.sequence,
    )
    if args.model == "heston":
        engine = MCEuropeanHestonEngine(_heston_process(args, r_ts, q_ts), config)
    else:
        vol_ts = BlackConstantVol(today, args.sigma, dc)
        engine = MCEuropeanEngine(BlackScholesMertonProcess(args.S0, q_ts, r_ts, vol_ts), config)
    option.set_pricing_engine(engine)
    print(f"{option.npv():.10f}  (stderr {option.error_estimate():.10f})")


def cmd_calibrate(args):
    today = args.today or dt.date.today()
    dc = Actual365Fixed()
    r_ts = FlatForward(today, args.r, dc)
    q_ts = FlatForward(today, args.q, dc)
    process = HestonProcess(r_ts, q_ts, args.S0, args.v0, args.kappa, args.theta,
                            args.xi, args.rho)
    model = HestonModel(process)
    engine = AnalyticHestonEngine(model, integration=Integration.gauss_laguerre(args.order))

    helpers = []
    for months in args.maturities:
        maturity = add_months(today, months)
        t = dc.year_fraction(today, maturity)
        fwd = args.S0 * q_ts.discount(t) / r_ts.discount(t)
        for m in (-1.0, 0.0, 1.0):
            strike = fwd * (1.0 + m * args.vol * t ** 0.5)
            h = HestonModelHelper(maturity, args.S0, strike, args.vol, r_ts, q_ts)
            h.set_pricing_engine(engine)
            helpers.append(h)

    result = model.calibrate(helpers, LevenbergMarquardt(),
                             EndCriteria(args.max_iterations, 40, 1e-8, 1e-8, 1e-8))
    print(f"end criteria: {result.end_criteria_type.name}")
    for name, value in zip(model.param_names, result.params):
        print(f"  {name:<6} {value:.8f}")
    print(f"  rms error {(sum(e * e for e in result.errors) / len(result.errors)) ** 0.5:.3e}")


def main(argv=None):
    p = argparse.ArgumentParser(prog="pricekit", description="Option pricing and calibration CLI")
    p.add_argument("--log-level", default="WARNING",
                   choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = p.add_subparsers(dest="cmd", required=True)

    # BS
    p_bs = sub.add_parser("bs", help="Black-Scholes price and greeks")
    add_common(p_bs)
    p_bs.add_argument("--sigma", type=float, required=True)
    p_bs.set_defaults(func=cmd_bs)

    # Heston (semi-analytic)
    p_h = sub.add_parser("heston", help="Heston price by Fourier integration")
    add_common(p_h)
    add_heston(p_h)
    p_h.add_argument("--rule", choices=_RULES, default="laguerre")
    p_h.add_argument("--order", type=int, default=128)
    p_h.add_argument("--tolerance", type=float, default=1e-8, help="adaptive rules only")
    p_h.set_defaults(func=cmd_heston)

    # Monte Carlo
    p_mc = sub.add_parser("mc", help="Monte Carlo price (BSM or Heston)")
    add_common(p_mc)
    add_heston(p_mc)
    p_mc.add_argument("--model", choices=["bsm", "heston"], default="bsm")
    p_mc.add_argument("--sigma", type=float, default=0.2, help="BSM vol")
    p_mc.add_argument("--scheme", choices=[d.value for d in Discretization], default=None)
    p_mc.add_argument("--samples", type=int, default=50_000)
    p_mc.add_argument("--steps-per-year", dest="steps_per_year", type=int, default=12)
    p_mc.add_argument("--seed", type=int, default=None)
    p_mc.add_argument("--sequence", choices=[PSEUDORANDOM, LOWDISCREPANCY], default=PSEUDORANDOM)
    p_mc.add_argument("--no-antithetic", action="store_true")
    p_mc.add_argument("--control-variate", action="store_true")
    p_mc.set_defaults(func=cmd_mc)

    # Calibration
    p_cal = sub.add_parser("calibrate", help="Heston calibration to a flat vol surface")
    p_cal.add_argument("--S0", type=float, default=1.0)
    p_cal.add_argument("--r", type=float, default=0.04)
    p_cal.add_argument("--q", type=float, default=0.0)
    p_cal.add_argument("--vol", type=float, default=0.1, help="flat implied vol")
    p_cal.add_argument("--maturities", type=int, nargs="+", default=[1, 3, 6, 12, 24],
                       help="months")
    p_cal.add_argument("--today", type=_date, default=None)
    p_cal.add_argument("--order", type=int, default=96)
    p_cal.add_argument("--max-iterations", dest="max_iterations", type=int, default=400)
    add_heston(p_cal)
    p_cal.set_defaults(func=cmd_calibrate)

    args = p.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level),
                        format="%(levelname)s %(name)s: %(message)s")
    args.func(args)


if __name__ == "__main__":
    main()
