"""Tests for the command-line interface."""

import pytest

from pricekit.cli import main

COMMON = ["--S0", "100", "--K", "100", "--T", "1", "--r", "0.05", "--today", "2024-01-02"]


def _first_number(text):
    return float(text.split()[0])


class TestBS:
    def test_price_and_greeks(self, capsys):
        main(["bs", *COMMON, "--sigma", "0.2"])
        out = capsys.readouterr().out
        assert abs(_first_number(out) - 10.4505835722) < 1e-9
        for name in ("delta", "gamma", "vega", "theta", "rho"):
            assert name in out

    def test_put(self, capsys):
        main(["bs", *COMMON, "--sigma", "0.2", "--kind", "put"])
        assert abs(_first_number(capsys.readouterr().out) - 5.5735260223) < 1e-9

    def test_bad_kind(self):
        with pytest.raises(SystemExit):
            main(["bs", *COMMON, "--sigma", "0.2", "--kind", "straddle"])

    def test_bad_date(self):
        with pytest.raises(SystemExit):
            main(["bs", "--S0", "100", "--K", "100", "--T", "1", "--r", "0.05",
                  "--sigma", "0.2", "--today", "01/02/2024"])


class TestHeston:
    def test_rules_agree(self, capsys):
        prices = {}
        for rule in ("laguerre", "legendre", "kronrod"):
            order = "128" if rule == "laguerre" else "512"
            main(["heston", *COMMON, "--rule", rule, "--order", order])
            out = capsys.readouterr().out
            assert "evaluations" in out
            prices[rule] = _first_number(out)
        assert abs(prices["legendre"] - prices["laguerre"]) < 1e-3
        assert abs(prices["kronrod"] - prices["laguerre"]) < 1e-3


class TestMC:
    def test_bsm(self, capsys):
        main(["mc", *COMMON, "--sigma", "0.2", "--samples", "20000", "--seed", "3",
              "--steps-per-year", "1"])
        out = capsys.readouterr().out
        price = _first_number(out)
        stderr = float(out.split("stderr")[1].strip(" )\n"))
        assert abs(price - 10.4505835722) < 3.0 * stderr

    def test_heston_control_variate(self, capsys):
        main(["mc", *COMMON, "--model", "heston", "--samples", "5000", "--seed", "3",
              "--control-variate", "--scheme", "full_truncation"])
        assert _first_number(capsys.readouterr().out) > 0.0


class TestCalibrate:
    def test_runs_and_reports(self, capsys):
        main(["calibrate", "--today", "2024-01-02", "--maturities", "6", "12",
              "--max-iterations", "60", "--order", "64"])
        out = capsys.readouterr().out
        assert out.startswith("end criteria:")
        for name in ("theta", "kappa", "sigma", "rho", "v0"):
            assert name in out
        assert "rms error" in out
