# quotes.py
# Observable market quotes and lazily recomputed dependents.
#
# A quote change is pushed to registered observers, which only flip a
# dirty flag; the expensive recomputation happens on the next read.

from __future__ import annotations
import math
import weakref

from .errors import ConfigurationError

__all__ = ["Observable", "Observer", "SimpleQuote", "LazyObject", "as_quote"]


# ---------------------------------------------------------------------------
# Observer plumbing
# ---------------------------------------------------------------------------
class Observable:
    """Keeps weak references to observers and notifies them on change."""

    def __init__(self):
        self._observers: list[weakref.ref] = []

    def register_observer(self, observer: "Observer") -> None:
        if not any(ref() is observer for ref in self._observers):
            self._observers.append(weakref.ref(observer))

    def unregister_observer(self, observer: "Observer") -> None:
        self._observers = [ref for ref in self._observers
                           if ref() is not None and ref() is not observer]

    def notify_observers(self) -> None:
        alive = []
        for ref in self._observers:
            obs = ref()
            if obs is not None:
                alive.append(ref)
                obs.update()
        self._observers = alive


class Observer:
    """Mixin for objects that react to ``Observable`` notifications."""

    def register_with(self, *observables) -> None:
        for obs in observables:
            if isinstance(obs, Observable):
                obs.register_observer(self)

    def update(self) -> None:
        raise NotImplementedError


class LazyObject(Observable, Observer):
    """Observer that recomputes on demand after being marked dirty.

    Subclasses implement ``perform_calculations``; callers go through
    ``calculate``.  Notifications are forwarded so chains of curves,
    processes and instruments all invalidate together.
    """

    def __init__(self):
        Observable.__init__(self)
        self._calculated = False
        self._calculating = False

    def update(self) -> None:
        self._calculated = False
        self.notify_observers()

    def calculate(self) -> None:
        if not self._calculated and not self._calculating:
            self._calculating = True
            try:
                self.perform_calculations()
                self._calculated = True
            finally:
                self._calculating = False

    def recalculate(self) -> None:
        self._calculated = False
        self.calculate()

    def perform_calculations(self) -> None:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Quotes
# ---------------------------------------------------------------------------
class SimpleQuote(Observable):
    """Mutable scalar market observable (spot, rate, vol...)."""

    def __init__(self, value: float | None = None):
        super().__init__()
        self._value = None if value is None else float(value)

    def value(self) -> float:
        if self._value is None:
            raise ConfigurationError("invalid SimpleQuote: no value set")
        return self._value

    def set_value(self, value: float | None) -> float:
        """Set a new value; returns the change and notifies observers."""
        new = None if value is None else float(value)
        old = self._value
        if new != old:
            self._value = new
            self.notify_observers()
        if new is None or old is None:
            return math.nan
        return new - old

    def is_valid(self) -> bool:
        return self._value is not None

    def __repr__(self):
        return f"SimpleQuote({self._value!r})"


def as_quote(x) -> SimpleQuote:
    """Wrap a plain number in a ``SimpleQuote``; pass quotes through."""
    if isinstance(x, SimpleQuote):
        return x
    return SimpleQuote(float(x))
