"""Image forgery-likelihood service: signal collectors, risk fusion and report assembly."""

__version__ = "0.1.0"
