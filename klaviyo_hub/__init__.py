"""Klaviyo Hub: cross-account Klaviyo profile mirror"""

__version__ = "0.3.0"
