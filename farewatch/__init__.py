"""farewatch – round-trip flight price tracker."""

__version__ = "0.3.0"
