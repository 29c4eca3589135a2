"""Exceptions raised by the synthetic arbitrage core."""


class SyntheticArbError(Exception):
    """Base class for engine errors."""


class InvalidInputError(SyntheticArbError, ValueError):
    """Malformed statistical input (empty, unequal length, non-finite)."""


class MalformedTickError(SyntheticArbError, ValueError):
    """Tick pair that cannot be compared (e.g. different games)."""
