"""Institution tournament bracket and room-allocation engine."""

__version__ = "1.0.0"
