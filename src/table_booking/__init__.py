"""Restaurant table booking with automatic admission control and waitlist promotion."""

__version__ = "1.0.0"
