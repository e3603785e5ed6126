"""Pull-request dashboard aggregation backend for GitHub organizations."""

__version__ = "0.1.0"
