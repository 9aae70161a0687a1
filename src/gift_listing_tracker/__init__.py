"""Gift Listing Tracker - real-time TON gift listing alerts."""

__version__ = "0.1.0"
