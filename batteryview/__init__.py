"""Battery dashboard core: BMS screenshot extraction, hourly series and AI advisory."""

__version__ = "0.1.0"
