"""FreightMatch: load/carrier matching engine for a freight marketplace."""

__version__ = "0.1.0"
