"""evno: watch a Solid inbox and surface new notifications as events."""

__version__ = "0.1.2"
