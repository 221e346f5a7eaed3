"""Core application constants."""

# Time constants
MILLISECONDS_PER_SECOND = 1000

# Sales tax
DEFAULT_TAX_RATE = 7.5
