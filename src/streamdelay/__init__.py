"""streamdelay - delayed live stream relay with operator-controlled censorship."""

__version__ = "0.1.0"
