"""CloudBox - pair cloud endpoints with a key identity and a PIN."""

__version__ = "0.1.0"
