"""Background worker reconciling pending orders with the payment gateway."""

__version__ = "1.0.0"
