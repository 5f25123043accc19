"""ClipSync Relay: encrypted clipboard store-and-forward for paired devices."""

__version__ = "0.1.0"
