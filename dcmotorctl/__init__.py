"""Wire protocol, serial host client and controller-side logic model for a four-channel DC motor controller."""

__version__ = "0.1.0"

__all__ = ["device", "framing", "handler", "host", "i2c", "protocol"]