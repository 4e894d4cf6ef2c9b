"""amiforge - declarative lifecycle management for EC2 machine images."""

__version__ = "0.1.0"
