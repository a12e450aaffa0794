"""Brand-protection monitoring of certificate transparency logs: configuration, pipeline engine, in-memory storage and command line."""

__version__ = "0.1.0.dev0"