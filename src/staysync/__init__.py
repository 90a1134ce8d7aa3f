"""StaySync: OTA calendar sync, feed export and cleaning auto-assignment."""

__version__ = "0.1.0"
