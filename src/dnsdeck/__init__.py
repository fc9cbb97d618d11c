"""dnsdeck - safe configuration changes for an Unbound DNS appliance."""

__version__ = "0.1.0"
