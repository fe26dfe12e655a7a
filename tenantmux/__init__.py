"""tenantmux - one process, many tenants, one open stream each."""

__version__ = "0.1.0"
