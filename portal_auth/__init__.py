"""Portal auth: session reconciliation and just-in-time profile provisioning."""

__version__ = "0.1.0"
