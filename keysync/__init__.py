"""keysync: reconcile SendGrid API keys against a declared desired state."""

__version__ = "0.1.0"
