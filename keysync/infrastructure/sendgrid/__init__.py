"""SendGrid adapters for the domain ports."""
