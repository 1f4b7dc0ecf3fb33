"""Backend connectors for the credential plugin."""
