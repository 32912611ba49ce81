"""Services for the Sandbox Pool service."""
