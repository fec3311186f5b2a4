"""Wire protocol: message types and JSON codec."""
