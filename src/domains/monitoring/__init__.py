"""Post-authorization chargeback monitoring domain."""
