"""Clients for external collaborators: bureau, geolocation, disputes, delivery records."""
