"""Dispute evidence package domain."""
