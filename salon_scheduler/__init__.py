"""Appointment slot availability and booking ledger for salon/spa services."""

__version__ = "0.1.0"
