"""Appointment lifecycle, availability and conflict checks."""
