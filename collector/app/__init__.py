"""Tracker event ingestion service."""
