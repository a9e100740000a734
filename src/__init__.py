"""Scrinium: async data-access layer over MongoDB."""
