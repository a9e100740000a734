"""Core application constants."""

# Time constants
MILLISECONDS_PER_SECOND = 1000

# Security and redaction
REDACTED = "[REDACTED]"

# UTC stamp written by connection diagnostics, e.g. "2024-05-01 03:07:09 PM"
LOG_TIMESTAMP_FORMAT = "%Y-%m-%d %I:%M:%S %p"
