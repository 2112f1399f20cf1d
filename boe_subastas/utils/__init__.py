"""HTTP session and checksum helpers."""
