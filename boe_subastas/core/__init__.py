"""Pure detection, extraction and normalization helpers."""
