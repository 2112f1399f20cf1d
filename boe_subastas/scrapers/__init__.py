"""Candidate discovery and detail-page walking."""
