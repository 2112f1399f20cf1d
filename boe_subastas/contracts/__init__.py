"""Record contracts shared between pipeline stages."""
