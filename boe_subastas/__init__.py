"""BOE subastas supervised scraper."""
