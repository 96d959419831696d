"""Core contracts, accounting and ambient services for nftstake."""
