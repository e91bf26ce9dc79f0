"""Server-side conversion relay service."""
