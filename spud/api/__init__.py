"""Wire models and HTTP adapters."""
