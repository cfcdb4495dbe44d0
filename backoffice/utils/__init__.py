"""Request/response and persistence helpers shared across layers."""
