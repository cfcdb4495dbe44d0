"""Cross-cutting primitives: typed errors, auth context, action results."""
