"""Content mirroring: source adapters, local store, reconciliation, and ranking."""
