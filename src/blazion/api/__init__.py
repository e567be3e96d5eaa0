"""HTTP surface: app factory, middleware, scheduler, and payload models."""
