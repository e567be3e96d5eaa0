"""In-process guards that make sync passes safe to expose over HTTP."""
