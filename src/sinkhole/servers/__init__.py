"""Client-facing server, query lifecycle, and the iterative resolver loop."""
