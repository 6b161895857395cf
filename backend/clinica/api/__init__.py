"""HTTP surface of the clinic backend."""
