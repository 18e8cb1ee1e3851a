"""Code review analysis built on top of the retrieval core."""
