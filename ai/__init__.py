"""Model clients: query embedding, generation, and constrained extraction."""
