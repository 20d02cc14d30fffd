"""Command groups of the GenoRing CLI."""
