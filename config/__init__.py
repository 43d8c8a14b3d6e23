"""Static catalog data used by the offline snapshot builder."""
