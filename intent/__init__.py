"""Intent package: catalog store, ranking, resolution pipelines, and API.

This package turns free text, photos, and PDF documents into a short list
of catalog services with estimated quantities and a one-line summary.
"""
