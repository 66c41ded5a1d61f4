"""Figma integration: relay fetch layer, REST client and page importer."""
