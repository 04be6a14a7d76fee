"""Command-line interface for imageservice_mbtiles."""
