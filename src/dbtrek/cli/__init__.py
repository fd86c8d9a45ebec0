"""Command line interface for dbtrek."""
