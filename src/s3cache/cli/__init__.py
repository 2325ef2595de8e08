"""Command line interface for s3cache."""
