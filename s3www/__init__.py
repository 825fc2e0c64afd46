"""s3www - serve static files straight from an S3-compatible bucket."""

__version__ = "0.1.0"
