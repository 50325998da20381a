"""Application modules.

- auth: Bearer token verification
- ingestion: Upload processing pipeline
- video: Catalog and HTTP API
"""
