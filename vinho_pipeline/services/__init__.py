"""Application services: AI extraction and embeddings."""
