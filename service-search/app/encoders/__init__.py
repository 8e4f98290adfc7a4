"""Text encoders producing embeddings for chunks and queries."""
