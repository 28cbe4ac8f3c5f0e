"""JSON API behind the archive viewer."""
