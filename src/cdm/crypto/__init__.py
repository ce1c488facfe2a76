"""Stateless cryptographic primitives. Nothing here logs or keeps key material."""
