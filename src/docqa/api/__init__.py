"""HTTP surface of the document Q&A service."""
