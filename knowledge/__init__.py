"""Knowledge pipeline: document ingestion and retrieval-augmented search.

Sources (files, URLs, raw text) are extracted, chunked, embedded and stored
in a vector store per tenant.  :mod:`knowledge.services.retrieval` turns a
query into a ranked, prompt-ready context.
"""

__version__ = "0.1.0"
