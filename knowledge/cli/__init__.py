"""CLI tools for the knowledge pipeline.

- ``python -m knowledge.cli``: ingest files, URLs and text; search;
  report stats; re-embed FAQs and migrate fallback chunks.
"""
