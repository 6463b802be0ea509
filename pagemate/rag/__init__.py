"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Flattening scraped pages into structured text
- Paragraph and sentence aware chunking
- Hashed bag-of-words embeddings
- SQLite chunk storage with a FAISS index cache
- Vector and lexical similarity search
"""
