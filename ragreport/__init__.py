# ragreport package initializer
"""
This package contains all core modules for the RAG report generator:
- core: Settings, logging and the error taxonomy
- storage: Workspace blob store and the FAISS vector index with its docstore
- embeddings: Embedding providers (sentence-transformers, OpenAI, Azure OpenAI)
- ingestion: Document loading, chunking and incremental indexing
- retrieval: Top-k context retrieval for report questions
- generation: Prompt bank, completion providers, results log, generation and modification engines
- export: HTML rendering of the latest answer per section
- workspaces: Workspace lifecycle facade with per-workspace locking
- api: FastAPI endpoints

The architecture is modular so each stage can be developed and tested independently.
"""

__version__ = "1.0.0"
