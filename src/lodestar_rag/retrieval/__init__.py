"""lodestar_rag.retrieval

Chunking, embedding, indexing and ranking components.

Submodules are imported explicitly by their callers; this package module
performs no imports so that light modules (e.g. :mod:`languages`) can be
used without loading the embedding and vector store stacks.

Modules
-------
segment_splitter
    Offset-based splitting primitives (windows, break points, headings).
languages
    Language detection, structure patterns and dependency extraction.
text_splitter
    The chunking engine.
similarity
    Cosine similarity, MMR ordering and heuristic scoring.
reranker
    Adaptive-threshold reranking of candidate matches.
retriever
    Query-time orchestration over an embedder and a vector store.
embedder
    Embedding provider wrappers and factory.
vector_store
    Qdrant and in-memory similarity indexes.
embedding_cache
    Bounded query-embedding cache.
document_loader
    Local directory and documentation site fetchers.
source_registry
    JSON record of indexed sources.
types
    Collaborator protocols.
"""
