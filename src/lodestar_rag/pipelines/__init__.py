"""lodestar_rag.pipelines

Pipeline orchestration components for the Lodestar RAG system.

Pipelines coordinate fetching, chunking, embedding and indexing. They are
stateless beyond their configured components, making them safe to reuse
across requests and execution contexts.

Modules
-------
ingestion_pipeline
    Source ingestion: fetch, chunk, embed, index and register.
"""
