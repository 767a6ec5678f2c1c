# lodestar_rag/app/api.py
from __future__ import annotations

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field
from lodestar_rag.config import GlobalConfig
from lodestar_rag.app.container import build_container
from lodestar_rag.app.formatting import format_results_for_display
from lodestar_rag.common.errors import FetchError, LodestarError
from lodestar_rag.common.schemas import IngestionReport, RankedResult, SourceInfo
from lodestar_rag.retrieval.document_loader import (
    DocumentationSiteFetcher,
    GitHubRepositoryFetcher,
    LocalSourceFetcher,
)
import logging
from typing import Any

app = FastAPI(title="Lodestar RAG API", version="0.1.0")
logger = logging.getLogger("lodestar_rag.api")


class SearchRequest(BaseModel):
    query: str
    max_results: int | None = Field(default=None, ge=1, le=50)
    sources: list[str] | None = None
    threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    strategy: str | None = None
    diversity: float | None = Field(default=None, ge=0.0, le=1.0)
    max_per_source: int | None = Field(default=None, ge=1)
    include_code: bool = True
    include_docs: bool = True
    adaptive_threshold: bool | None = None


class ResultItem(BaseModel):
    rank: int
    content: str
    score: float
    source_url: str
    source_path: str | None = None
    source_title: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class SearchResponse(BaseModel):
    success: bool
    message: str
    results: list[ResultItem] = Field(default_factory=list)
    threshold_used: float | None = None
    search_time: float = 0.0
    formatted: str = ""


class IndexLocalRequest(BaseModel):
    path: str
    include: list[str] | None = None
    exclude: list[str] | None = None
    max_file_size: int | None = Field(default=None, ge=1)
    title: str | None = None


class IndexGitHubRequest(BaseModel):
    url: str
    branch: str | None = None
    include: list[str] | None = None
    exclude: list[str] | None = None
    max_file_size: int | None = Field(default=None, ge=1)
    title: str | None = None


class IndexDocsRequest(BaseModel):
    url: str
    max_pages: int = Field(default=50, ge=1)
    max_depth: int = Field(default=2, ge=0)
    only_main_content: bool = True
    title: str | None = None


class SourceItem(BaseModel):
    id: str
    url: str
    kind: str
    title: str | None = None
    indexed_at: str | None = None
    chunk_count: int = 0
    status: str = "indexed"
    error: str | None = None


class IndexResponse(BaseModel):
    success: bool
    message: str
    source: SourceItem
    documents: int = 0
    chunks: int = 0
    estimated_tokens: int = 0
    warnings: list[str] = Field(default_factory=list)


def _serialize_results(results: list[RankedResult]) -> list[ResultItem]:
    return [
        ResultItem(
            rank=idx,
            content=r.content,
            score=float(r.score),
            source_url=r.source.url,
            source_path=r.source.path,
            source_title=r.source.title,
            metadata=dict(r.metadata),
        )
        for idx, r in enumerate(results, start=1)
    ]


def _serialize_source(info: SourceInfo) -> SourceItem:
    return SourceItem(**vars(info))


def _serialize_report(report: IngestionReport) -> IndexResponse:
    return IndexResponse(
        success=report.success,
        message=report.message,
        source=_serialize_source(report.source),
        documents=report.documents,
        chunks=report.chunks,
        estimated_tokens=report.estimated_tokens,
        warnings=list(report.warnings),
    )


def _internal_error(route: str, e: Exception) -> HTTPException:
    logger.exception("Error while handling %s", route)
    return HTTPException(status_code=500, detail={"error": f"{type(e).__name__}: {e}"})


@app.on_event("startup")
def startup():
    # Use env var so Docker can pass config location
    import os
    cfg_path = os.environ.get("LODESTAR_CONFIG", "/app/config/config.yaml")
    cfg = GlobalConfig.load(cfg_path)
    app.state.container = build_container(cfg)


@app.get("/health")
def health():
    container = app.state.container
    embedder_ok = container.embedder.health_check()
    store_ok = container.vector_store.health_check()
    return {
        "status": "ok" if embedder_ok and store_ok else "degraded",
        "embedder": embedder_ok,
        "vector_store": store_ok,
    }


@app.post("/v1/search", response_model=SearchResponse)
def search(req: SearchRequest):
    container = app.state.container
    try:
        query = container.build_query(
            req.query,
            max_results=req.max_results,
            sources=tuple(req.sources) if req.sources else None,
            threshold=req.threshold,
            strategy=req.strategy,
            diversity=req.diversity,
            max_per_source=req.max_per_source,
            include_code=req.include_code,
            include_docs=req.include_docs,
            adaptive_threshold=req.adaptive_threshold,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        outcome = container.retriever.retrieve(query)
    except Exception as e:
        raise _internal_error("/v1/search", e)

    return SearchResponse(
        success=outcome.success,
        message=outcome.message,
        results=_serialize_results(outcome.results),
        threshold_used=outcome.threshold_used,
        search_time=outcome.search_time,
        formatted=format_results_for_display(outcome.results) if outcome.success else "",
    )


@app.post("/v1/index/local", response_model=IndexResponse)
def index_local(req: IndexLocalRequest):
    kwargs: dict[str, Any] = {"include": req.include, "exclude": req.exclude}
    if req.max_file_size is not None:
        kwargs["max_file_size"] = req.max_file_size
    fetcher = LocalSourceFetcher(req.path, **kwargs)
    try:
        report = app.state.container.pipeline.ingest(
            fetcher.source_url, fetcher=fetcher, title=req.title or req.path, kind="local",
        )
    except Exception as e:
        raise _internal_error("/v1/index/local", e)
    return _serialize_report(report)


@app.post("/v1/index/github", response_model=IndexResponse)
def index_github(req: IndexGitHubRequest):
    container = app.state.container
    kwargs: dict[str, Any] = {"branch": req.branch, "include": req.include, "exclude": req.exclude}
    if req.max_file_size is not None:
        kwargs["max_file_size"] = req.max_file_size
    try:
        fetcher = GitHubRepositoryFetcher.from_config_dict(req.url, container.config.github, **kwargs)
    except FetchError as e:
        raise HTTPException(status_code=422, detail=e.message)
    try:
        report = container.pipeline.ingest(
            fetcher.source_url, fetcher=fetcher, title=req.title or fetcher.repository, kind="github",
        )
    except Exception as e:
        raise _internal_error("/v1/index/github", e)
    return _serialize_report(report)


@app.post("/v1/index/docs", response_model=IndexResponse)
def index_docs(req: IndexDocsRequest):
    fetcher = DocumentationSiteFetcher(
        req.url,
        max_pages=req.max_pages,
        max_depth=req.max_depth,
        only_main_content=req.only_main_content,
    )
    try:
        report = app.state.container.pipeline.ingest(
            fetcher.url, fetcher=fetcher, title=req.title, kind="documentation",
        )
    except Exception as e:
        raise _internal_error("/v1/index/docs", e)
    return _serialize_report(report)


@app.get("/v1/sources", response_model=list[SourceItem])
def list_sources():
    return [_serialize_source(s) for s in app.state.container.pipeline.list_sources()]


@app.delete("/v1/sources/{source_id}", response_model=SourceItem)
def delete_source(source_id: str):
    try:
        removed = app.state.container.pipeline.delete_source(source_id)
    except LodestarError as e:
        logger.warning("Could not delete source %s: %s", source_id, e)
        raise HTTPException(status_code=502, detail={"error": e.message, "code": e.code})
    except Exception as e:
        raise _internal_error(f"/v1/sources/{source_id}", e)
    if removed is None:
        raise HTTPException(status_code=404, detail=f"Unknown source id {source_id!r}")
    return _serialize_source(removed)
