"""
Local scoring backend: produces the pipeline's event stream in-process.

This module orchestrates one full analysis run and yields typed events as
each stage progresses. It is the in-process counterpart of the remote
streaming endpoint and emits the same event kinds in the same order:

    started
    step_started(1) embedding_info embedding_batch* step_complete(1)
    step_started(2) document_aggregate step_complete(2)
    step_started(3) chunk_scored* step_complete(3)
    step_started(4) coverage_calculated step_complete(4)
    step_started(5) diagnostic_progress* step_complete(5)
    complete

Any failure after the run has started is reported as a final error event
rather than raised, so consumers see partial progress and the reason.
Input validation failures raise BackendError before anything is emitted.

Design Principles:
- Orchestration only: math lives in similarity, heuristics in diagnostics
- Deterministic for a given embedder
- The embedder is injected; nothing here knows which model is used
"""

from typing import Iterator, List, Optional, Sequence

from loguru import logger

from covercheck.core.diagnostics import diagnose_pair
from covercheck.core.embeddings import (
    MAX_CHARS_PER_BATCH,
    Embedder,
    iter_embedding_batches,
)
from covercheck.core.events import (
    AnalysisSummary,
    ChunkScoreRow,
    ChunkScoredEvent,
    CompleteEvent,
    CoverageCalculatedEvent,
    CoverageMapEntry,
    CoverageSummary,
    DiagnosticProgressEvent,
    DocumentAggregateEvent,
    EmbeddingBatchEvent,
    EmbeddingInfoEvent,
    ErrorEvent,
    PipelineEvent,
    QueryChunkScore,
    StartedEvent,
    StepCompleteEvent,
    StepStartedEvent,
    encode_sse,
)
from covercheck.core.models import ChunkInput, Vector
from covercheck.core.pipeline import INITIAL_STAGES, STAGE_NAMES
from covercheck.core.similarity import (
    chamfer_similarity,
    compute_similarity_matrix,
    passage_score,
)
from covercheck.core.tiers import aggregate_interpretation


# Coverage map thresholds on cosine * 100
COVERED_THRESHOLD = 70
WEAK_THRESHOLD = 50

# Emit diagnostic progress every N pairs (and on the last pair)
DIAGNOSTIC_PROGRESS_EVERY = 10


class BackendError(Exception):
    """Raised when a local analysis run is given invalid input."""
    pass


def clean_queries(queries: Sequence[str]) -> List[str]:
    """Drop blank queries, keeping order."""
    return [q for q in queries if q and q.strip()]


def _validate(chunks: Sequence[ChunkInput], queries: Sequence[str]) -> None:
    if not chunks:
        raise BackendError("No chunks provided")
    if not queries:
        raise BackendError("No queries provided")


def coverage_status(score_percent: float) -> str:
    """covered / weak / gap label for a best-chunk cosine * 100."""
    if score_percent >= COVERED_THRESHOLD:
        return "covered"
    elif score_percent >= WEAK_THRESHOLD:
        return "weak"
    else:
        return "gap"


def analyze_chunks_stream(
    chunks: Sequence[ChunkInput],
    queries: Sequence[str],
    document: str,
    embedder: Embedder,
    max_chars: int = MAX_CHARS_PER_BATCH,
) -> Iterator[PipelineEvent]:
    """
    Run the five-stage analysis and yield events as it progresses.

    Args:
        chunks: Chunks in document order
        queries: Query texts; blank entries are dropped
        document: The full original document text
        embedder: Embedding provider
        max_chars: Character budget per embedding batch

    Yields:
        PipelineEvent instances, ending in CompleteEvent or ErrorEvent

    Raises:
        BackendError: If there are no chunks or no non-blank queries
    """
    queries = clean_queries(queries)
    _validate(chunks, queries)
    yield from _run(list(chunks), queries, document, embedder, max_chars)


def _run(
    chunks: List[ChunkInput],
    queries: List[str],
    document: str,
    embedder: Embedder,
    max_chars: int,
) -> Iterator[PipelineEvent]:
    total_pairs = len(chunks) * len(queries)
    logger.info(f"Starting analysis: {len(chunks)} chunks x {len(queries)} queries")

    yield StartedEvent(
        steps=INITIAL_STAGES,
        total_chunks=len(chunks),
        total_queries=len(queries),
        total_pairs=total_pairs,
    )

    try:
        # ---- Stage 1: embeddings ------------------------------------------
        yield StepStartedEvent(step=1, name=STAGE_NAMES[0])

        texts = [document] + [c.text for c in chunks] + list(queries)
        dimensions = embedder.dimensions
        yield EmbeddingInfoEvent(
            total_texts=len(texts),
            breakdown={
                "originalContent": 1,
                "chunks": len(chunks),
                "queries": len(queries),
            },
            model=embedder.model_name,
            dimensions=dimensions,
        )

        embeddings: List[Vector] = []
        for number, total, processed, batch_vectors in iter_embedding_batches(
            embedder, texts, max_chars
        ):
            embeddings.extend(batch_vectors)
            yield EmbeddingBatchEvent(
                batch=number,
                total_batches=total,
                texts_processed=processed,
                total_texts=len(texts),
            )

        yield StepCompleteEvent(
            step=1,
            name=STAGE_NAMES[0],
            payload={"totalEmbeddings": len(embeddings), "dimensions": dimensions},
        )

        chunk_vecs = embeddings[1:1 + len(chunks)]
        query_vecs = embeddings[1 + len(chunks):]

        # ---- Stage 2: document aggregate ----------------------------------
        yield StepStartedEvent(step=2, name=STAGE_NAMES[1])

        aggregate = chamfer_similarity(chunk_vecs, query_vecs)
        yield DocumentAggregateEvent(
            score=aggregate,
            interpretation=aggregate_interpretation(aggregate),
            chunk_count=len(chunks),
            query_count=len(queries),
        )
        yield StepCompleteEvent(step=2, name=STAGE_NAMES[1])

        # ---- Stage 3: chunk scoring ---------------------------------------
        yield StepStartedEvent(step=3, name=STAGE_NAMES[2])

        # matrix[q, c] = cosine(query q, chunk c)
        matrix = compute_similarity_matrix(query_vecs, chunk_vecs)
        rows: List[ChunkScoreRow] = []
        for ci, chunk in enumerate(chunks):
            scores = tuple(
                QueryChunkScore(
                    query=query,
                    cosine=float(matrix[qi, ci]),
                    passage_score=float(passage_score(matrix[qi, ci])),
                )
                for qi, query in enumerate(queries)
            )
            # First query wins ties
            best = max(scores, key=lambda s: s.passage_score)
            row = ChunkScoreRow(
                chunk_index=ci,
                chunk_id=chunk.id,
                heading=chunk.heading,
                scores=scores,
                best_query=best.query,
                best_score=best.passage_score,
            )
            rows.append(row)
            yield ChunkScoredEvent(
                chunk_index=ci,
                chunk_id=chunk.id,
                heading=row.heading,
                best_query=best.query,
                best_score=best.passage_score,
                per_query_scores=scores,
            )

        yield StepCompleteEvent(
            step=3, name=STAGE_NAMES[2], payload={"chunksScored": len(chunks)}
        )

        # ---- Stage 4: coverage mapping ------------------------------------
        yield StepStartedEvent(step=4, name=STAGE_NAMES[3])

        coverage_map: List[CoverageMapEntry] = []
        for qi, query in enumerate(queries):
            best_chunk = int(matrix[qi].argmax())
            best_cosine = max(0.0, float(matrix[qi, best_chunk]))
            score_percent = best_cosine * 100
            coverage_map.append(CoverageMapEntry(
                query=query,
                best_chunk_index=best_chunk,
                best_chunk_heading=chunks[best_chunk].heading,
                score=score_percent,
                status=coverage_status(score_percent),
            ))

        summary = CoverageSummary(
            covered=sum(1 for e in coverage_map if e.status == "covered"),
            weak=sum(1 for e in coverage_map if e.status == "weak"),
            gaps=sum(1 for e in coverage_map if e.status == "gap"),
            total_queries=len(coverage_map),
        )
        yield CoverageCalculatedEvent(summary=summary, map=tuple(coverage_map))
        yield StepCompleteEvent(step=4, name=STAGE_NAMES[3])

        # ---- Stage 5: diagnostics -----------------------------------------
        yield StepStartedEvent(step=5, name=STAGE_NAMES[4])

        diagnostics = []
        processed = 0
        for ci, chunk in enumerate(chunks):
            for qi, query in enumerate(queries):
                diagnostics.append(diagnose_pair(
                    chunk_index=ci,
                    chunk_text=chunk.text,
                    body_text=chunk.text_without_cascade,
                    heading_path=chunk.heading_path,
                    query=query,
                    semantic=rows[ci].scores[qi].passage_score / 100,
                ))
                processed += 1
                if processed % DIAGNOSTIC_PROGRESS_EVERY == 0 or processed == total_pairs:
                    yield DiagnosticProgressEvent(
                        pairs_processed=processed, total_pairs=total_pairs
                    )

        yield StepCompleteEvent(
            step=5, name=STAGE_NAMES[4], payload={"pairsScored": len(diagnostics)}
        )

        avg_best = sum(r.best_score for r in rows) / len(rows)
        logger.info(
            f"Analysis complete: aggregate={aggregate:.3f}, avg best passage score={avg_best:.1f}"
        )
        yield CompleteEvent(
            summary=AnalysisSummary(
                total_chunks=len(chunks),
                total_queries=len(queries),
                document_aggregate_score=aggregate,
                coverage=summary,
                avg_passage_score=round(avg_best, 1),
            ),
            chunk_scores=tuple(rows),
            coverage_map=tuple(coverage_map),
            diagnostics=tuple(diagnostics),
        )
    except Exception as e:
        logger.error(f"Analysis failed: {e}")
        yield ErrorEvent(message=str(e) or "Analysis failed")


def stream_sse(
    chunks: Sequence[ChunkInput],
    queries: Sequence[str],
    document: str,
    embedder: Embedder,
) -> Iterator[str]:
    """The same run, serialized as SSE frames (for serving over HTTP)."""
    for event in analyze_chunks_stream(chunks, queries, document, embedder):
        yield encode_sse(event)
