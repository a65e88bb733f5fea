"""
CoverCheck - Interactive Streamlit Playground

A thin UI over covercheck.core: paste a markdown document and a list of
queries, run the staged scoring pipeline, and review the resulting
coverage worklist.

Usage:
    streamlit run app.py

Design Principles:
- Thin UI layer: all scoring and assignment logic lives in covercheck.core
- Explicit actions: the user triggers each run manually
- Inspectable: expose per-stage progress and per-chunk scores
- No persistence: session resets on reload
"""

import asyncio

import streamlit as st
from loguru import logger

from covercheck.config import get_settings
from covercheck.core.chunker import ChunkingConfig, ChunkingError, chunk_markdown
from covercheck.core.coordinator import CoordinatorError, StreamingCoordinator
from covercheck.core.coverage import build_work_items, coverage_summary
from covercheck.core.embeddings import SentenceTransformerEmbedder
from covercheck.core.events import StageStatus
from covercheck.core.export import (
    chunk_scores_frame,
    coverage_map_frame,
    diagnostics_frame,
    work_items_frame,
)
from covercheck.core.models import QueryStatus
from covercheck.logging_setup import configure_logging


STAGE_ICONS = {
    StageStatus.PENDING: "⚪",
    StageStatus.RUNNING: "🔄",
    StageStatus.COMPLETE: "✅",
}

STATUS_BADGES = {
    QueryStatus.OPTIMIZED: "🟢 optimized",
    QueryStatus.IN_PROGRESS: "🔵 in progress",
    QueryStatus.READY: "🟡 ready",
    QueryStatus.GAP: "🔴 gap",
}


# =============================================================================
# Session State Initialization
# =============================================================================

def init_session_state():
    """
    Initialize session state variables.

    Session state tracks:
    - chunks: Chunk inputs from the last run
    - result: AnalysisResult from the last successful run
    - work_items: Coverage worklist built from the result
    - status_message / error_message: Feedback for the user
    """
    defaults = {
        "chunks": [],
        "result": None,
        "work_items": [],
        "status_message": "",
        "error_message": "",
        "has_seen_intro": False,
    }
    for key, value in defaults.items():
        if key not in st.session_state:
            st.session_state[key] = value


def clear_results():
    st.session_state.chunks = []
    st.session_state.result = None
    st.session_state.work_items = []
    st.session_state.status_message = ""
    st.session_state.error_message = ""


@st.cache_resource
def get_embedder(model_name: str) -> SentenceTransformerEmbedder:
    """One embedder per model for the whole server process."""
    return SentenceTransformerEmbedder(model_name)


# =============================================================================
# Backend Integration
# =============================================================================

def parse_queries(raw: str) -> list:
    """One query per non-blank line."""
    return [line.strip() for line in raw.splitlines() if line.strip()]


def render_stages(placeholder, state):
    """Draw the five pipeline stages with their current status."""
    lines = [f"{STAGE_ICONS[s.status]} {s.id}. {s.name}" for s in state.steps]
    if state.embedding_progress is not None:
        p = state.embedding_progress
        lines.append(f"Embedded {p.texts_processed}/{p.total_texts} texts")
    if state.diagnostic_progress is not None:
        p = state.diagnostic_progress
        lines.append(f"Diagnostics {p.pairs_processed}/{p.total_pairs} pairs")
    placeholder.markdown("  \n".join(lines))


def run_analysis(document: str, queries: list, max_tokens: int, use_remote: bool) -> bool:
    """
    Chunk the document, run the scoring pipeline and build the worklist.

    Returns True on success, False on error.
    """
    settings = get_settings()
    st.session_state.error_message = ""

    try:
        chunks = chunk_markdown(document, ChunkingConfig(max_tokens=max_tokens))
    except ChunkingError as e:
        st.session_state.error_message = f"Chunking failed: {e}"
        return False

    stages = st.empty()
    coordinator = StreamingCoordinator(
        settings=settings,
        on_update=lambda state: render_stages(stages, state),
    )

    try:
        if use_remote:
            result = asyncio.run(coordinator.analyze_streaming(chunks, queries, document))
        else:
            result = coordinator.analyze_local(
                chunks, queries, document, embedder=get_embedder(settings.embedding_model)
            )
    except CoordinatorError as e:
        st.session_state.error_message = str(e)
        return False

    if result is None:
        st.session_state.error_message = coordinator.state.error or "Analysis failed"
        logger.warning("Analysis failed: {}", st.session_state.error_message)
        return False

    items = build_work_items(
        queries,
        result.to_chunk_scores(chunks),
        chunks,
        score_threshold=settings.match_threshold,
    )
    st.session_state.chunks = chunks
    st.session_state.result = result
    st.session_state.work_items = items
    st.session_state.status_message = (
        f"Analysis complete. {len(chunks)} chunks scored against {len(queries)} queries."
    )
    return True


# =============================================================================
# UI Components
# =============================================================================

def render_header():
    """Render the app header."""
    st.title("CoverCheck")
    st.caption("Query coverage analysis for long-form content")
    st.caption(f"Model: `{get_settings().embedding_model}`")

    expanded = not bool(st.session_state.get("has_seen_intro"))
    with st.expander("Start here: how to use this", expanded=expanded):
        st.markdown(
            """
**Goal:** find which of your target queries the page already answers, and which are gaps.

1) Paste your markdown content.
2) Enter one target query per line.
3) Click **Analyze Coverage** and watch the five stages run.
4) Work through the **Worklist**: ready queries have a chunk to improve, gaps need new sections.

**Passage score (0-100):** 70+ covered | 50-69 weak | below 50 gap.
A query is assigned to a chunk only when its passage score reaches the match threshold.
            """.strip()
        )
    st.session_state.has_seen_intro = True


def render_input_section():
    """
    Render document, queries and run options.

    Returns tuple of (document, queries, max_tokens, use_remote).
    """
    st.subheader("Inputs")

    document = st.text_area(
        "Document (markdown)",
        placeholder="# Title\n\n## Section\n\nPaste your content here...",
        height=240,
        key="document_input",
    )
    if document:
        st.caption(f"{len(document):,} characters, ~{len(document.split()):,} words")

    raw_queries = st.text_area(
        "Queries (one per line)",
        placeholder="how long does shipping take\nrefund policy for sale items",
        height=120,
        key="queries_input",
    )
    queries = parse_queries(raw_queries)

    with st.sidebar:
        st.header("Settings")
        max_tokens = st.slider(
            "Max tokens per chunk", min_value=128, max_value=1024, value=512, step=64,
        )
        settings = get_settings()
        use_remote = st.toggle(
            "Use remote endpoint",
            value=False,
            disabled=settings.stream_url is None,
            help="Set COVERCHECK_STREAM_URL to enable streaming from a remote scorer.",
        )
        st.caption(f"Match threshold: {settings.match_threshold:g}")

    return document, queries, max_tokens, use_remote


def render_action_buttons(document: str, queries: list, max_tokens: int, use_remote: bool):
    """Render the analyze button and status messages."""
    st.subheader("Actions")
    col1, col2 = st.columns([1, 2])

    with col1:
        can_analyze = bool(document.strip()) and bool(queries)
        if not can_analyze:
            st.caption("Paste a document and at least one query to begin")

        if st.button(
            "Analyze Coverage",
            disabled=not can_analyze,
            type="primary",
            use_container_width=True,
        ):
            clear_results()
            if run_analysis(document, queries, max_tokens, use_remote):
                st.rerun()

    with col2:
        if st.session_state.error_message:
            st.error(st.session_state.error_message)
        elif st.session_state.status_message:
            st.success(st.session_state.status_message)


def render_summary():
    """Render document score and coverage counts."""
    result = st.session_state.result
    counts = coverage_summary(st.session_state.work_items)

    c0, c1, c2, c3 = st.columns(4)
    c0.metric("Document score", f"{result.document_aggregate_score:.0f}")
    c1.metric("Queries", counts["total"])
    c2.metric("Ready", counts["ready"])
    c3.metric("Gaps", counts["gaps"])

    coverage = result.summary.coverage
    st.caption(
        f"Covered: {coverage.covered} | Weak: {coverage.weak} | Gap: {coverage.gaps} | "
        f"Avg passage score: {result.summary.avg_passage_score:.1f}"
    )


def render_worklist():
    """Render the coverage worklist with a CSV download."""
    items = st.session_state.work_items
    if not items:
        return

    for item in items:
        with st.container(border=True):
            col1, col2 = st.columns([4, 1])
            with col1:
                st.markdown(f"**{item.query}**")
                if item.assigned_chunk is not None:
                    st.caption(f"Chunk {item.assigned_chunk.index + 1}: {item.assigned_chunk.heading}")
                    st.text(item.assigned_chunk.preview)
                elif item.suggested_placement:
                    st.caption(
                        f"Suggested: new {item.suggested_heading_level} after "
                        f"“{item.suggested_placement}”"
                    )
            with col2:
                st.write(STATUS_BADGES[item.status])
                if item.original_scores is not None:
                    st.metric("Passage", f"{item.original_scores.passage_score:.0f}")

    frame = work_items_frame(items)
    st.download_button(
        "Download worklist (CSV)",
        frame.to_csv(index=False),
        file_name="coverage_worklist.csv",
        mime="text/csv",
    )


def render_details():
    """Render per-chunk scores, coverage map and diagnostics tables."""
    result = st.session_state.result

    with st.expander("Chunk scores", expanded=False):
        st.dataframe(chunk_scores_frame(result.chunk_scores), use_container_width=True)

    with st.expander("Coverage map", expanded=False):
        st.dataframe(coverage_map_frame(result.coverage_map), use_container_width=True)

    with st.expander(f"Diagnostics ({len(result.diagnostics)} pairs)", expanded=False):
        st.dataframe(diagnostics_frame(result.diagnostics), use_container_width=True)


def main():
    """Main application entry point."""
    st.set_page_config(
        page_title="CoverCheck",
        page_icon="🧭",
        layout="wide",
    )
    configure_logging(get_settings().log_level)

    init_session_state()
    render_header()

    document, queries, max_tokens, use_remote = render_input_section()
    render_action_buttons(document, queries, max_tokens, use_remote)

    if st.session_state.result is not None:
        worklist_tab, details_tab = st.tabs(["Worklist", "Details"])

        with worklist_tab:
            render_summary()
            st.divider()
            render_worklist()

        with details_tab:
            render_details()

    st.divider()
    st.caption("CoverCheck v0.1.0")


if __name__ == "__main__":
    main()
