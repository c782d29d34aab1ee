from io import StringIO

import pytest

from docingest.pipeline.run_log import NORMAL, QUIET, VERBOSE, RunLog
from docingest.pipeline.types import DocumentOutcome, DocumentState, IngestionRun


def _outcome(path: str, state: DocumentState, **kwargs) -> DocumentOutcome:
    return DocumentOutcome(doc_id=path, source_path=path, state=state, **kwargs)


def test_run_aggregates_outcomes() -> None:
    run = IngestionRun()
    run.record(_outcome("a.md", DocumentState.DONE, chunk_count=3, embedding_tokens=90))
    run.record(_outcome("b.md", DocumentState.SKIPPED, reason="unchanged"))
    run.record(
        _outcome(
            "c.pdf",
            DocumentState.FAILED,
            error_kind="TokenBudgetExceeded",
            reason="chunk c-0002 has 9000 tokens, model limit is 8191",
            chunk_count=4,
            embedding_tokens=12,
        )
    )

    assert run.documents_processed == 3
    assert run.chunks_uploaded == 3
    assert run.embedding_tokens == 102
    assert run.exit_code == 1
    assert run.summary_lines() == [
        "Ingestion run summary",
        "  documents: 3 (done=1 skipped=1 failed=1)",
        "  chunks uploaded: 3",
        "  embedding tokens: 102",
        "Failed documents:",
        "  c.pdf: TokenBudgetExceeded: chunk c-0002 has 9000 tokens, model limit is 8191",
    ]


def test_empty_run_succeeds() -> None:
    run = IngestionRun()

    assert run.exit_code == 0
    assert run.summary_lines()[1] == "  documents: 0 (done=0 skipped=0 failed=0)"


def test_record_requires_terminal_state() -> None:
    with pytest.raises(ValueError, match="terminal"):
        IngestionRun().record(_outcome("a.md", DocumentState.EMBEDDING))


@pytest.mark.parametrize(
    ("verbosity", "expected"),
    [
        (QUIET, ["[docingest] boom kind=X"]),
        (NORMAL, ["[docingest] boom kind=X", "[docingest] done path='my file.md'"]),
        (
            VERBOSE,
            [
                "[docingest] boom kind=X",
                "[docingest] done path='my file.md'",
                "[docingest] batch size=2",
            ],
        ),
    ],
)
def test_run_log_filters_by_verbosity(verbosity: int, expected: list[str]) -> None:
    stream = StringIO()
    log = RunLog(verbosity=verbosity, stream=stream)

    log.error("boom", kind="X")
    log.info("done", path="my file.md")
    log.debug("batch", size=2)

    assert stream.getvalue().splitlines() == expected
