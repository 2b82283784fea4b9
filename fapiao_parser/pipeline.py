"""
Batch orchestration: files in, normalized records plus summary and CSV out.

One run is one sequential task. Batches are sent to the model one after the
other and a failed call aborts the run without returning partial results.
"""
import json
import logging
from typing import Any, Callable, Iterator, List, Optional, Sequence, Tuple

from .client import ModelClient
from .config import Settings
from .core.csv_utils import merge_csv_fragments, render_records_csv
from .core.exceptions import InputError
from .core.json_utils import recover
from .core.models import (
    CsvEntry,
    EncodedImage,
    InvoiceRecord,
    PipelineResult,
    RecordEntry,
    RecoveryMiss,
    SourceFile,
    SummaryEntry,
    SummaryRecord,
)
from .core.normalize import classify_reply, reconcile_summary
from .core.preprocess import encode_sources
from .core.response import extract_text
from .core.spreadsheet import OpenpyxlSpreadsheetReader, SpreadsheetReader, read_template_headers
from .core.text_fallback import extract_record_from_text
from .prompts import TaskKind, build_prompt, select_task_kind

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]

# Progress milestones (percent)
ENCODE_END = 20
BATCHES_END = 80
AGGREGATION_START = 85
AGGREGATION_END = 95
DONE = 100


def chunker(seq, n):
    """
    Split sequence into chunks of size n.

    Args:
        seq: Sequence to split into chunks
        n: Chunk size

    Yields:
        Chunks of the sequence, in order
    """
    for i in range(0, len(seq), n):
        yield seq[i:i + n]


class ProgressReporter:
    """Forwards progress to an optional callback, never letting the value go backwards."""

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self._callback = callback
        self.last = 0

    def report(self, percent: float, message: str = "") -> int:
        value = max(self.last, min(DONE, int(percent)))
        self.last = value
        if self._callback is not None:
            self._callback(value, message)
        return value


class _ReplyParts:
    """Entries recovered from one model reply, grouped by kind."""

    def __init__(self):
        self.records: List[InvoiceRecord] = []
        self.summaries: List[SummaryRecord] = []
        self.csv_fragments: List[str] = []
        self.misses: List[RecoveryMiss] = []


def parse_reply(envelope: Any, stage: str, text_fallback: bool = True) -> _ReplyParts:
    """
    Turn a model envelope into records, summaries, CSV fragments and misses.

    Each text fragment is recovered separately. A fragment with no
    recoverable JSON becomes a RecoveryMiss; with ``text_fallback`` its
    ``label: value`` lines are still mined for a record.
    """
    parts = _ReplyParts()
    fragments = extract_text(envelope)
    if not fragments:
        logger.warning(f"[{stage.upper()}] Reply carried no text")
        parts.misses.append(RecoveryMiss(stage=stage, raw_text=""))
        return parts

    for fragment in fragments:
        value = recover(fragment)
        # Whole reply delivered as a JSON string literal
        if isinstance(value, str):
            value = recover(value)
        if value is None:
            logger.warning(f"[{stage.upper()}] No JSON recovered from reply: {fragment[:120]}")
            parts.misses.append(RecoveryMiss(stage=stage, raw_text=fragment))
            if text_fallback:
                record = extract_record_from_text(fragment)
                if not record.is_empty():
                    logger.info(f"[{stage.upper()}] Free-text fallback produced a record")
                    parts.records.append(record)
            continue

        for entry in classify_reply(value):
            if isinstance(entry, RecordEntry):
                parts.records.append(entry.value)
            elif isinstance(entry, SummaryEntry):
                parts.summaries.append(entry.value)
            elif isinstance(entry, CsvEntry):
                parts.csv_fragments.append(entry.value)
    return parts


def records_to_json(records: Sequence[InvoiceRecord]) -> str:
    """Records as the JSON array embedded in aggregation prompts."""
    return json.dumps([record.model_dump(by_alias=True) for record in records], ensure_ascii=False)


class FapiaoPipeline:
    """Runs extraction batches and the optional aggregation call."""

    def __init__(
        self,
        client: ModelClient,
        settings: Settings,
        spreadsheet_reader: Optional[SpreadsheetReader] = None,
    ):
        self.client = client
        self.settings = settings
        self.spreadsheet_reader = spreadsheet_reader or OpenpyxlSpreadsheetReader()

    async def run(
        self,
        files: Sequence[SourceFile],
        template: Optional[SourceFile] = None,
        want_summary: bool = True,
        want_csv: bool = True,
        progress: Optional[ProgressCallback] = None,
        token: Optional[str] = None,
    ) -> PipelineResult:
        """
        Process fapiao files into a PipelineResult.

        Args:
            files: Invoice images or PDFs, in the order records should come back
            template: Optional spreadsheet whose first row defines the CSV columns
            want_summary: Ask the model for a summary
            want_csv: Ask the model for a CSV table
            progress: Called as ``progress(percent, message)``
            token: Bearer token; falls back to ``settings.api_token``

        Raises:
            InputError: Missing token, no files, or an unreadable/unsupported file
            ModelTimeoutError: A batch or the aggregation call timed out
            UpstreamError: The model endpoint failed
        """
        token = token or self.settings.api_token
        if not token:
            raise InputError("an API token is required (form field, --token or FAPIAO_API_TOKEN)")
        if not files:
            raise InputError("at least one fapiao file is required")

        reporter = ProgressReporter(progress)
        reporter.report(0, "start")

        def on_file(index: int, total: int, name: str) -> None:
            reporter.report(ENCODE_END * index / total, f"converted {name}")

        images = await encode_sources(files, self.settings.pdf_render_scale, on_file=on_file)
        headers = read_template_headers(template, self.spreadsheet_reader) if template is not None else None
        reporter.report(ENCODE_END, "files converted")

        records, batch_fragments, misses = await self._run_batches(images, reporter, token)

        summary = SummaryRecord()
        csv_text = ""
        task = select_task_kind(want_summary, want_csv)
        if task is None:
            csv_text = merge_csv_fragments(batch_fragments)
        else:
            summary, csv_text, aggregation_misses = await self._aggregate(
                task, records, headers, reporter, token
            )
            misses.extend(aggregation_misses)
            if not want_csv:
                csv_text = merge_csv_fragments(batch_fragments)
            if not want_summary:
                summary = SummaryRecord()

        reporter.report(DONE, "done")
        logger.info(
            f"[PIPELINE] {len(files)} file(s) -> {len(records)} record(s), "
            f"{len(misses)} recovery miss(es)"
        )
        return PipelineResult(records=records, summary=summary, csv=csv_text, recovery_misses=misses)

    async def _run_batches(
        self,
        images: List[EncodedImage],
        reporter: ProgressReporter,
        token: str,
    ) -> Tuple[List[InvoiceRecord], List[str], List[RecoveryMiss]]:
        records: List[InvoiceRecord] = []
        fragments: List[str] = []
        misses: List[RecoveryMiss] = []

        batches = list(chunker(images, self.settings.batch_size))
        total = len(batches)
        span = (BATCHES_END - ENCODE_END) / total
        prompt = build_prompt(TaskKind.EXTRACT, custom=self.settings.custom_prompt)

        for number, batch in enumerate(batches, start=1):
            stage = f"batch {number}/{total}"
            reporter.report(ENCODE_END + span * (number - 1) + span / 10, f"{stage}: calling model")
            envelope = await self.client.generate(batch, prompt, task=TaskKind.EXTRACT, stage=stage, token=token)
            reporter.report(ENCODE_END + span * number, f"{stage}: reply received")

            parts = parse_reply(envelope, stage)
            logger.info(f"[{stage.upper()}] {len(batch)} file(s) -> {len(parts.records)} record(s)")
            records.extend(parts.records)
            fragments.extend(parts.csv_fragments)
            misses.extend(parts.misses)

        return records, fragments, misses

    async def _aggregate(
        self,
        task: TaskKind,
        records: List[InvoiceRecord],
        headers: Optional[List[str]],
        reporter: ProgressReporter,
        token: str,
    ) -> Tuple[SummaryRecord, str, List[RecoveryMiss]]:
        stage = "aggregation"
        prompt = build_prompt(
            task,
            template_headers=headers,
            records_json=records_to_json(records),
            custom=self.settings.custom_prompt,
        )
        reporter.report(AGGREGATION_START, f"{stage}: calling model")
        envelope = await self.client.generate([], prompt, task=task, stage=stage, token=token)
        reporter.report(AGGREGATION_END, f"{stage}: reply received")

        parts = parse_reply(envelope, stage, text_fallback=False)

        model_summary = next((s for s in parts.summaries if not s.is_empty()), None)
        if model_summary is None:
            logger.info("[AGGREGATE] No summary in reply; using the locally computed summary")
        summary = reconcile_summary(model_summary, records)

        csv_text = merge_csv_fragments(parts.csv_fragments)
        if not csv_text and self.settings.csv_local_fallback:
            logger.info("[AGGREGATE] No CSV in reply; rendering it locally")
            csv_text = render_records_csv(records, headers)

        return summary, csv_text, parts.misses
