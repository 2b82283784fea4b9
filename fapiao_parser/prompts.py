"""
Prompts module for fapiao parsing.
Contains the instruction text sent to the multimodal model.

``build_prompt`` is a pure function of its arguments so prompts can be
asserted literally in tests.
"""
import csv
import io
from enum import Enum
from typing import Optional, Sequence


class TaskKind(str, Enum):
    """Kinds of model call issued by the pipeline."""
    EXTRACT = "extract"
    SUMMARIZE = "summarize"
    TABULATE = "tabulate"
    SUMMARIZE_TABULATE = "summarize+tabulate"


BASE_PROMPT = """You are a senior finance specialist who processes Chinese invoices (fapiao), Excel data and financial statements.

STRICT CONSTRAINTS:
1. Every answer must be based only on the input provided in this request.
2. Key financial figures must match the provided data exactly; never estimate.
3. Do not add explanations, comments, markdown, code fences or any other text.
4. Output only the required structure, with nothing before or after it.
5. Summaries may only use information from the provided invoice JSON data.
6. Table headers must come from the provided data or template; never invent header fields.
"""

EXTRACT_PROMPT = """
TASK: Extract the important fields of every invoice image in this request.
For each invoice output one JSON object with these keys:
  "amount" (number, total including tax, 金额/价税合计),
  "taxId" (string, seller tax number, 税号),
  "date" (string, issue date as YYYY-MM-DD, 开票日期),
  "seller" (string, 销售方),
  "buyer" (string, 购买方),
  "invoiceType" (string, 发票类型),
  "items" (array of {"name": string, "category": string, "price": number, "quantity": number}, 项目明细).
Every item must include its name. Keep the invoices in the order the images were given.

FINAL OUTPUT FORMAT (strict): a single JSON array of invoice objects
[{"amount": 0, "taxId": "", "date": "", "seller": "", "buyer": "", "invoiceType": "", "items": []}]
"""

SUMMARY_STEP = """Merge records that share the same issue date and item name into one record, adding up amounts and keeping the other shared fields.
Save the merged statistics as {"summary": {"totalAmount": number, "byCategory": {"<category>": {"count": number, "total": number}}, "byDate": {"<date>": number}}}.
Only use categories and dates that occur in the invoice data."""

TABLE_STEP_TEMPLATE = """Build a table using exactly the columns defined by the Excel template headers below, in the same order, one row per invoice.
Save it as {"csv": "<CSV text with one header line>"}."""

TABLE_STEP_FREE = """Build a table whose header follows common reimbursement practice (for example date, amount, seller, category, tax number, item name), one row per invoice.
Save it as {"csv": "<CSV text with one header line>"}."""

AGGREGATION_SHAPES = {
    TaskKind.SUMMARIZE: '[{ "summary": summaryData }]',
    TaskKind.TABULATE: '[{ "csv": csvData }]',
    TaskKind.SUMMARIZE_TABULATE: '[{ "summary": summaryData }, { "csv": csvData }]',
}


def select_task_kind(want_summary: bool, want_csv: bool) -> Optional[TaskKind]:
    """Pick the aggregation task for the requested outputs (None when nothing is wanted)."""
    if want_summary and want_csv:
        return TaskKind.SUMMARIZE_TABULATE
    if want_summary:
        return TaskKind.SUMMARIZE
    if want_csv:
        return TaskKind.TABULATE
    return None


def headers_as_csv(headers: Sequence[str]) -> str:
    """Render template headers as a single CSV line."""
    buffer = io.StringIO()
    csv.writer(buffer, lineterminator="").writerow(list(headers))
    return buffer.getvalue()


def _aggregation_instructions(task: TaskKind, has_template: bool) -> str:
    steps = []
    if task in (TaskKind.SUMMARIZE, TaskKind.SUMMARIZE_TABULATE):
        steps.append(SUMMARY_STEP)
    if task in (TaskKind.TABULATE, TaskKind.SUMMARIZE_TABULATE):
        steps.append(TABLE_STEP_TEMPLATE if has_template else TABLE_STEP_FREE)

    numbered = "\n".join(f"{index}. {step}" for index, step in enumerate(steps, start=1))
    required = "Complete every step; the output must contain every section listed." if len(steps) > 1 else ""
    return (
        f"\nTASK ({len(steps)} step{'s' if len(steps) > 1 else ''}, in order):\n"
        f"{numbered}\n"
        f"{required}\n"
        f"\nFINAL OUTPUT FORMAT (strict): {AGGREGATION_SHAPES[task]}\n"
    )


def build_prompt(
    task: TaskKind,
    *,
    template_headers: Optional[Sequence[str]] = None,
    records_json: Optional[str] = None,
    custom: str = "",
) -> str:
    """
    Compose the instruction text for one model call.

    Args:
        task: Kind of call
        template_headers: Column headers read from the user's template
        records_json: Prior-stage invoice JSON (aggregation calls)
        custom: Extra instructions appended after the preamble

    Returns:
        Prompt text; identical inputs always give identical output
    """
    task = TaskKind(task)
    parts = [BASE_PROMPT]
    if custom:
        parts.append(custom.strip() + "\n")

    if task is TaskKind.EXTRACT:
        parts.append(EXTRACT_PROMPT)
    else:
        parts.append(_aggregation_instructions(task, bool(template_headers)))

    if template_headers:
        parts.append(f"\nEXCEL TEMPLATE HEADERS (CSV):\n{headers_as_csv(template_headers)}\n")
    if records_json is not None:
        parts.append(f"\nINVOICE JSON DATA:\n{records_json}\n")

    return "".join(parts)
