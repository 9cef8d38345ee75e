"""
Report renderer: turn allocation rows into CSV/Markdown/HTML/JSON/text tables.
Columns are fixed: sprint, issueKey, title, optional detail columns, then one column per team member in roster order.
HTML and Markdown go through the Jinja2 templates in report/templates.
"""

from typing import Optional, List, Dict, Any
import os
import io
import csv
import json
from jinja2 import Environment, FileSystemLoader, select_autoescape
from errors import ReportSchemaError
from normalize.models import AllocationRow, BASE_COLUMNS, DETAIL_COLUMNS

BASE_HEADERS = list(BASE_COLUMNS)
DETAIL_HEADERS = list(DETAIL_COLUMNS)
TEMPLATES_DIR = os.path.join(os.path.dirname(__file__), 'templates')

_env: Optional[Environment] = None


def _jinja_env() -> Environment:
    global _env
    if _env is None:
        _env = Environment(loader=FileSystemLoader(TEMPLATES_DIR), autoescape=select_autoescape(['html', 'html.j2', 'xml']))
        _env.filters['md_cell'] = _md_cell
    return _env


def _md_cell(value: Any) -> str:
    """Markdown table cells cannot hold pipes or newlines."""
    return str(value if value is not None else '').replace('|', '\\|').replace('\n', ' ')


def report_headers(members: List[str], detailed: bool = False) -> List[str]:
    headers = list(BASE_HEADERS)
    if detailed:
        headers.extend(DETAIL_HEADERS)
    headers.extend(members)
    return headers


def rows_to_records(rows: List[AllocationRow], detailed: bool = False) -> List[Dict[str, Any]]:
    return [r.to_record(detailed=detailed) for r in rows]


def check_schema(records: List[Dict[str, Any]], headers: List[str]):
    """Every header must be a key of the first record; later rows are not checked."""
    if not records:
        return
    first = records[0]
    for h in headers:
        if h not in first:
            raise ReportSchemaError(f"header {h} not found in data")


def _cell(record: Dict[str, Any], header: str) -> str:
    value = record.get(header, '')
    return '' if value is None else str(value)


def render_csv(records: List[Dict[str, Any]], headers: List[str]) -> str:
    """Render the header line and one line per record. No records renders an empty string."""
    if not records:
        return ''
    check_schema(records, headers)
    output = io.StringIO()
    writer = csv.writer(output, lineterminator='\n')
    writer.writerow(headers)
    for rec in records:
        writer.writerow([_cell(rec, h) for h in headers])
    return output.getvalue()


def render_markdown(records: List[Dict[str, Any]], headers: List[str], context: Optional[Dict[str, Any]] = None) -> str:
    check_schema(records, headers)
    tmpl = _jinja_env().get_template('allocation.md.j2')
    return tmpl.render(headers=headers, rows=[[_cell(r, h) for h in headers] for r in records], **(context or {}))


def render_html(records: List[Dict[str, Any]], headers: List[str], context: Optional[Dict[str, Any]] = None) -> str:
    check_schema(records, headers)
    tmpl = _jinja_env().get_template('allocation.html.j2')
    return tmpl.render(headers=headers, rows=[[_cell(r, h) for h in headers] for r in records], **(context or {}))


def render_json(records: List[Dict[str, Any]], headers: List[str]) -> str:
    """Export records as a JSON array of objects with keys in column order."""
    check_schema(records, headers)
    return json.dumps([{h: rec.get(h, '') for h in headers} for rec in records], indent=2, ensure_ascii=False)


def render_text(records: List[Dict[str, Any]], headers: List[str]) -> str:
    """Render a fixed-width plain-text table."""
    if not records:
        return 'No allocation rows.'
    check_schema(records, headers)
    table = [headers] + [[_cell(r, h) for h in headers] for r in records]
    widths = [max(len(row[i]) for row in table) for i in range(len(headers))]
    lines = ['  '.join(cell.ljust(w) for cell, w in zip(row, widths)).rstrip() for row in table]
    lines.insert(1, '  '.join('-' * w for w in widths))
    return '\n'.join(lines)


def render(
    rows: List[AllocationRow],
    members: List[str],
    fmt: str = 'csv',
    detailed: bool = False,
    sprint: Optional[str] = None,
    project: Optional[str] = None,
    totals: Optional[Dict[str, float]] = None,
    generated_at: Optional[str] = None,
) -> str:
    """Main render function: pick the format and build headers from the roster order."""
    headers = report_headers(members, detailed=detailed)
    records = rows_to_records(rows, detailed=detailed)
    fmt_l = (fmt or 'csv').lower()
    context = {'sprint': sprint, 'project': project, 'totals': totals or {}, 'members': members, 'generated_at': generated_at}
    if fmt_l in ('md', 'markdown'):
        return render_markdown(records, headers, context)
    if fmt_l in ('html', 'htm'):
        return render_html(records, headers, context)
    if fmt_l in ('json', 'js'):
        return render_json(records, headers)
    if fmt_l in ('text', 'txt'):
        return render_text(records, headers)
    return render_csv(records, headers)
