"""Component-based HTML report for calibration diagnostics.

Produces one self-contained HTML file: numbered sections, a table of contents,
embedded PNG figures and APA-style tables. Each phase adds sections
independently and RunContext writes the file on exit.

Section types:
  - TableSection: pre-rendered HTML, normally from make_gt()
  - FigureSection: base64-embedded PNG, from disk or from a live Figure
  - TextSection: raw HTML

Usage:
    from analysis.report import ReportBuilder, TableSection, FigureSection, make_gt

    report = ReportBuilder(title="LOO-PIT Report", dataset="radon")
    report.add(TableSection(id="summary", title="Summary", html=make_gt(df)))
    report.add(FigureSection.from_file("overlay", "PIT Overlay", path))
    report.write(Path("report.html"))
"""

from __future__ import annotations

import base64
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo

from jinja2 import Environment, Template

# ── Section Types ─────────────────────────────────────────────────────────────


def _wrap(css_class: str, id: str, body: str, caption: str | None) -> str:
    parts = [f'<div class="{css_class}" id="{id}">', body]
    if caption:
        parts.append(f'<p class="caption">{caption}</p>')
    parts.append("</div>")
    return "\n".join(parts)


@dataclass(frozen=True)
class TableSection:
    """Pre-rendered HTML table (typically from great_tables)."""

    id: str
    title: str
    html: str
    caption: str | None = None

    def render(self) -> str:
        return _wrap("table-container", self.id, self.html, self.caption)


@dataclass(frozen=True)
class FigureSection:
    """A figure embedded as a base64 PNG."""

    id: str
    title: str
    image_data: str
    caption: str | None = None

    @classmethod
    def from_file(
        cls,
        id: str,
        title: str,
        path: Path,
        caption: str | None = None,
    ) -> FigureSection:
        b64 = base64.b64encode(path.read_bytes()).decode("ascii")
        return cls(id=id, title=title, image_data=b64, caption=caption)

    def render(self) -> str:
        img = f'<img src="data:image/png;base64,{self.image_data}" alt="{self.title}" />'
        return _wrap("figure-container", self.id, img, self.caption)


@dataclass(frozen=True)
class TextSection:
    """A raw HTML text block."""

    id: str
    title: str
    html: str
    caption: str | None = None

    def render(self) -> str:
        return _wrap("text-container", self.id, self.html, self.caption)


SectionType = TableSection | FigureSection | TextSection


# ── make_gt Helper ────────────────────────────────────────────────────────────


def make_gt(
    df: object,
    title: str | None = None,
    subtitle: str | None = None,
    column_labels: dict[str, str] | None = None,
    number_formats: dict[str, str] | None = None,
    source_note: str | None = None,
) -> str:
    """Render a polars DataFrame as an APA-style great_tables HTML string.

    Args:
        df: A polars DataFrame.
        title: Bold heading above the table.
        subtitle: Smaller line under the title.
        column_labels: Column name -> display label.
        number_formats: Column name -> format spec such as ".3f" or ",.0f".
        source_note: Footnote under the table.
    """
    import great_tables as gt_mod
    import polars as pl

    if not isinstance(df, pl.DataFrame):
        msg = f"make_gt expects a polars DataFrame, got {type(df).__name__}"
        raise TypeError(msg)

    tbl = gt_mod.GT(df)
    if title:
        tbl = tbl.tab_header(title=title, subtitle=subtitle)
    if column_labels:
        tbl = tbl.cols_label(**column_labels)
    for col_name, fmt in (number_formats or {}).items():
        if col_name in df.columns:
            tbl = tbl.fmt_number(
                columns=col_name,
                decimals=_decimals_from_fmt(fmt),
                use_seps="," in fmt,
            )
    if source_note:
        tbl = tbl.tab_source_note(source_note)

    rule = {"style": "solid", "color": "#000000"}
    tbl = tbl.tab_options(
        table_border_top_style=rule["style"],
        table_border_top_width="2px",
        table_border_top_color=rule["color"],
        table_border_bottom_style=rule["style"],
        table_border_bottom_width="2px",
        table_border_bottom_color=rule["color"],
        column_labels_border_bottom_style=rule["style"],
        column_labels_border_bottom_width="1px",
        column_labels_border_bottom_color=rule["color"],
        table_width="100%",
        table_font_size="14px",
        source_notes_font_size="11px",
    )
    return tbl.as_raw_html(inline_css=True)


def _decimals_from_fmt(fmt: str) -> int:
    """Decimal count from a format spec like '.3f' or ',.1f' (0 if none)."""
    m = re.search(r"\.(\d+)f", fmt)
    return int(m.group(1)) if m else 0


# ── ReportBuilder ─────────────────────────────────────────────────────────────


@dataclass
class ReportBuilder:
    """Assembles report sections into a single self-contained HTML file."""

    title: str = "Calibration Report"
    dataset: str = ""
    git_hash: str = ""
    _sections: list[SectionType] = field(default_factory=list)

    def add(self, section: SectionType) -> None:
        self._sections.append(section)

    @property
    def has_sections(self) -> bool:
        return len(self._sections) > 0

    @property
    def n_sections(self) -> int:
        return len(self._sections)

    def render(self) -> str:
        sections = [
            {"number": i, "id": s.id, "title": s.title, "content": s.render()}
            for i, s in enumerate(self._sections, 1)
        ]
        now = datetime.now(ZoneInfo("UTC")).strftime("%Y-%m-%d %H:%M %Z")
        return _get_template().render(
            title=self.title,
            dataset=self.dataset,
            git_hash=self.git_hash,
            generated_at=now,
            sections=sections,
            css=REPORT_CSS,
        )

    def write(self, path: Path) -> None:
        path.write_text(self.render(), encoding="utf-8")


# ── Template & CSS ────────────────────────────────────────────────────────────


REPORT_CSS = """\
body {
  font-family: "Helvetica Neue", Arial, sans-serif;
  max-width: 1040px;
  margin: 0 auto;
  padding: 24px 32px;
  color: #1b1b1b;
  line-height: 1.5;
}
header { border-bottom: 3px solid #011f4b; margin-bottom: 24px; padding-bottom: 10px; }
header h1 { font-size: 24px; margin: 0 0 4px 0; }
header .meta { font-size: 13px; color: #555; }
header .meta span { margin-right: 16px; }
nav.toc { background: #f3f6f9; border: 1px solid #d6e0ea; padding: 14px 20px; margin-bottom: 28px; }
nav.toc ol { column-count: 2; font-size: 13px; }
nav.toc a { color: #005b96; text-decoration: none; }
section.report-section { margin-bottom: 36px; }
section.report-section h2 { font-size: 18px; border-bottom: 2px solid #011f4b; }
.section-number { color: #6497b1; margin-right: 6px; }
.table-container { overflow-x: auto; margin-bottom: 12px; }
.figure-container { text-align: center; margin: 12px 0; padding: 8px; border: 1px solid #e3e3e3; }
.figure-container img { max-width: 100%; height: auto; }
.caption { font-size: 12px; color: #666; font-style: italic; text-align: center; }
footer { margin-top: 48px; border-top: 1px solid #ccc; font-size: 11px; color: #888; text-align: center; }
@media print { nav.toc { display: none; } }"""

REPORT_TEMPLATE = """\
<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <title>{{ title }}</title>
  <style>{{ css }}</style>
</head>
<body>
  <header>
    <h1>{{ title }}</h1>
    <div class="meta">
      {% if dataset %}<span>Dataset: <strong>{{ dataset }}</strong></span>{% endif %}
      <span>Generated: {{ generated_at }}</span>
      {% if git_hash and git_hash != "unknown" %}<span>Git: <code>{{ git_hash[:8] }}</code></span>{% endif %}
    </div>
  </header>
  <nav class="toc">
    <ol>
      {% for s in sections %}<li><a href="#{{ s.id }}">{{ s.title }}</a></li>
      {% endfor %}
    </ol>
  </nav>
  {% for s in sections %}
  <section class="report-section" id="{{ s.id }}">
    <h2><span class="section-number">{{ s.number }}.</span> {{ s.title }}</h2>
    {{ s.content }}
  </section>
  {% endfor %}
  <footer>{{ title }} &mdash; {{ generated_at }}</footer>
</body>
</html>"""


def _get_template() -> Template:
    return Environment(autoescape=False).from_string(REPORT_TEMPLATE)
