"""Export Module for the RAG report generator

Renders the latest iteration of every section as one standalone HTML document.

Key Features:
- Latest iteration per section, in order of each section's first appearance
- Markdown answers rendered with the `markdown` library
- Table of contents built from the top-level (<h1>) headings, anchored as section-<n>
- Fixed side-bar layout with inline styles, so the file can be opened anywhere

Usage:
  from ragreport.export.export import render_report
  html = render_report('acme-widget', records)
"""

import html
import re
from typing import Iterable, List, Tuple

import markdown

from ragreport.core.errors import NotFoundError
from ragreport.generation.results import ResultRecord, latest_by_section

H1_PATTERN = re.compile(r"<h1>(.*?)</h1>", re.DOTALL)
WORD_PATTERN = re.compile(r"\b\w+")

STYLES = """
    <style>
      body { font-family: Arial, sans-serif; line-height: 1.6; margin: 0; padding: 0; color: #333;
             display: flex; min-height: 100vh; }
      .toc { position: fixed; top: 0; left: 0; width: 250px; background-color: #f9f9f9;
             padding: 40px 15px 15px 15px; height: 100vh; border-right: 1px solid #ddd; overflow-y: auto; }
      .toc h2 { font-size: 1.25rem; margin: 0 0 15px 0; }
      .toc a { text-decoration: none; color: #2E74B5; display: block; padding: 4px 0; line-height: 1.2; }
      .toc a:hover { text-decoration: underline; }
      .main-container { flex: 1; margin-left: 250px; display: flex; justify-content: center; padding: 40px; }
      .content { width: 100%; max-width: 1100px; }
      .title { color: #2E74B5; font-size: 1.75rem; margin: 0 0 30px 0; font-weight: bold; }
      h1, h2, h3 { color: #2E74B5; margin-top: 20px; margin-bottom: 10px; }
      h1 { font-size: 1.5rem; }
      h2 { font-size: 1.25rem; }
      h3 { font-size: 1.1rem; }
      p, ul, li { margin-bottom: 15px; }
    </style>
"""

PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
  <head>
    <meta charset="UTF-8">
    <title>{title}</title>
{styles}
  </head>
  <body>
    <div class="toc">
      <h2>Table of Contents</h2>
      {toc}
    </div>
    <div class="main-container">
      <div class="content">
        <div class="title">{title}</div>
        {body}
      </div>
    </div>
  </body>
</html>
"""


def proper_case(text: str) -> str:
    """Title-case each word, leaving all-caps acronyms (e.g. 'AI', 'USA') untouched."""
    def _word(match: "re.Match") -> str:
        word = match.group(0)
        if len(word) > 1 and word == word.upper():
            return word
        return word[0].upper() + word[1:].lower()

    return WORD_PATTERN.sub(_word, text)


def report_title(workspace: str) -> str:
    return f"Product Description - {proper_case(workspace.replace('-', ' '))}"


def build_toc(body: str) -> Tuple[str, str]:
    """
    Anchor every <h1> in `body` and build the matching table of contents.

    Returns:
        (toc_html, body_with_anchors)
    """
    entries: List[str] = []

    def _anchor(match: "re.Match") -> str:
        anchor = f"section-{len(entries)}"
        entries.append(f'<a href="#{anchor}">{match.group(1)}</a>')
        return f'<h1 id="{anchor}">{match.group(1)}</h1>'

    anchored = H1_PATTERN.sub(_anchor, body)
    return "".join(entries), anchored


def render_report(workspace: str, records: Iterable[ResultRecord]) -> str:
    """
    Render the exported HTML report for a workspace.

    Args:
        workspace: Workspace name, used for the document title.
        records: The workspace's full results log.

    Returns:
        A complete HTML document.

    Raises:
        NotFoundError: If there are no results (or only empty answers) to export.
    """
    latest = latest_by_section(records)
    content = "".join(f"{record.answer}\n\n" for record in latest.values())
    if not content.strip():
        raise NotFoundError(f"No results available to export for workspace {workspace!r}")

    toc, body = build_toc(markdown.markdown(content, extensions=["tables", "sane_lists"]))
    return PAGE_TEMPLATE.format(
        title=html.escape(report_title(workspace)),
        styles=STYLES,
        toc=toc,
        body=body,
    )
