"""Prompt bank and prompt templates for report generation.

The bank is plain data (YAML); templates are fixed strings with a versioned set of
named placeholders, rendered by `render_template`.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from string import Formatter
from typing import Dict, Iterator, List, Mapping, Optional, Set

import yaml

from ragreport.core.errors import ValidationError

TEMPLATE_VERSION = "v1"
PLACEHOLDER_MARKER = "[clarify with client]"
DEFAULT_BANK_PATH = Path(__file__).parent / "prompts.yaml"

GENERATION_RULES = (
    "Only use information from the context.\n"
    f"If you are missing information or are unsure, insert a placeholder to {PLACEHOLDER_MARKER}\n"
    "Use EXAMPLES to determine the structure and to guide the length of the response. "
    "If no examples are provided then answer in 3 sentences or less."
)

GENERATION_TEMPLATE = """Your task is to answer the following QUESTION using provided CONTEXT and RULES.

QUESTION: {question}
RULES:
{rules}
{extra_rules}

CONTEXT: {context}

EXAMPLES
{examples}
"""

MODIFICATION_TEMPLATE = GENERATION_TEMPLATE + """
Modify BASE_RESPONSE with the following additional INSTRUCTIONS while still following the RULES and CONTEXT.
INSTRUCTIONS: {extra_instructions}
BASE_RESPONSE: {base_response}
"""


def template_fields(template: str) -> Set[str]:
    return {name for _, name, _, _ in Formatter().parse(template) if name}


def render_template(template: str, fields: Mapping[str, str]) -> str:
    """
    Substitute named placeholders in `template`.

    Raises:
        ValueError: If a placeholder has no value or a value has no placeholder.
    """
    expected = template_fields(template)
    missing = expected - set(fields)
    unexpected = set(fields) - expected
    if missing or unexpected:
        raise ValueError(
            f"Template {TEMPLATE_VERSION} field mismatch: missing={sorted(missing)} unexpected={sorted(unexpected)}"
        )
    return template.format_map(dict(fields))


@dataclass(frozen=True)
class PromptSpec:
    """One report section: the question asked and how to shape the answer."""

    section: str
    question: str
    extra_rules: str = ""
    examples: str = ""


class PromptBank:
    """Ordered, read-only collection of PromptSpecs keyed by unique section."""

    def __init__(self, prompts: List[PromptSpec]):
        self._prompts = list(prompts)
        self._by_section: Dict[str, PromptSpec] = {}
        for prompt in self._prompts:
            if prompt.section in self._by_section:
                raise ValidationError(f"Duplicate prompt section: {prompt.section}")
            self._by_section[prompt.section] = prompt

    @classmethod
    def from_yaml(cls, path: Path) -> "PromptBank":
        with open(path, 'r', encoding='utf-8') as f:
            entries = yaml.safe_load(f) or []
        prompts = []
        for entry in entries:
            if not entry.get('section') or not entry.get('question'):
                raise ValidationError(f"Prompt entry in {path} needs a section and a question: {entry}")
            prompts.append(
                PromptSpec(
                    section=str(entry['section']).strip(),
                    question=str(entry['question']).strip(),
                    extra_rules=str(entry.get('extra_rules') or '').strip(),
                    examples=str(entry.get('examples') or '').strip(),
                )
            )
        return cls(prompts)

    @classmethod
    def default(cls, path: Optional[str] = None) -> "PromptBank":
        return cls.from_yaml(Path(path) if path else DEFAULT_BANK_PATH)

    def get(self, section: str) -> Optional[PromptSpec]:
        return self._by_section.get(section)

    @property
    def sections(self) -> List[str]:
        return [prompt.section for prompt in self._prompts]

    def __iter__(self) -> Iterator[PromptSpec]:
        return iter(self._prompts)

    def __len__(self) -> int:
        return len(self._prompts)
