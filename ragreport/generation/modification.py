"""Targeted re-generation of selected sections, seeded with their latest answer."""

from __future__ import annotations

from typing import List, Optional, Sequence

from ragreport.core.errors import ValidationError
from ragreport.core.logging import get_logger
from ragreport.embeddings.embeddings import EmbeddingProvider
from ragreport.generation.completion import CompletionProvider
from ragreport.generation.generation import SectionAnswerer
from ragreport.generation.prompts import MODIFICATION_TEMPLATE, PromptBank
from ragreport.generation.results import ResultRecord, ResultsLog
from ragreport.retrieval.retrieval import Retriever
from ragreport.storage.documents import DocumentStore
from ragreport.storage.storage import VectorIndex

logger = get_logger(__name__)


class ModificationEngine:
    """Appends a revised iteration for each requested section."""

    def __init__(self, store: DocumentStore, embedder: EmbeddingProvider, completion: CompletionProvider,
                 prompt_bank: PromptBank, top_k: int = 5, results_log: Optional[ResultsLog] = None):
        self.store = store
        self.embedder = embedder
        self.completion = completion
        self.prompt_bank = prompt_bank
        self.top_k = top_k
        self.results_log = results_log or ResultsLog(store)

    async def modify(self, workspace: str, sections: Sequence[str], extra_instructions: str) -> List[ResultRecord]:
        """
        Revise the latest answer of each section according to `extra_instructions`.

        Sections that were never generated are skipped. Requesting a section twice
        revises the first revision. New records are persisted in one write.

        Raises:
            ValidationError: If `sections` or `extra_instructions` is empty.
        """
        requested = [section.strip() for section in sections or [] if section and section.strip()]
        if not requested:
            raise ValidationError("No sections provided for modification.")
        if not extra_instructions or not extra_instructions.strip():
            raise ValidationError("Extra instructions are required.")
        instructions = extra_instructions.strip()

        existing = await self.results_log.load(workspace)
        answerer: Optional[SectionAnswerer] = None
        new_records: List[ResultRecord] = []

        for section in requested:
            history = [r for r in [*existing, *new_records] if r.section == section]
            if not history:
                logger.info(f"No existing results found for section: {section}")
                continue
            base = max(history, key=lambda r: r.iteration_number)

            if answerer is None:
                index = await VectorIndex.load_or_initialize(self.store, workspace, self.embedder)
                answerer = SectionAnswerer(Retriever(index, self.top_k), self.completion)

            prompt = self.prompt_bank.get(section)
            answer = await answerer.answer(
                MODIFICATION_TEMPLATE,
                section,
                base.question,
                extra_rules=prompt.extra_rules if prompt else "",
                examples=prompt.examples if prompt else "",
                extra_instructions=instructions,
                base_response=base.answer,
            )
            new_records.append(ResultRecord(section, base.iteration_number + 1, base.question, answer))

        if new_records:
            await self.results_log.save(workspace, [*existing, *new_records])
        return new_records
