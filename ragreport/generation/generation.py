"""Generation Module for the RAG report generator

This module answers every question of the prompt bank against a workspace's documents:
for each section it retrieves the top-k chunks, renders the generation template, calls
the completion provider and records a new result iteration.

Key Features:
- One engine for batch and streaming transports: results are pushed into a ResultSink that
  either buffers them (CollectingSink) or forwards them as they complete (QueueSink).
- Iteration numbers are computed per section at the moment the section is processed
  (count of existing records + 1).
- A provider failure for one section becomes an "Error: ..." answer; the run continues.
- All new records are persisted with a single write at the end. A persistence failure is
  reported to the sink as an error event and re-raised.
- A set cancel event stops further completion calls; the in-flight one finishes and the
  already emitted records are still persisted.

Usage:
  from ragreport.generation.generation import GenerationEngine
  engine = GenerationEngine(store, embedder, completion, PromptBank.default())
  records = await engine.generate('acme')
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

from ragreport.core.logging import get_logger
from ragreport.core.errors import ProviderError
from ragreport.embeddings.embeddings import EmbeddingProvider
from ragreport.generation.completion import CompletionProvider
from ragreport.generation.prompts import GENERATION_RULES, GENERATION_TEMPLATE, PromptBank, render_template
from ragreport.generation.results import ResultRecord, ResultsLog, next_iteration
from ragreport.retrieval.retrieval import Retriever
from ragreport.storage.documents import DocumentStore
from ragreport.storage.storage import VectorIndex

logger = get_logger(__name__)

ERROR_PREFIX = "Error: "


class ResultSink(Protocol):
    """Receives result records as a run produces them."""

    async def emit(self, record: ResultRecord) -> None: ...

    async def close(self, error: Optional[BaseException] = None) -> None: ...


class CollectingSink:
    """Buffers a run's records in memory (batch transport)."""

    def __init__(self) -> None:
        self.records: List[ResultRecord] = []
        self.error: Optional[BaseException] = None
        self.closed = False

    async def emit(self, record: ResultRecord) -> None:
        self.records.append(record)

    async def close(self, error: Optional[BaseException] = None) -> None:
        self.error = error
        self.closed = True


_END = object()


class QueueSink:
    """Forwards records to an async consumer as soon as they are produced (streaming transport)."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self.count = 0

    async def emit(self, record: ResultRecord) -> None:
        self.count += 1
        await self._queue.put({"type": "result", "result": record.to_dict()})

    async def close(self, error: Optional[BaseException] = None) -> None:
        if error is None:
            await self._queue.put({"type": "done", "count": self.count})
        else:
            await self._queue.put({"type": "error", "message": str(error) or type(error).__name__})
        await self._queue.put(_END)

    def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
        return self._events()

    async def _events(self) -> AsyncIterator[Dict[str, Any]]:
        while True:
            event = await self._queue.get()
            if event is _END:
                return
            yield event


class SectionAnswerer:
    """Retrieve context, render a template and ask the completion provider."""

    def __init__(self, retriever: Retriever, completion: CompletionProvider):
        self.retriever = retriever
        self.completion = completion

    async def answer(self, template: str, section: str, question: str, **fields: str) -> str:
        """
        Answer one question.

        Args:
            template: GENERATION_TEMPLATE or a template extending it.
            section: Section name, for logging.
            question: Question text; also the retrieval query.
            **fields: Remaining template placeholders (extra_rules, examples, ...).

        Returns:
            The generated answer, or an "Error: ..." placeholder if a provider failed.
        """
        try:
            context = await self.retriever.context_for(question)
            prompt = render_template(
                template,
                {"question": question, "rules": GENERATION_RULES, "context": context, **fields},
            )
            answer = await self.completion.complete(prompt)
        except ProviderError as exc:
            logger.error(f"Error processing section {section}: {exc}")
            return f"{ERROR_PREFIX}{exc}"
        logger.info(f"Processed section: {section}")
        return answer


class GenerationEngine:
    """Runs the prompt bank against one workspace."""

    def __init__(self, store: DocumentStore, embedder: EmbeddingProvider, completion: CompletionProvider,
                 prompt_bank: PromptBank, top_k: int = 5, results_log: Optional[ResultsLog] = None):
        self.store = store
        self.embedder = embedder
        self.completion = completion
        self.prompt_bank = prompt_bank
        self.top_k = top_k
        self.results_log = results_log or ResultsLog(store)

    async def run(self, workspace: str, sink: ResultSink,
                  cancel: Optional[asyncio.Event] = None) -> List[ResultRecord]:
        """
        Answer every prompt in bank order, emitting each record to `sink` as it completes.

        Args:
            workspace: Target workspace.
            sink: Receives each record, then a close() with or without an error.
            cancel: When set, no further sections are started.

        Returns:
            The new records, in bank order.

        Raises:
            PersistenceError: If the index or results log cannot be read or written.
        """
        try:
            index = await VectorIndex.load_or_initialize(self.store, workspace, self.embedder)
            answerer = SectionAnswerer(Retriever(index, self.top_k), self.completion)
            existing = await self.results_log.load(workspace)
            new_records: List[ResultRecord] = []

            for prompt in self.prompt_bank:
                if cancel is not None and cancel.is_set():
                    logger.info(f"Generation for {workspace} cancelled after {len(new_records)} sections",
                                extra={"workspace": workspace})
                    break
                iteration = next_iteration([*existing, *new_records], prompt.section)
                answer = await answerer.answer(
                    GENERATION_TEMPLATE,
                    prompt.section,
                    prompt.question,
                    extra_rules=prompt.extra_rules,
                    examples=prompt.examples,
                )
                record = ResultRecord(prompt.section, iteration, prompt.question, answer)
                new_records.append(record)
                await sink.emit(record)

            if new_records:
                await self.results_log.save(workspace, [*existing, *new_records])
        except (Exception, asyncio.CancelledError) as exc:
            logger.error(f"Generation for {workspace} failed: {exc}", extra={"workspace": workspace})
            await sink.close(exc)
            raise

        await sink.close()
        return new_records

    async def generate(self, workspace: str) -> List[ResultRecord]:
        """Batch variant of `run`."""
        return await self.run(workspace, CollectingSink())
