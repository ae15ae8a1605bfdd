"""Document agent: OCR, categorization, routing, metadata extraction.

All actions take a ``documentId``.  Text recognition is simulated: a
document's stored ``content`` stands in for scanned text.
"""

from __future__ import annotations

import re
from typing import Any

from siteagents.agents.base import AgentToolkit
from siteagents.agents.data import DomainStore
from siteagents.core.errors import NotFoundError
from siteagents.core.settings import ReviewThresholds
from siteagents.execution.models import AgentCategory, HandlerResult

DATE_PATTERN = re.compile(r"\d{1,2}/\d{1,2}/\d{4}")
AMOUNT_PATTERN = re.compile(r"£\d[\d,]*(?:\.\d+)?")

# First keyword found in the file name wins.
CATEGORY_KEYWORDS = ("contract", "invoice", "drawing", "report")
TAG_KEYWORDS = ("safety", "compliance")


class DocumentAgent:
    """OCR processing, automatic categorization, and intelligent routing."""

    name = "Document Agent"
    category = AgentCategory.DOCUMENT
    actions = ("process_ocr", "categorize", "route", "extract_metadata")

    def __init__(self, store: DomainStore, *, thresholds: ReviewThresholds | None = None):
        self.store = store
        self.thresholds = thresholds or ReviewThresholds()
        self.toolkit = AgentToolkit(self.name)

    async def execute(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        route = self.toolkit.resolve_action(input, {
            "process_ocr": self._process_ocr,
            "categorize": self._categorize,
            "route": self._route,
            "extract_metadata": self._extract_metadata,
        })
        return await route(input, context)

    async def _load(self, input: dict[str, Any]) -> dict[str, Any]:
        self.toolkit.validate_input(input, ["documentId"])
        document = await self.store.get("documents", input["documentId"])
        if document is None:
            raise NotFoundError("Document not found", collection="documents", record_id=input["documentId"])
        return document

    async def _process_ocr(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        document = await self._load(input)
        ocr_text = document.get("content") or f"Extracted text from {document.get('name')}"
        extracted = {"entities": [], "keyValuePairs": {}}

        await self.store.update(
            "documents",
            document["id"],
            {"ocrProcessed": True, "ocrText": ocr_text, "aiMetadata": extracted},
        )
        return HandlerResult(
            output={"ocrText": ocr_text, "extractedData": extracted, "confidence": 0.9},
            confidence=0.9,
            tokens_used=self.toolkit.estimate_tokens(ocr_text),
        )

    async def _categorize(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        document = await self._load(input)
        name = (document.get("name") or "").lower()
        category = next((k for k in CATEGORY_KEYWORDS if k in name), "other")
        tags = [k for k in TAG_KEYWORDS if k in name]

        await self.store.update("documents", document["id"], {"category": category, "aiTags": tags})
        return HandlerResult(output={"category": category, "tags": tags}, confidence=0.85, tokens_used=200)

    async def _route(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        document = await self._load(input)
        routing = {
            "targetProject": document.get("projectId") or context.get("projectId"),
            "targetUsers": [],
            "priority": "normal",
            "action": "review",
        }
        return HandlerResult(output=routing, confidence=0.8, tokens_used=150)

    async def _extract_metadata(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        document = await self._load(input)
        text = document.get("ocrText") or ""
        metadata = {
            "documentType": document.get("type") or "unknown",
            "keyDates": DATE_PATTERN.findall(text),
            "amounts": [float(m.replace("£", "").replace(",", "")) for m in AMOUNT_PATTERN.findall(text)],
            "parties": [],
            "references": [],
        }

        await self.store.update("documents", document["id"], {"aiMetadata": metadata})
        return HandlerResult(
            output=metadata,
            confidence=0.85,
            tokens_used=self.toolkit.estimate_tokens(metadata),
        )
