"""Procurement agent: supplier matching, bid scoring, purchase orders.

Unlike the other agents this one has no ``action`` switch; every call is
a sourcing request described by ``type`` (supplier category) and
``requirements`` (qualification keywords).

Scoring weights (each factor normalized to [0, 1])::

    rating / 5                        0.3
    active contracts / 10             0.2   (0.5 when none)
    total value / 1,000,000           0.2   (0.5 when none)
    fraction of requirements matched  0.3
"""

from __future__ import annotations

import time
import uuid
from typing import Any

from siteagents.agents.base import AgentToolkit, utcnow_iso
from siteagents.agents.data import DomainStore
from siteagents.core.errors import NotFoundError
from siteagents.core.settings import ReviewThresholds
from siteagents.execution.models import AgentCategory, HandlerResult


class ProcurementAgent:
    """Automated vendor selection, bid analysis, and purchase order drafting."""

    name = "Procurement Agent"
    category = AgentCategory.PROCUREMENT
    actions = ("source",)

    def __init__(self, store: DomainStore, *, thresholds: ReviewThresholds | None = None):
        self.store = store
        self.thresholds = thresholds or ReviewThresholds()
        self.toolkit = AgentToolkit(self.name)

    async def execute(self, input: dict[str, Any], context: dict[str, Any]) -> HandlerResult:
        self.toolkit.validate_input(input, ["type", "requirements"])

        requirements = input["requirements"]
        if isinstance(requirements, str):
            requirements = [requirements]
        budget = input.get("budget")

        suppliers = await self._find_matching_suppliers(input["type"], requirements, context)
        evaluations = self._evaluate(suppliers, requirements)
        recommendations = self._recommend(evaluations)

        purchase_order = None
        if input.get("selectedVendorId"):
            purchase_order = await self._purchase_order(input["selectedVendorId"], requirements, budget, context)

        output = {
            "suppliers": evaluations,
            "recommendations": recommendations,
            "purchaseOrder": purchase_order,
            "bestMatch": evaluations[0] if evaluations else None,
        }
        best = evaluations[0]["score"] if evaluations else None
        self.toolkit.log("info", "procurement.evaluated", candidates=len(evaluations), best_score=best)

        return HandlerResult(
            output=output,
            confidence=self.toolkit.calculate_confidence(
                data_quality=1.0 if suppliers else 0.5,
                completeness=1.0 if requirements else 0.7,
            ),
            requires_review=best is None or best < self.thresholds.procurement_min_score,
            tokens_used=self.toolkit.estimate_tokens(output),
        )

    async def _find_matching_suppliers(
        self,
        supplier_type: str,
        requirements: list[str],
        context: dict[str, Any],
    ) -> list[dict[str, Any]]:
        suppliers = await self.store.find(
            "suppliers",
            organizationId=context.get("organizationId"),
            status="ACTIVE",
            category=supplier_type,
        )
        wanted = [r.lower() for r in requirements]
        matching = []
        for supplier in suppliers:
            qualifications = " ".join(supplier.get("qualifications", [])).lower()
            if any(req in qualifications for req in wanted):
                matching.append(supplier)
        return matching

    def _evaluate(self, suppliers: list[dict[str, Any]], requirements: list[str]) -> list[dict[str, Any]]:
        evaluations = []
        for supplier in suppliers:
            active = supplier.get("activeContracts", 0) or 0
            total_value = supplier.get("totalValue", 0) or 0
            qualifications = [q.lower() for q in supplier.get("qualifications", [])]
            matched = [r for r in requirements if any(r.lower() in q for q in qualifications)]

            factors = {
                "rating": (supplier.get("rating", 0) or 0) / 5,
                "performance": min(1.0, active / 10) if active > 0 else 0.5,
                "value": min(1.0, total_value / 1_000_000) if total_value > 0 else 0.5,
                "qualificationMatch": len(matched) / len(requirements),
            }
            score = (
                factors["rating"] * 0.3
                + factors["performance"] * 0.2
                + factors["value"] * 0.2
                + factors["qualificationMatch"] * 0.3
            )
            evaluations.append({
                "supplierId": supplier["id"],
                "supplierName": supplier.get("name"),
                "score": round(score, 2),
                "factors": factors,
                "rating": supplier.get("rating"),
                "activeContracts": active,
                "totalValue": total_value,
            })
        evaluations.sort(key=lambda e: e["score"], reverse=True)
        return evaluations

    @staticmethod
    def _recommend(evaluations: list[dict[str, Any]]) -> dict[str, Any]:
        if not evaluations:
            return {
                "message": "No suitable suppliers found. Consider expanding search criteria.",
                "action": "REVIEW_REQUIREMENTS",
            }
        top = evaluations[:3]
        best = top[0]["score"]
        if best >= 0.8:
            verdict = "APPROVE"
        elif best >= 0.6:
            verdict = "REVIEW"
        else:
            verdict = "EXPAND_SEARCH"
        return {
            "message": f"Found {len(evaluations)} suitable suppliers. Top {len(top)} recommendations:",
            "topSuppliers": top,
            "recommendation": verdict,
        }

    async def _purchase_order(
        self,
        vendor_id: str,
        requirements: list[str],
        budget: float | None,
        context: dict[str, Any],
    ) -> dict[str, Any]:
        vendor = await self.store.get("suppliers", vendor_id)
        if vendor is None:
            raise NotFoundError("Vendor not found", collection="suppliers", record_id=vendor_id)

        total = budget or 0
        return {
            "poNumber": f"PO-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9].upper()}",
            "vendorId": vendor["id"],
            "vendorName": vendor.get("name"),
            "items": [
                {
                    "itemNumber": index,
                    "description": requirement,
                    "quantity": 1,
                    "unitPrice": total / len(requirements),
                }
                for index, requirement in enumerate(requirements, start=1)
            ],
            "totalAmount": total,
            "currency": "GBP",
            "status": "DRAFT",
            "generatedAt": utcnow_iso(),
            "organizationId": context.get("organizationId"),
            "projectId": context.get("projectId"),
        }
