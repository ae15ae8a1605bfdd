"""Tests for ``siteagents.agents.procurement``."""

from __future__ import annotations

import pytest
from conftest import ORG, PROJECT

from siteagents.agents.data import InMemoryDomainStore
from siteagents.agents.procurement import ProcurementAgent
from siteagents.core.errors import NotFoundError, ValidationError
from siteagents.core.settings import ReviewThresholds

CONTEXT = {"organizationId": ORG, "projectId": PROJECT}


@pytest.fixture()
def store() -> InMemoryDomainStore:
    return InMemoryDomainStore({
        "suppliers": [
            {
                "id": "strong",
                "organizationId": ORG,
                "name": "Strong Steel",
                "category": "STEEL",
                "status": "ACTIVE",
                "rating": 5,
                "activeContracts": 10,
                "totalValue": 2_000_000,
                "qualifications": ["Structural Steel", "Welding"],
            },
            {
                "id": "weak",
                "organizationId": ORG,
                "name": "Weak Steel",
                "category": "STEEL",
                "status": "ACTIVE",
                "rating": 2,
                "qualifications": ["welding"],
            },
            {
                "id": "inactive",
                "organizationId": ORG,
                "category": "STEEL",
                "status": "SUSPENDED",
                "rating": 5,
                "qualifications": ["welding"],
            },
            {
                "id": "other-org",
                "organizationId": "org-2",
                "category": "STEEL",
                "status": "ACTIVE",
                "qualifications": ["welding"],
            },
        ]
    })


@pytest.fixture()
def agent(store) -> ProcurementAgent:
    return ProcurementAgent(store)


class TestSourcing:
    @pytest.mark.asyncio
    async def test_ranks_matching_suppliers(self, agent):
        result = await agent.execute({"type": "STEEL", "requirements": ["welding", "structural"]}, CONTEXT)

        suppliers = result.output["suppliers"]
        assert [s["supplierId"] for s in suppliers] == ["strong", "weak"]
        assert suppliers[0]["score"] == 1.0
        # 0.4*0.3 + 0.5*0.2 + 0.5*0.2 + 0.5*0.3
        assert suppliers[1]["score"] == 0.47
        assert result.output["bestMatch"]["supplierId"] == "strong"
        assert result.output["recommendations"]["recommendation"] == "APPROVE"
        assert result.output["purchaseOrder"] is None
        assert result.confidence == 1.0
        assert result.requires_review is False
        assert result.tokens_used > 0

    @pytest.mark.asyncio
    async def test_single_requirement_string(self, agent):
        result = await agent.execute({"type": "STEEL", "requirements": "welding"}, CONTEXT)
        assert [s["supplierId"] for s in result.output["suppliers"]] == ["strong", "weak"]
        assert result.requires_review is False

    @pytest.mark.asyncio
    async def test_best_score_below_threshold_needs_review(self, store):
        strict = ProcurementAgent(store, thresholds=ReviewThresholds(procurement_min_score=0.95))
        # strong matches 2 of 3 requirements: 0.3 + 0.2 + 0.2 + 0.2
        result = await strict.execute({"type": "STEEL", "requirements": ["structural", "welding", "cladding"]}, CONTEXT)
        assert result.output["bestMatch"]["score"] == 0.9
        assert result.output["recommendations"]["recommendation"] == "APPROVE"
        assert result.requires_review is True

    @pytest.mark.asyncio
    async def test_no_matches(self, agent):
        result = await agent.execute({"type": "TIMBER", "requirements": ["oak"]}, CONTEXT)
        assert result.output["suppliers"] == []
        assert result.output["bestMatch"] is None
        assert result.output["recommendations"]["action"] == "REVIEW_REQUIREMENTS"
        assert result.requires_review is True
        assert result.confidence == pytest.approx(0.8333, abs=1e-3)

    @pytest.mark.asyncio
    async def test_purchase_order(self, agent):
        result = await agent.execute(
            {"type": "STEEL", "requirements": ["welding", "structural"], "budget": 1000, "selectedVendorId": "weak"},
            CONTEXT,
        )
        po = result.output["purchaseOrder"]
        assert po["vendorId"] == "weak"
        assert po["poNumber"].startswith("PO-")
        assert po["status"] == "DRAFT"
        assert po["currency"] == "GBP"
        assert po["totalAmount"] == 1000
        assert [i["unitPrice"] for i in po["items"]] == [500, 500]
        assert po["organizationId"] == ORG

    @pytest.mark.asyncio
    async def test_unknown_vendor(self, agent):
        with pytest.raises(NotFoundError, match="Vendor not found"):
            await agent.execute(
                {"type": "STEEL", "requirements": ["welding"], "selectedVendorId": "missing"},
                CONTEXT,
            )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{"requirements": ["x"]}, {"type": "STEEL"}, {"type": "STEEL", "requirements": []}])
    async def test_required_fields(self, agent, payload):
        with pytest.raises(ValidationError, match="Missing required field"):
            await agent.execute(payload, CONTEXT)
