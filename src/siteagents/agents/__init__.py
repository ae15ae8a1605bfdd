"""Concrete agents, one per ``AgentCategory``."""

from siteagents.agents.base import AgentHandler, AgentToolkit
from siteagents.agents.communication import CommunicationAgent
from siteagents.agents.compliance import ComplianceAgent
from siteagents.agents.data import DomainStore, InMemoryDomainStore
from siteagents.agents.decision import DecisionAgent
from siteagents.agents.document import DocumentAgent
from siteagents.agents.due_diligence import DueDiligenceAgent
from siteagents.agents.procurement import ProcurementAgent
from siteagents.agents.resource import ResourceAgent
from siteagents.agents.safety import SafetyAgent
from siteagents.agents.scheduling import SchedulingAgent

# Declaration order matches AgentCategory.
AGENT_CLASSES = (
    ProcurementAgent,
    ComplianceAgent,
    SafetyAgent,
    ResourceAgent,
    DocumentAgent,
    DecisionAgent,
    CommunicationAgent,
    DueDiligenceAgent,
    SchedulingAgent,
)

__all__ = [
    "AGENT_CLASSES",
    "AgentHandler",
    "AgentToolkit",
    "DomainStore",
    "InMemoryDomainStore",
    "CommunicationAgent",
    "ComplianceAgent",
    "DecisionAgent",
    "DocumentAgent",
    "DueDiligenceAgent",
    "ProcurementAgent",
    "ResourceAgent",
    "SafetyAgent",
    "SchedulingAgent",
]
