"""
Agent Registry for Continuum.

This module defines the system prompts of the language-model roles the
engine uses. Keeping them in one registry makes it easy to tune a persona
without touching the runner.
"""

from typing import Dict, List, Optional
from dataclasses import dataclass


@dataclass
class AgentConfig:
    """
    Configuration for an AI agent.
    """
    name: str
    description: str
    system_prompt: str
    timeout: Optional[float] = None


class AgentRegistry:
    """
    Registry of all available AI agents and their configurations.
    """

    def __init__(self):
        """Initialize the agent registry with default agents."""
        self._agents: Dict[str, AgentConfig] = {}
        self._register_default_agents()

    def _register_default_agents(self):
        """Register the default agents used by Continuum."""

        # Report generator - writes or extends a financial report
        self.register_agent(AgentConfig(
            name="report_generator",
            description="Writes and incrementally extends financial reports",
            system_prompt="""You are a financial research analyst who writes clear, well-structured reports.

When an existing report is provided, treat it as the current state of the document and return the complete updated report.
Use HTML sections with headings, tables for figures and short paragraphs for analysis.
Do not ask clarifying questions and do not describe what you are going to do - output only the report."""
        ))

        # Summarizer - compresses context that is over budget
        self.register_agent(AgentConfig(
            name="summarizer",
            description="Compresses report and conversation context",
            system_prompt="""You are an expert editor. You shorten documents while keeping every fact that matters.
Follow the compression instructions you are given and output only the compressed document."""
        ))

        # Entity extractor - finds companies, assets and people in text
        self.register_agent(AgentConfig(
            name="entity_extractor",
            description="Extracts entities with sentiment and relevance from financial text",
            system_prompt="""You are an information clerk for a financial research desk. Output only valid JSON.

Return a JSON array. Each element:
{
  "name": "Entity Name",
  "type": "COMPANY|PERSON|STOCK|CRYPTOCURRENCY|SECTOR|PRODUCT|COUNTRY|CURRENCY",
  "ticker": "TICKER (if applicable)",
  "context": "The sentence or phrase mentioning the entity",
  "sentiment": -1 to 1 (negative to positive),
  "relevance": 0 to 1 (how important the entity is to the text)
}"""
        ))

    def register_agent(self, agent_config: AgentConfig):
        """
        Register a new agent configuration.

        Args:
            agent_config: The agent configuration to register
        """
        self._agents[agent_config.name] = agent_config

    def get_agent(self, name: str) -> Optional[AgentConfig]:
        """
        Get an agent configuration by name.

        Args:
            name: The agent name

        Returns:
            The agent configuration if found, None otherwise
        """
        return self._agents.get(name)

    def list_agents(self) -> List[str]:
        """
        List all registered agent names.

        Returns:
            List of agent names
        """
        return list(self._agents.keys())


# Global agent registry instance
agent_registry = AgentRegistry()
