"""
AI Agent runner for Continuum.

This module handles communication with Ollama and exposes it to the engine
through the TextGenerator and TextSummarizer interfaces.
"""

import httpx
import json
import time
from typing import Optional, Type
import logging

from ..config import config
from ..errors import ContinuumError, GeneratorError, SummarizerError
from .base import TextGenerator, TextSummarizer
from .registry import agent_registry, AgentRegistry


class AgentRunner(TextGenerator, TextSummarizer):
    """
    Manages communication with Ollama and runs AI agents.
    """

    def __init__(self, ollama_host: Optional[str] = None, model: Optional[str] = None,
                 database_manager=None, client: Optional[httpx.AsyncClient] = None,
                 registry: Optional[AgentRegistry] = None):
        """
        Initialize the agent runner.

        Args:
            ollama_host: The Ollama server URL (defaults to config value)
            model: The model name to use for inference (defaults to config value)
            database_manager: Optional database manager used to log every call
            client: Optional preconfigured HTTP client
            registry: Optional agent registry (defaults to the global one)
        """
        self.ollama_host = ollama_host or config.ollama_host
        self.model = model or config.model_name
        self.client = client or httpx.AsyncClient(timeout=config.ollama_timeout)
        self.db = database_manager
        self.registry = registry or agent_registry

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.client.aclose()

    async def _call_ollama(
        self,
        prompt: str,
        agent_name: str,
        error_cls: Type[ContinuumError],
        input_data: str = "",
        thread_id: Optional[str] = None
    ) -> str:
        """
        Make a request to Ollama and log it for reproducibility.

        Args:
            prompt: The user prompt
            agent_name: Registry name whose system prompt is used
            error_cls: Engine error raised on failure
            input_data: Original input data for logging
            thread_id: Related thread (optional)

        Returns:
            The model's response text

        Raises:
            error_cls: If the request fails, times out or returns no text
        """
        agent_config = self.registry.get_agent(agent_name)
        if not agent_config:
            raise ValueError(f"Agent '{agent_name}' not found in registry")

        system_prompt = agent_config.system_prompt
        start_time = time.time()
        success = False
        error_message = None
        raw_response = ""

        try:
            payload = {
                "model": self.model,
                "prompt": prompt,
                "stream": False
            }

            if system_prompt:
                payload["system"] = system_prompt

            response = await self.client.post(
                f"{self.ollama_host}/api/generate",
                json=payload,
                timeout=agent_config.timeout or config.ollama_timeout
            )
            response.raise_for_status()

            result = response.json()
            raw_response = result.get("response")
            if not isinstance(raw_response, str):
                raise error_cls(f"{agent_name} returned non-text content")

            success = True
            return raw_response

        except httpx.TimeoutException as e:
            error_message = f"Ollama request timed out: {e}"
            raise error_cls(error_message) from e
        except httpx.RequestError as e:
            error_message = f"Failed to connect to Ollama: {e}"
            raise error_cls(error_message) from e
        except httpx.HTTPStatusError as e:
            error_message = f"Ollama request failed: {e}"
            raise error_cls(error_message) from e
        except ValueError as e:
            error_message = f"Ollama returned invalid JSON: {e}"
            raise error_cls(error_message) from e
        except ContinuumError as e:
            error_message = str(e)
            raise
        finally:
            execution_time_ms = int((time.time() - start_time) * 1000)

            if self.db:
                try:
                    self.db.log_ai_agent_call(
                        agent_name=agent_name,
                        input_data=input_data,
                        system_prompt=system_prompt,
                        user_prompt=prompt,
                        model_name=self.model,
                        raw_response=raw_response if isinstance(raw_response, str) else "",
                        success=success,
                        error_message=error_message,
                        execution_time_ms=execution_time_ms,
                        thread_id=thread_id
                    )
                except Exception as log_error:
                    logging.warning(f"Failed to log AI agent call: {log_error}")

    async def generate(self, context: Optional[str], instruction: str) -> str:
        """
        Run the report generator.

        Args:
            context: Prior report body, or None for a fresh report
            instruction: Directive built by the enhancement decider

        Returns:
            Generated report text with any code fences removed
        """
        if context:
            prompt = f"""CURRENT REPORT:
{context}

{instruction}"""
        else:
            prompt = instruction

        input_data = json.dumps({
            "has_context": context is not None,
            "context_chars": len(context or ""),
            "instruction": instruction
        })

        response = await self._call_ollama(
            prompt=prompt,
            agent_name="report_generator",
            error_cls=GeneratorError,
            input_data=input_data
        )
        return strip_code_fences(response)

    async def summarize(self, text: str) -> str:
        """
        Run the summarizer.

        Args:
            text: Complete compression request (instructions plus source text)

        Returns:
            The compressed text
        """
        response = await self._call_ollama(
            prompt=text,
            agent_name="summarizer",
            error_cls=SummarizerError,
            input_data=json.dumps({"chars": len(text)})
        )
        return strip_code_fences(response)

    def generator_for(self, agent_name: str) -> TextGenerator:
        """
        Get a TextGenerator that uses another registry persona.

        Args:
            agent_name: Registry name, e.g. "entity_extractor"

        Returns:
            Generator bound to that persona
        """
        return _PersonaGenerator(self, agent_name)


class _PersonaGenerator(TextGenerator):
    """Generator view of a runner that speaks with a fixed persona."""

    def __init__(self, runner: AgentRunner, agent_name: str):
        self.runner = runner
        self.agent_name = agent_name

    async def generate(self, context: Optional[str], instruction: str) -> str:
        prompt = f"{context}\n\n{instruction}" if context else instruction
        response = await self.runner._call_ollama(
            prompt=prompt,
            agent_name=self.agent_name,
            error_cls=GeneratorError,
            input_data=json.dumps({"agent": self.agent_name, "chars": len(prompt)})
        )
        return strip_code_fences(response)


def strip_code_fences(response: str) -> str:
    """
    Remove a surrounding markdown code fence from a model response.

    Args:
        response: Raw model output

    Returns:
        The response without ```lang fences
    """
    response = response.strip()

    if response.startswith("```"):
        first_newline = response.find("\n")
        response = response[first_newline + 1:] if first_newline != -1 else response[3:]
    if response.endswith("```"):
        response = response[:-3]

    return response.strip()
