"""Prompt templates for every AI call the agent makes."""

from monitor_agent.prompts.catalog import PromptCatalog

__all__ = ["PromptCatalog"]
