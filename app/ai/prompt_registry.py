"""
Product Workspace Platform
Prompt Registry.

Named, versioned prompt templates rendered into chat messages.
Variables use ``{{variable_name}}``; unknown variables are left in place.

Usage:
    from app.ai.prompt_registry import PromptRegistry
    messages = PromptRegistry().render("dependency_suggestions", work_items="...")
"""

import logging
import re

logger = logging.getLogger(__name__)


class PromptTemplate:
    """A single prompt template with metadata."""

    def __init__(self, name: str, version: str, system: str, user: str, description: str = ""):
        self.name = name
        self.version = version
        self.system = system
        self.user = user
        self.description = description

    def render(self, **variables) -> list[dict]:
        """Render into [{"role": "system", ...}, {"role": "user", ...}]."""
        system_rendered = self._substitute(self.system, variables)
        user_rendered = self._substitute(self.user, variables)

        messages = []
        if system_rendered.strip():
            messages.append({"role": "system", "content": system_rendered})
        if user_rendered.strip():
            messages.append({"role": "user", "content": user_rendered})
        return messages

    @staticmethod
    def _substitute(template: str, variables: dict) -> str:
        def replacer(match):
            key = match.group(1).strip()
            return str(variables.get(key, f"{{{{{key}}}}}"))
        return re.sub(r"\{\{(\s*\w+\s*)\}\}", replacer, template)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "system_preview": self.system[:200],
            "user_preview": self.user[:200],
        }


_DEFAULT_TEMPLATES = [
    PromptTemplate(
        name="field_enhancement",
        version="v1",
        description="Generate one work item field from its context",
        system=(
            "You are a senior product manager helping a team flesh out work items. "
            "Answer with the field content only, no preamble.\n"
            "Workspace guidance: {{workspace_goals}}"
        ),
        user="{{field_prompt}}",
    ),
    PromptTemplate(
        name="dependency_suggestions",
        version="v1",
        description="Suggest dependencies between work items",
        system=(
            "You analyze product work items and find real dependencies between them. "
            "connection_type is one of: dependency, blocks, enables, complements, "
            "conflicts, relates_to, duplicates, supersedes. "
            "Answer with a JSON array of objects with keys source_id, target_id, "
            "connection_type, reason, confidence (0-1) and strength (0-1). "
            "Only include suggestions with confidence >= 0.6."
        ),
        user=(
            "Find dependencies between these work items:\n{{work_items}}\n\n"
            "Reference items by the number in square brackets."
        ),
    ),
    PromptTemplate(
        name="strategy_alignment",
        version="v1",
        description="Suggest work item to strategy alignments",
        system=(
            "You are an expert product strategist. Hierarchy: Pillar > Objective > "
            "Key Result > Initiative. Prefer the most specific strategy, be conservative "
            "and only suggest alignments with confidence >= 0.6. Answer with JSON "
            '{"suggestions": [{work_item_id, strategy_id, confidence, reason, '
            "alignment_strength (weak|medium|strong)}]}."
        ),
        user=(
            "Suggest how to align these work items with strategies.\n\n"
            "## Work items\n{{work_items}}\n\n## Strategies\n{{strategies}}"
        ),
    ),
]


class PromptRegistry:
    """In-process registry of prompt templates keyed by (name, version)."""

    def __init__(self):
        self._templates: dict[tuple[str, str], PromptTemplate] = {}
        for template in _DEFAULT_TEMPLATES:
            self.register(template)

    def register(self, template: PromptTemplate) -> None:
        self._templates[(template.name, template.version)] = template

    def get(self, name: str, version: str = "v1") -> PromptTemplate | None:
        return self._templates.get((name, version))

    def render(self, name: str, version: str = "v1", **variables) -> list[dict]:
        template = self.get(name, version)
        if template is None:
            raise KeyError(f"Prompt template '{name}' ({version}) not registered")
        return template.render(**variables)

    def list_templates(self) -> list[dict]:
        return [t.to_dict() for _, t in sorted(self._templates.items())]
