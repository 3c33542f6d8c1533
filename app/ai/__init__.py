"""
Product Workspace Platform
AI module.

Submodules:
    - gateway: LLM Gateway (provider routing, retry, usage and audit logs)
    - prompt_registry: in-process prompt templates
    - field_tiers: tiered field enhancement
    - field_detector: enhancement opportunity rules
    - cost_manager: budgets and rate limits over recorded usage
    - agent: approval-gated tool execution with rollback
    - suggestions: dependency and strategy-alignment proposals
"""
