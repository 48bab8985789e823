"""
Prompt Builder
==============

Builds the prompts sent to providers for feature work.

Two implementation flows, chosen by the feature's skipTests flag:
- TDD flow: write or update tests, implement, run the tests until they pass
- Manual verification flow: implement and summarize what a human should check

Pipeline steps get their own prompt built from the step's instructions.
"""

from typing import Any


def _feature_heading(feature: dict[str, Any]) -> list[str]:
    title = feature.get("title") or feature.get("id")
    lines = [f"# Feature: {title}", ""]
    if feature.get("category"):
        lines.append(f"**Category:** {feature['category']}")
        lines.append("")
    lines.append("## Description")
    lines.append("")
    lines.append((feature.get("description") or "").strip() or "(no description)")
    return lines


def build_feature_prompt(feature: dict[str, Any]) -> str:
    """
    Build the implementation prompt for a feature.

    Example:
        >>> prompt = build_feature_prompt({"id": "f1", "title": "Login", "description": "Add login"})
        >>> "# Feature: Login" in prompt
        True
        >>> "Run the tests" in prompt
        True
    """
    sections = _feature_heading(feature)
    sections.append("")
    sections.append("## Instructions")
    sections.append("")

    if feature.get("skipTests"):
        sections.extend([
            "1. Explore the codebase to understand the existing structure.",
            "2. Implement the feature described above.",
            "3. Do not write automated tests for this feature.",
            "4. Finish with a short summary of what changed and how a person can verify it manually.",
        ])
    else:
        sections.extend([
            "1. Explore the codebase to understand the existing structure and test setup.",
            "2. Write or update tests that describe the expected behaviour.",
            "3. Implement the feature described above.",
            "4. Run the tests and fix failures until they pass.",
            "5. Finish with a short summary of what changed.",
        ])

    return "\n".join(sections)


def build_pipeline_step_prompt(feature: dict[str, Any], step: dict[str, Any]) -> str:
    """Build the prompt for one pipeline step run after the main implementation."""
    sections = _feature_heading(feature)
    sections.append("")
    sections.append(f"## Pipeline Step: {step.get('name') or step.get('id')}")
    sections.append("")
    sections.append("The feature has already been implemented. Perform only this step:")
    sections.append("")
    sections.append((step.get("instructions") or "").strip())
    return "\n".join(sections)


def extract_summary(texts: list[str], max_length: int = 2000) -> str | None:
    """Use the last non-empty assistant text as the run summary."""
    for text in reversed(texts):
        stripped = text.strip()
        if stripped:
            return stripped[:max_length]
    return None
