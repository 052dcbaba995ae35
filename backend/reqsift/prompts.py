from __future__ import annotations

from dataclasses import dataclass


DEFAULT_DOMAIN = "service management"

DOMAIN_VOCABULARY = (
    "CRM",
    "ERP",
    "service cloud",
    "sales cloud",
    "marketing cloud",
    "commerce cloud",
    "call center",
    "customer service",
    "field service",
    "salesforce",
    "dynamics",
    "sap",
    "oracle",
    "servicenow",
    "zendesk",
)


@dataclass(frozen=True)
class Perspective:
    name: str
    focus: str


PERSPECTIVES: tuple[Perspective, ...] = (
    Perspective("Functional Requirements", "core functionality and business processes that must be migrated"),
    Perspective("Data Requirements", "data structures, fields, and relationships that must be preserved"),
    Perspective("Integration Requirements", "integration points, APIs, and external system connections"),
    Perspective("User Experience Requirements", "user interfaces, workflows, and experience aspects"),
    Perspective(
        "Security & Compliance Requirements",
        "security controls, access permissions, and compliance needs",
    ),
)

CONTENT_TYPE_GUIDANCE = {
    "workflow": (
        "The content describes business workflows that must be recreated in the target system. "
        "Focus on user flows, business processes, data transformations, and integration points."
    ),
    "user_feedback": (
        "The content captures user feedback about the legacy system. "
        "Focus on pain points and requested improvements so the target system is an improvement."
    ),
    "documentation": (
        "The content documents capabilities of the legacy system. "
        "Identify the data structures, business logic, and behaviours that must be preserved."
    ),
    "specifications": (
        "The content holds technical specifications of the legacy system. "
        "Derive concrete requirements from the specified behaviour and constraints."
    ),
}
GENERAL_GUIDANCE = "Analyze this general content and derive requirements from what the text states."


def select_perspectives(count: int) -> list[Perspective]:
    return list(PERSPECTIVES[: max(0, min(count, len(PERSPECTIVES)))])


def infer_domain(file_name: str, project_name: str) -> str:
    haystack = f"{file_name} {project_name}".lower()
    matches = [domain for domain in DOMAIN_VOCABULARY if domain.lower() in haystack]
    return ", ".join(matches) if matches else DEFAULT_DOMAIN


def build_extraction_prompt(
    *,
    text: str,
    perspective: Perspective,
    project_name: str,
    file_name: str,
    content_type: str,
    domain: str,
    requirement_count: int,
    chunk_number: int,
    chunk_total: int,
) -> str:
    guidance = CONTENT_TYPE_GUIDANCE.get(content_type, GENERAL_GUIDANCE)
    scope_rule = (
        "Only extract requirements supported by this section. "
        "Do not guess what other sections of the document contain.\n"
        if chunk_total > 1
        else ""
    )
    return (
        f"You are a business systems analyst specializing in {domain} systems with expertise in "
        f"{perspective.name.lower()}. Derive migration requirements for a project moving functionality "
        f"from a legacy system to a target system, focusing on {perspective.focus}.\n\n"
        f"Project: {project_name}\n"
        f"File: {file_name}\n"
        f"Content type: {content_type}\n"
        f"Inferred domain: {domain}\n"
        f"Analysis perspective: {perspective.name} (focusing on {perspective.focus})\n"
        f"Section: {chunk_number} of {chunk_total}\n\n"
        f"{guidance}\n"
        f"{scope_rule}\n"
        "Content to analyze:\n"
        f"{text}\n\n"
        f"Return a JSON array with exactly {requirement_count} requirement objects. Each object has:\n"
        "- title: a short descriptive summary of the requirement\n"
        "- description: a detailed explanation of at least 150 words of what must be implemented\n"
        "- category: one of functional, non-functional, security, performance\n"
        "- priority: one of high, medium, low\n\n"
        'Example: [{"title": "Case Routing", "description": "The target system must ...", '
        '"category": "functional", "priority": "high"}]\n\n'
        "Only output valid JSON with no additional text or explanations."
    )
