"""Fixed phase checklist: deliverable templates and designated agents per phase."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class DeliverableTemplate:
    """One checklist entry materialised as a deliverable row."""

    type: str
    name: str
    description: str


@dataclass(frozen=True)
class PhaseAgent:
    """The agent that owns every deliverable of a phase."""

    id: str
    name: str
    role: str


PHASE_NAMES: dict[int, str] = {
    1: "Research & Discovery",
    2: "Brand & Identity",
    3: "Development & Build",
    4: "Content Creation",
    5: "Marketing Launch",
    6: "Sales & Growth",
}

PHASE_AGENTS: dict[int, PhaseAgent] = {
    1: PhaseAgent("research-agent", "Research Agent", "Market research and trend analysis"),
    2: PhaseAgent("brand-agent", "Brand Agent", "Brand identity and visual design"),
    3: PhaseAgent("development-agent", "Development Agent", "Website build and documentation"),
    4: PhaseAgent("content-agent", "Content Agent", "Content strategy and production"),
    5: PhaseAgent("marketing-agent", "Marketing Agent", "Campaigns and acquisition"),
    6: PhaseAgent("sales-agent", "Sales Agent", "Sales process and customer success"),
}

PHASE_DELIVERABLES: dict[int, list[DeliverableTemplate]] = {
    1: [
        DeliverableTemplate(
            "market_analysis",
            "Market Analysis Report",
            "Comprehensive market size, trends, and opportunity analysis",
        ),
        DeliverableTemplate(
            "competitor_analysis",
            "Competitor Landscape",
            "Analysis of direct and indirect competitors",
        ),
        DeliverableTemplate(
            "target_customer",
            "Target Customer Profiles",
            "Detailed customer personas and segments",
        ),
        DeliverableTemplate(
            "trend_forecast",
            "Trend Forecast Report",
            "Industry trends and future predictions",
        ),
    ],
    2: [
        DeliverableTemplate(
            "brand_identity",
            "Brand Identity Package",
            "Logo, colors, typography, and brand guidelines",
        ),
        DeliverableTemplate(
            "brand_voice",
            "Brand Voice Document",
            "Tone, messaging, and communication guidelines",
        ),
        DeliverableTemplate(
            "visual_assets",
            "Visual Asset Library",
            "Marketing images, icons, and graphics",
        ),
    ],
    3: [
        DeliverableTemplate(
            "website",
            "Business Website",
            "Fully functional landing page with branding",
        ),
        DeliverableTemplate(
            "technical_docs",
            "Technical Documentation",
            "Site architecture and maintenance guides",
        ),
    ],
    4: [
        DeliverableTemplate("content_strategy", "Content Strategy", "Content calendar and topic planning"),
        DeliverableTemplate("blog_content", "Blog Articles", "SEO-optimized blog posts"),
        DeliverableTemplate("social_content", "Social Media Content", "Posts for all social platforms"),
    ],
    5: [
        DeliverableTemplate("marketing_strategy", "Marketing Strategy", "Comprehensive marketing plan"),
        DeliverableTemplate("ad_campaigns", "Ad Campaigns", "Paid advertising campaigns"),
        DeliverableTemplate("email_sequences", "Email Sequences", "Email marketing automation"),
    ],
    6: [
        DeliverableTemplate("sales_strategy", "Sales Strategy", "Sales process and methodology"),
        DeliverableTemplate("sales_scripts", "Sales Scripts", "Call scripts and email templates"),
        DeliverableTemplate("crm_setup", "CRM Configuration", "Customer relationship management setup"),
    ],
}


def templates_for(phase_number: int) -> list[DeliverableTemplate]:
    return list(PHASE_DELIVERABLES.get(phase_number, []))


def agent_for(phase_number: int) -> PhaseAgent | None:
    return PHASE_AGENTS.get(phase_number)
