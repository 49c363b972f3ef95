"""
Report blueprints: which sections each report type offers, in which order,
and which are selected by default.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from .stages import SECTION_DEPENDENCIES, FOUNDATION

BLUEPRINT_VERSION = "2026-01-15-draft-1"

REPORT_TYPES = ("INDUSTRIALS", "GENERIC", "PE", "FS")


@dataclass(frozen=True)
class BlueprintInput:
    id: str
    label: str
    required: bool = False
    type: str = "text"
    helper_text: Optional[str] = None


@dataclass(frozen=True)
class BlueprintSection:
    id: str
    title: str
    default_selected: bool
    focus: str
    report_specific: bool = False
    dependencies: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ReportBlueprint:
    version: str
    report_type: str
    title: str
    purpose: str
    inputs: List[BlueprintInput] = field(default_factory=list)
    sections: List[BlueprintSection] = field(default_factory=list)


def _with_dependencies(section: BlueprintSection) -> BlueprintSection:
    # Foundation is implicit for every section, so only list section-to-section edges.
    deps = tuple(d for d in SECTION_DEPENDENCIES.get(section.id, []) if d != FOUNDATION)
    return replace(section, dependencies=deps) if deps else section


def _sections(*rows: tuple) -> List[BlueprintSection]:
    out = []
    for row in rows:
        sid, title, default_selected, focus, *rest = row
        out.append(
            _with_dependencies(
                BlueprintSection(
                    id=sid,
                    title=title,
                    default_selected=default_selected,
                    focus=focus,
                    report_specific=bool(rest and rest[0]),
                )
            )
        )
    return out


def _base_inputs(name_label: str) -> List[BlueprintInput]:
    return [
        BlueprintInput(id="companyName", label=name_label, required=True),
        BlueprintInput(
            id="timeHorizon",
            label="Time horizon",
            helper_text="For example: last 12 months.",
        ),
        BlueprintInput(id="meetingContext", label="Meeting context", type="textarea"),
    ]


_APPENDIX = ("appendix", "Appendix and Sources", True, "Sources used across sections.")

_INDUSTRIALS_SECTIONS = _sections(
    ("exec_summary", "Executive Summary", True, "Operating pressure points and call-ready takeaways."),
    ("financial_snapshot", "Financial Snapshot", True, "Performance drivers and margin dynamics with interpretation."),
    ("company_overview", "Company Overview", True, "Business model, segments, and end markets."),
    ("segment_analysis", "Segment Analysis", True, "Segment-level performance and competitor context."),
    ("trends", "Market Trends", True, "Macro, supply chain, and end-market trends."),
    ("peer_benchmarking", "Peer Benchmarking", True, "Peer performance and positioning signals."),
    ("sku_opportunities", "SKU Opportunities", True, "Map operating issues to SSA problem areas."),
    ("recent_news", "Recent News", True, "Material developments tied to operations or strategy."),
    ("conversation_starters", "Conversation Starters", True, "Hypothesis-driven executive questions."),
    _APPENDIX,
)

_GENERIC_SECTIONS = _sections(
    ("exec_summary", "Executive Summary", True, "4-6 high-signal points tied to the meeting context."),
    ("financial_snapshot", "Financial Snapshot", True, "Only material metrics tied to the stated topic."),
    ("company_overview", "Company Overview", True, "Business model and the most relevant segments."),
    ("trends", "Market Trends", True, "2-4 trends that directly affect the context."),
    ("sku_opportunities", "SKU Opportunities", True, "1-3 SSA problem areas tied to the context."),
    ("conversation_starters", "Conversation Starters", True, "Short, call-ready questions for the meeting."),
    _APPENDIX,
    ("segment_analysis", "Segment Analysis", False, "Optional deep dive if the context demands it."),
    ("peer_benchmarking", "Peer Benchmarking", False, "Optional when peer comparisons are meaningful."),
    ("recent_news", "Recent News", False, "Optional when recent developments matter."),
)

_PE_SECTIONS = _sections(
    ("exec_summary", "Executive Summary", True, "Portfolio direction, value-creation themes, and operating signals."),
    ("company_overview", "Firm Overview", True, "Firm positioning, sector focus, and portfolio composition."),
    ("investment_strategy", "Investment Strategy and Focus", True, "Fund strategy, sector focus, and platform vs add-on approach.", True),
    ("portfolio_snapshot", "Portfolio Snapshot", True, "Current portfolio overview grouped by sector or platform.", True),
    ("deal_activity", "Recent Investments and Add-ons", True, "Most recent acquisitions, add-ons, and exits.", True),
    ("financial_snapshot", "Portfolio Performance Snapshot", True, "Fund size, scale signals, and reported performance indicators."),
    ("segment_analysis", "Portfolio Segments and Platforms", False, "Optional clustering by sector or platform vs add-on patterns."),
    ("trends", "Deal and Sector Trends", True, "Deal environment, sector shifts, and value-creation context."),
    ("sku_opportunities", "Value-Creation Themes and SSA Alignment", True, "Map operating themes to SSA problem areas."),
    ("recent_news", "Firm and Portfolio News", True, "Deal announcements, leadership moves, portfolio updates."),
    ("conversation_starters", "Call-Ready Talking Points", True, "Hypothesis-driven questions for PE conversations."),
    ("peer_benchmarking", "Peer Firms and Strategy Comparison", False, "Optional peer comparison when data is available."),
    ("deal_team", "Deal Team and Key Stakeholders", False, "Partners, deal leads, and operating partners tied to the portfolio.", True),
    ("portfolio_maturity", "Portfolio Maturity and Exit Watchlist", False, "Older holdings and potential exit signals.", True),
    _APPENDIX,
)

_FS_SECTIONS = _sections(
    ("exec_summary", "Executive Summary", True, "Performance drivers, operating pressure, and leadership focus."),
    ("financial_snapshot", "Performance and Capital Snapshot", True, "Revenue mix, margins, efficiency, and capital metrics."),
    ("company_overview", "Institution Overview and Business Lines", True, "Business mix, revenue drivers, and footprint."),
    ("leadership_and_governance", "Leadership and Governance", True, "Leadership profiles, accountability signals, governance notes.", True),
    ("strategic_priorities", "Strategic Priorities and Transformation", True, "Strategic focus areas, transformation agenda, and trade-offs.", True),
    ("trends", "Market, Regulatory, and Competitive Trends", True, "External forces shaping operating priorities."),
    ("segment_analysis", "Business Line Deep Dive", False, "Optional when business-line detail is needed."),
    ("peer_benchmarking", "Peer Benchmarking", False, "Optional peer comparison when data is available."),
    ("operating_capabilities", "Operating Capabilities", False, "Digital capabilities, talent pools, shared services, or hub assessments.", True),
    ("sku_opportunities", "Operating Priorities and SSA Alignment", True, "Map operating tensions to SSA problem areas."),
    ("recent_news", "Earnings and News Highlights", True, "Earnings commentary, regulatory updates, leadership changes."),
    ("conversation_starters", "Call-Ready Talking Points", True, "Hypothesis-driven questions for exec discussions."),
    _APPENDIX,
)

_BLUEPRINTS: Dict[str, ReportBlueprint] = {
    "INDUSTRIALS": ReportBlueprint(
        version=BLUEPRINT_VERSION,
        report_type="INDUSTRIALS",
        title="Industrials",
        purpose=(
            "Distill end-market exposure, cost structure, and operational levers into "
            "actionable context for exec-level conversations."
        ),
        inputs=_base_inputs("Company name") + [
            BlueprintInput(id="segmentFocus", label="Segment or end market focus"),
            BlueprintInput(id="stakeholders", label="Stakeholders"),
        ],
        sections=_INDUSTRIALS_SECTIONS,
    ),
    "GENERIC": ReportBlueprint(
        version=BLUEPRINT_VERSION,
        report_type="GENERIC",
        title="Company Brief (Generic)",
        purpose=(
            "Distill company-specific strategy, performance, and recent developments into "
            "tailored context for exec-level conversations."
        ),
        inputs=_base_inputs("Company name") + [
            BlueprintInput(
                id="topicOfInterest",
                label="Topic of interest",
                helper_text="Strategy, performance, growth, or risk.",
            ),
            BlueprintInput(id="stakeholders", label="Stakeholders"),
        ],
        sections=_GENERIC_SECTIONS,
    ),
    "PE": ReportBlueprint(
        version=BLUEPRINT_VERSION,
        report_type="PE",
        title="Private Equity",
        purpose=(
            "Distill portfolio activity, value-creation themes, and investment strategy into "
            "actionable context for exec-level conversations."
        ),
        inputs=_base_inputs("PE firm name") + [
            BlueprintInput(id="fundStrategy", label="Fund or strategy focus"),
            BlueprintInput(id="stakeholders", label="Stakeholders"),
        ],
        sections=_PE_SECTIONS,
    ),
    "FS": ReportBlueprint(
        version=BLUEPRINT_VERSION,
        report_type="FS",
        title="Financial Services",
        purpose=(
            "Distill operational challenges, performance drivers, and strategic priorities "
            "into actionable context for exec-level conversations."
        ),
        inputs=_base_inputs("Institution name") + [
            BlueprintInput(
                id="businessFocus",
                label="Business focus",
                helper_text="Banking, wealth, insurance, payments, etc.",
            ),
            BlueprintInput(id="stakeholders", label="Stakeholders"),
        ],
        sections=_FS_SECTIONS,
    ),
}


def blueprint_version() -> str:
    return BLUEPRINT_VERSION


def list_blueprints() -> List[ReportBlueprint]:
    return [_BLUEPRINTS[rt] for rt in REPORT_TYPES]


def get_blueprint(report_type: str | None) -> ReportBlueprint | None:
    if not report_type:
        return None
    return _BLUEPRINTS.get(report_type.upper())


def default_sections(report_type: str | None) -> List[str]:
    blueprint = get_blueprint(report_type)
    if not blueprint:
        return []
    return [s.id for s in blueprint.sections if s.default_selected]


def section_title(section_id: str, report_type: str | None = None) -> str:
    blueprint = get_blueprint(report_type) or _BLUEPRINTS["INDUSTRIALS"]
    for section in blueprint.sections:
        if section.id == section_id:
            return section.title
    return section_id.replace("_", " ").title()
