"""Configuration of the ten investment memo sections and their prompts.

Each section is generated independently: a fixed analyst instruction block,
a template that renders deal and analysis context into a prompt, and a
token budget. The shared research instructions and the basic company block
are prepended to every section prompt by the section generator.
"""

import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from dealmemo.core.schemas_memos import SectionType

PromptTemplate = Callable[[dict[str, Any], dict[str, Any]], str]

ANALYST_PREAMBLE = (
    "You are an investment analyst at HTV (Hustle Through Ventures), a pre-seed/seed "
    "stage VC focused on housing and home technology."
)

DOCUMENT_PRECEDENCE_INSTRUCTIONS = """INSTRUCTIONS FOR ANALYSIS WITH DOCUMENTS AND WEB RESEARCH:

1. Sources:
   - Uploaded documents (file search) are the authoritative source for company-specific
     facts: domain, team names, metrics, product features, pricing, partnerships, investors.
   - Use web search to enrich the analysis with market size and trends, the competitive
     landscape, technology comparisons, regulation, and recent funding activity.

2. Accuracy:
   - Use only document data for company metrics. If it is missing, say
     "not disclosed in provided documents".
   - Never fabricate or guess company metrics.
   - Cite every claim with an inline marker [N].

3. Conflicts:
   - Company facts from documents override web search results.
   - For market data, prefer the most recent credible source.

4. Transparency:
   - Distinguish document-sourced statements ("According to the company's pitch deck...")
     from web research ("Industry research shows...")."""


def _json_block(value: Any) -> str:
    return json.dumps(value or {}, indent=2, default=str)


def format_money(value: Any) -> str:
    """Render an amount as $1,234,567, or TBD when absent."""
    if value in (None, ""):
        return "TBD"
    try:
        return f"${float(value):,.0f}"
    except (TypeError, ValueError):
        return str(value)


def _company(deal_data: dict[str, Any]) -> dict[str, Any]:
    return deal_data.get("company") or {}


def _result(analysis_data: dict[str, Any]) -> dict[str, Any]:
    return analysis_data.get("result") or {}


def _scores(analysis_data: dict[str, Any]) -> dict[str, Any]:
    return analysis_data.get("scores") or _result(analysis_data).get("scores") or {}


def company_name(deal_data: dict[str, Any], analysis_data: dict[str, Any] | None = None) -> str:
    details = _result(analysis_data or {}).get("company_details") or {}
    return _company(deal_data).get("name") or details.get("name") or "the company"


def get_basic_company_info(deal_data: dict[str, Any], analysis_data: dict[str, Any]) -> str:
    """Render the company, deal and score block shared by every section prompt."""
    analysis = _result(analysis_data)
    company_details = analysis.get("company_details") or {}
    deal_details = analysis.get("deal_details") or {}
    scores = analysis.get("scores") or {}
    company = _company(deal_data)

    check_min = deal_details.get("check_size_min")
    check_max = deal_details.get("check_size_max")
    if check_min and check_max:
        investment_range = f"{format_money(check_min)} - {format_money(check_max)}"
    else:
        investment_range = "To be determined"

    round_size = deal_details.get("round_size")
    valuation = deal_details.get("valuation")
    decision = (analysis.get("investment_recommendation") or {}).get("decision")

    return f"""BASIC COMPANY INFORMATION:
- Company Name: {company_details.get("name") or company.get("name") or "Not specified"}
- Website: {company_details.get("website") or company.get("website") or "Not provided"}
- Location: {company_details.get("location") or company.get("location") or "Not provided"}
- Sector/Industry: {company_details.get("sector") or "Not specified"}
- Description: {company_details.get("description") or "See documents"}
- Founded: {company_details.get("founded_date") or "Not disclosed"}

DEAL INFORMATION:
- Stage: {deal_details.get("stage") or deal_data.get("stage") or "Not specified"}
- Round Size: {format_money(round_size) if round_size else "Not disclosed"}
- Valuation: {format_money(valuation) if valuation else "Not disclosed"}
- HTV Investment Range: {investment_range}

ANALYSIS SCORES:
- Team: {scores.get("team") or "N/A"}/10
- Market: {scores.get("market") or "N/A"}/10
- Product: {scores.get("product") or "N/A"}/10
- Thesis Fit: {scores.get("thesis_fit") or "N/A"}/10

INVESTMENT RECOMMENDATION: {decision or "Pending analysis"}"""


@dataclass(frozen=True)
class SectionConfig:
    """Static configuration of one memo section."""

    section_type: SectionType
    order: int
    title: str
    system_prompt: str
    prompt_template: PromptTemplate
    max_tokens: int = 2000

    def render_prompt(self, deal_data: dict[str, Any], analysis_data: dict[str, Any]) -> str:
        return self.prompt_template(deal_data, analysis_data)


# ============================================================================
# Prompt templates
# ============================================================================


def _executive_summary(deal: dict[str, Any], analysis: dict[str, Any]) -> str:
    result = _result(analysis)
    return f"""Generate the Executive Summary section for {company_name(deal, analysis)}.

Company: {company_name(deal, analysis)}
Stage: {deal.get("stage") or "Not specified"}
Funding Amount: {format_money(deal.get("funding_amount"))}
Valuation: {format_money(deal.get("valuation"))}

Analysis Summary:
{_json_block(result.get("executive_summary") or result)}

Focus on:
- What the company does, stated plainly
- Why this is compelling for HTV's thesis
- The investment recommendation and its rationale
- Key metrics and traction points, cited from the pitch deck"""


def _thesis_alignment(deal: dict[str, Any], analysis: dict[str, Any]) -> str:
    return f"""Generate the Investment Thesis Alignment section for {company_name(deal, analysis)}.

HTV invests in startups changing housing and home technology across:
- Home transactions (buying, selling, financing)
- Property management and maintenance
- Construction technology and sustainable building
- Prop-tech infrastructure

Company: {company_name(deal, analysis)}
Description: {_company(deal).get("description") or "See documents"}

Thesis Fit Score: {_scores(analysis).get("thesis_fit") or "N/A"}/10
Analysis:
{_json_block(_result(analysis).get("thesis_alignment"))}

Explain which thesis areas the company addresses, how the solution fits our focus,
why the opportunity is compelling and why the timing is right. Do not force a fit
that the documents do not support."""


def _company_overview(deal: dict[str, Any], analysis: dict[str, Any]) -> str:
    company = _company(deal)
    result = _result(analysis)
    return f"""Generate the Company Overview section for {company_name(deal, analysis)}.

Company: {company_name(deal, analysis)}
Website: {company.get("website") or result.get("company_website") or "Not provided"}
Founded: {company.get("founded_date") or "Not provided"}
Stage: {deal.get("stage") or "Not specified"}

Description: {company.get("description") or "See documents"}

Analysis Data:
{_json_block(result.get("company_overview") or result.get("company_info"))}

Provide:
1. What the company does
2. The problem it solves and why it matters
3. How the solution works
4. Customer segments and go-to-market
5. Key metrics, traction and growth indicators

Use the company's correct domain and naming exactly as written in its documents."""


def _market_analysis(deal: dict[str, Any], analysis: dict[str, Any]) -> str:
    result = _result(analysis)
    market = result.get("market_analysis") or {}
    return f"""Generate the Market Analysis section for {company_name(deal, analysis)}.

Industry: {result.get("industry") or "Housing/PropTech"}
Market Size: {market.get("tam") or "To be researched"}

Analysis Data:
{_json_block(market)}

Provide:
1. TAM, SAM and SOM with data sources
2. Growth projections and key trends
3. Industry dynamics and key success factors
4. Competitive landscape and positioning
5. Why the timing is right

Extract market figures from the pitch deck first, then validate them with current research."""


def _product_technology(deal: dict[str, Any], analysis: dict[str, Any]) -> str:
    result = _result(analysis)
    technology = result.get("technology") or {}
    return f"""Generate the Product & Technology section for {company_name(deal, analysis)}.

Product Description: {_company(deal).get("description") or "See documents"}
Tech Stack: {technology.get("stack") or "To be analyzed"}

Analysis Data:
{_json_block(result.get("product") or technology)}

Cover core features and user experience, technical architecture, proprietary
technology and IP, differentiation and moat, and the product roadmap. If technical
specifications are not in the documents, say so and describe industry norms instead."""


def _business_model(deal: dict[str, Any], analysis: dict[str, Any]) -> str:
    result = _result(analysis)
    return f"""Generate the Business Model & Financials section for {company_name(deal, analysis)}.

Funding Stage: {deal.get("stage") or "Not specified"}
Funding Amount: {format_money(deal.get("funding_amount"))}

Financial Data:
{_json_block(result.get("financials") or result.get("business_model"))}

Analyze revenue streams and pricing, current metrics (ARR, burn rate, runway), unit
economics, CAC and LTV, and projections with their assumptions. Company figures come
only from the documents; benchmark them against industry data and label which is which."""


def _team_execution(deal: dict[str, Any], analysis: dict[str, Any]) -> str:
    return f"""Generate the Team & Execution section for {company_name(deal, analysis)}.

Team Data:
{_json_block(_result(analysis).get("team"))}

Evaluate founder profiles and relevant experience, team composition and key hires,
advisors and investors, past execution, and hiring gaps. Never guess degrees, prior
employers, dates or achievements. When details are missing, write
"Additional details not provided in documents"."""


def _investment_rationale(deal: dict[str, Any], analysis: dict[str, Any]) -> str:
    scores = _scores(analysis)
    return f"""Generate the Investment Rationale section for {company_name(deal, analysis)}.

Deal Terms:
- Stage: {deal.get("stage") or "Not specified"}
- Valuation: {format_money(deal.get("valuation"))}
- HTV Check: {format_money(deal.get("check_size_max"))}

Analysis Scores:
- Thesis Fit: {scores.get("thesis_fit") or "N/A"}/10
- Market Opportunity: {scores.get("market_opportunity") or "N/A"}/10
- Team Quality: {scores.get("team_quality") or "N/A"}/10

Articulate why HTV should invest, the expected return profile and exit scenarios,
strategic value, key milestones, and how HTV can add value. Support exit scenarios
with recent comparable transactions and separate company projections from market analysis."""


def _risks_mitigation(deal: dict[str, Any], analysis: dict[str, Any]) -> str:
    return f"""Generate the Risks & Mitigation section for {company_name(deal, analysis)}.

Risk Assessment:
{_json_block(_result(analysis).get("risks"))}

Assess market and competitive risks, execution and team risks, technology and
scalability concerns, business model risks, and regulatory considerations.
Suggest a mitigation for each risk. Be balanced but honest."""


def _recommendation(deal: dict[str, Any], analysis: dict[str, Any]) -> str:
    return f"""Generate the Recommendation section for {company_name(deal, analysis)}.

Deal Summary:
- Stage: {deal.get("stage") or "Not specified"}
- Requested Amount: {format_money(deal.get("funding_amount"))}
- Valuation: {format_money(deal.get("valuation"))}
- HTV Allocation: {format_money(deal.get("check_size_max"))}

Overall Score: {_scores(analysis).get("overall") or "N/A"}/10

Provide a clear recommendation with rationale, suggested terms and check size, key
diligence items or conditions, and next steps with a timeline. If terms are not in
the documents, use market-standard terms and cite the research behind them."""


SECTION_CONFIGS: tuple[SectionConfig, ...] = (
    SectionConfig(
        section_type=SectionType.EXECUTIVE_SUMMARY,
        order=1,
        title="Executive Summary",
        system_prompt=f"""{ANALYST_PREAMBLE}

Generate ONLY the Executive Summary section of an investment memo, in 2-3 paragraphs:
1. Company overview and core value proposition
2. Key investment highlights and thesis alignment
3. Primary recommendation with deal terms""",
        prompt_template=_executive_summary,
        max_tokens=1500,
    ),
    SectionConfig(
        section_type=SectionType.THESIS_ALIGNMENT,
        order=2,
        title="Investment Thesis Alignment",
        system_prompt=f"""{ANALYST_PREAMBLE}

Generate ONLY the Investment Thesis Alignment section. Focus on how the deal aligns with:
1. Fixing buying, selling, and financing homes
2. Managing and maintaining homes efficiently
3. Construction tech and sustainable building
4. Prop-tech infrastructure and enabling technologies""",
        prompt_template=_thesis_alignment,
    ),
    SectionConfig(
        section_type=SectionType.COMPANY_OVERVIEW,
        order=3,
        title="Company Overview",
        system_prompt=f"""{ANALYST_PREAMBLE}

Generate ONLY the Company Overview section: background and founding story, core
products and value proposition, target customers, traction, and competitive advantages.""",
        prompt_template=_company_overview,
        max_tokens=2500,
    ),
    SectionConfig(
        section_type=SectionType.MARKET_ANALYSIS,
        order=4,
        title="Market Analysis",
        system_prompt=f"""{ANALYST_PREAMBLE}

Generate ONLY the Market Analysis section: market sizing, growth rates and trends,
market drivers, the competitive landscape, and market timing.""",
        prompt_template=_market_analysis,
        max_tokens=2500,
    ),
    SectionConfig(
        section_type=SectionType.PRODUCT_TECHNOLOGY,
        order=5,
        title="Product & Technology",
        system_prompt=f"""{ANALYST_PREAMBLE}

Generate ONLY the Product & Technology section: features and capabilities, technology
stack, technical advantages, roadmap, and integrations.""",
        prompt_template=_product_technology,
    ),
    SectionConfig(
        section_type=SectionType.BUSINESS_MODEL,
        order=6,
        title="Business Model & Financials",
        system_prompt=f"""{ANALYST_PREAMBLE}

Generate ONLY the Business Model & Financials section: revenue model and pricing,
unit economics, customer acquisition, financial performance, and path to profitability.""",
        prompt_template=_business_model,
    ),
    SectionConfig(
        section_type=SectionType.TEAM_EXECUTION,
        order=7,
        title="Team & Execution",
        system_prompt=f"""{ANALYST_PREAMBLE}

Generate ONLY the Team & Execution section: founder backgrounds, key team members and
advisors, execution track record, organizational strengths, and hiring gaps.""",
        prompt_template=_team_execution,
    ),
    SectionConfig(
        section_type=SectionType.INVESTMENT_RATIONALE,
        order=8,
        title="Investment Rationale",
        system_prompt=f"""{ANALYST_PREAMBLE}

Generate ONLY the Investment Rationale section: investment highlights, value creation,
strategic advantages for HTV, return potential, and portfolio fit.""",
        prompt_template=_investment_rationale,
    ),
    SectionConfig(
        section_type=SectionType.RISKS_MITIGATION,
        order=9,
        title="Risks & Mitigation",
        system_prompt=f"""{ANALYST_PREAMBLE}

Generate ONLY the Risks & Mitigation section with a balanced assessment of market,
execution, technology, financial, and regulatory risks.""",
        prompt_template=_risks_mitigation,
    ),
    SectionConfig(
        section_type=SectionType.RECOMMENDATION,
        order=10,
        title="Recommendation",
        system_prompt=f"""{ANALYST_PREAMBLE}

Generate ONLY the Recommendation section: the investment decision (invest/pass/follow),
recommended check size and terms, key conditions, follow-up actions, and timeline.
Be decisive and specific.""",
        prompt_template=_recommendation,
        max_tokens=1500,
    ),
)

SECTIONS_BY_TYPE: dict[SectionType, SectionConfig] = {c.section_type: c for c in SECTION_CONFIGS}

TOTAL_SECTIONS = len(SECTION_CONFIGS)


def get_section_config(section_type: SectionType | str) -> SectionConfig:
    """Look up a section configuration; raises KeyError for unknown types."""
    return SECTIONS_BY_TYPE[SectionType(section_type)]


def get_section_title(section_type: SectionType | str) -> str:
    try:
        return get_section_config(section_type).title
    except ValueError:
        return str(section_type)
