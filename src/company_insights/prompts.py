"""
Prompt builders for each generation stage. Pure functions of their inputs.
"""

from dataclasses import dataclass
from typing import Optional

from .detection import NOT_FOUND_SENTINEL

PRODUCT_NAME = "Wazo Pulse"
PRODUCT_URL = "https://wazopulse.com"

SOLUTION_CATALOG = (
    "Recognition",
    "Badges",
    "Award",
    "Anonymous feedback",
    "Growth conversation",
    "OKR and Goals",
    "360 Feedback",
    "Public feed page",
)


@dataclass(frozen=True)
class CompanyHints:
    number_of_employees: Optional[str] = None
    company_gstin: Optional[str] = None

    def render(self) -> str:
        lines = []
        if self.number_of_employees:
            lines.append(f"**Additional Context:** Reported employee count: {self.number_of_employees}")
        if self.company_gstin:
            lines.append(f"**Tax Information:** GSTIN: {self.company_gstin}")
        return "\n".join(lines)


def _with_hints(prompt: str, hints: Optional[CompanyHints]) -> str:
    rendered = hints.render() if hints else ""
    if rendered:
        prompt += f"\n\n{rendered}"
    return prompt


def not_found_instruction(company_name: str) -> str:
    return (
        "Only if there is truly NO information about this company (no name match, no industry, "
        f"no website), respond with exactly: \"{NOT_FOUND_SENTINEL} Unable to locate reliable "
        f"information about {company_name}. Please verify the company name.\" "
        "Never use this marker when some information about the company exists."
    )


def build_details_prompt(company_name: str, search_context: Optional[str],
                         hints: Optional[CompanyHints] = None) -> str:
    """Company profile prompt. With search context the model must cite the platforms it used."""
    if search_context:
        prompt = f"""You are a business research analyst. Analyze the LIVE WEB SEARCH DATA below about: {company_name}

**CRITICAL INSTRUCTIONS:**
- The data below comes from REAL-TIME web search with SOURCE ATTRIBUTION
- You MUST use this data to provide analysis
- When citing information, reference the source by platform name (e.g., "According to LinkedIn", "As reported on Glassdoor")
- If search results show the company exists, provide analysis based on available information
- {not_found_instruction(company_name)}

**LIVE DATA FROM WEB SEARCH:**
{search_context}

**Your Task:**
Provide factual information with SOURCE CITATIONS:

1. **Business Nature**: Industry, sector, operations [cite platform name]
2. **Company Status**: Active/Inactive, registration [cite platform name]
3. **Financial Metrics**:
   - Annual revenue [cite platform name]
   - Profit After Tax (PAT) [cite platform name]
   - If unavailable: "Financial data not publicly disclosed"
4. **Employee Information**:
   - Employee count [cite platform name]
   - Revenue per employee (if calculable)
   - Profit per employee (if calculable)
5. **Employee Sentiment**: Complaints/feedback [cite platform name]
6. **Market Position**: Industry benchmark [cite platform name]
7. **Engagement Level**: Employee engagement indicators [cite platform name]
8. **Growth Opportunities**: How {PRODUCT_NAME} ({PRODUCT_URL}) can help

**Output Format:**
- Use bullet points with headers
- ALWAYS cite sources: "According to [Platform Name]" or "[Platform Name] reports that..."
- If data unavailable: "Data not publicly disclosed"
- Keep concise (1-2 lines per point)"""
    else:
        prompt = f"""Act as a business analyst and provide comprehensive details of this company: {company_name} with the following specific points:

1. Nature of business and detailed business description
2. Annual revenue (latest available figures)
3. Profit After Tax (PAT)
4. Current number of employees
5. Revenue per employee calculation
6. Profit per employee calculation
7. Summary of negative reviews from various platforms (Glassdoor, Indeed, etc.)
8. Comparison with industry benchmarks
9. Employee engagement metrics and challenges
10. Growth opportunities and areas where {PRODUCT_NAME} ({PRODUCT_URL}) could add value

**Important:** Do not provide speculative data. {not_found_instruction(company_name)}"""

    return _with_hints(prompt, hints)


def build_summary_prompt(company_name: str, details_text: str,
                         hints: Optional[CompanyHints] = None) -> str:
    prompt = f"""You are a professional business analyst. Write a short factual summary of **{company_name}**.

**COMPANY DETAILS:**
{details_text}

**SUMMARY RULES:**
- One concise paragraph (80-120 words)
- Focus on what IS known
- Mention industry, operations, available metrics
- Objective and data-based
- Professional tone
- No headings or bullet points"""
    return _with_hints(prompt, hints)


def build_strategic_analysis_prompt(company_name: str, details_text: str,
                                    hints: Optional[CompanyHints] = None) -> str:
    prompt = f"""As a senior business analyst with expertise in strategic consulting, provide a comprehensive, data-driven strategic analysis of {company_name} based on the following company information.

**COMPANY INFORMATION:**
{details_text}

---

## Analysis Requirements:

1. Use the provided company data as the **primary quantitative source**
2. Perform **step-by-step calculations** with clear formulas and results
3. Calculate revenue per employee, profit per employee, attrition cost impact and ROI projections for {PRODUCT_NAME} adoption

## Structure

### 1. Strategic Position Analysis
### 2. Financial Performance Assessment
### 3. Operational Excellence Evaluation
### 4. Human Capital Analysis
### 5. Market Opportunity Assessment
### 6. Risk Assessment & Mitigation
### 7. Strategic Recommendations (0-6 months, 6-18 months, 18+ months)
### 8. Technology Integration Opportunities ({PRODUCT_NAME} roadmap and expected ROI)

Always show formula + calculation + result before interpretation. Focus on actionable recommendations with measurable outcomes."""
    return _with_hints(prompt, hints)


def build_voice_prompt(company_name: str, search_context: Optional[str],
                       hints: Optional[CompanyHints] = None) -> str:
    solutions = ", ".join(f"{idx}. {name}" for idx, name in enumerate(SOLUTION_CATALOG, 1))
    prompt = f"""Analyze employee information for {company_name}.

**EMPLOYEE REVIEW & COMPANY DATA:**
{search_context or "Limited review data available."}

**Task:** Identify 8-12 workplace challenges and map to {PRODUCT_NAME} solutions.

**{PRODUCT_NAME} Solutions:**
{solutions}

**Output Format:**
<challenge> ✅ <solution(s)>

**Examples:**
- Lack of recognition programs ✅ Recognition, Award, Badges
- Limited feedback channels ✅ Anonymous feedback, 360 Feedback
- Unclear career paths ✅ Growth conversation, OKR and Goals

**Rules:**
- One line per item
- Use ✅ separator
- 8-12 items total
- Professional tone

Company: {company_name}"""
    return _with_hints(prompt, hints)
