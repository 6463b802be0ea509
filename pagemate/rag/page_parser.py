"""Flatten a scraped page record into structured text for chunking.

Handles:
- Validation of the scraper's record
- Key-topic selection from headings
- Heading/content pairing for detail sections
- Navigation link filtering
- A trailing page summary from the enhanced metadata
"""
import re
from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, Field
import structlog

logger = structlog.get_logger()

NAVIGATION_KEYWORDS = (
    "home", "about", "contact", "login", "sign up", "register", "menu",
    "search", "help", "support", "privacy", "terms", "cookie",
)

TOPIC_PATTERN = re.compile(r"^(what|how|why|when|where|guide|tutorial|introduction|about)", re.IGNORECASE)
PSEUDO_HEADING_PATTERN = re.compile(r"^[A-Z][^.!?]*$")

MAX_DETAIL_SECTIONS = 5


class Link(BaseModel):
    text: str = ""
    href: str = ""


class Heading(BaseModel):
    level: Optional[str] = None
    text: str = ""


class ScrapedPage(BaseModel):
    """Structured record produced by the page scraper."""

    title: str = ""
    headings: List[Union[str, Heading]] = Field(default_factory=list)
    paras: List[str] = Field(default_factory=list)
    links: List[Link] = Field(default_factory=list)
    enhanced: Dict[str, Any] = Field(default_factory=dict)

    def heading_texts(self) -> List[str]:
        texts = []
        for heading in self.headings:
            text = heading if isinstance(heading, str) else heading.text
            if text:
                texts.append(text)
        return texts


def is_navigation_link(link_text: str) -> bool:
    if not link_text:
        return True
    lower = link_text.lower()
    return any(keyword in lower for keyword in NAVIGATION_KEYWORDS)


def key_topics(headings: List[str]) -> List[str]:
    """Short headings that read like a topic (what/how/guide/...)."""
    return [
        text
        for text in headings
        if len(text.split()) <= 8 and TOPIC_PATTERN.match(text)
    ]


def heading_content_pairs(headings: List[str], paragraphs: List[str]) -> List[Dict[str, str]]:
    """Group paragraphs under the short capitalised lines that precede them.

    Paragraphs before the first such line are attached to the page's first
    heading, but only within the first three paragraphs.
    """
    sections = []
    current_heading = None
    current_content: List[str] = []

    for position, paragraph in enumerate(paragraphs):
        if len(paragraph) < 100 and PSEUDO_HEADING_PATTERN.match(paragraph):
            if current_heading and current_content:
                sections.append({"heading": current_heading, "content": " ".join(current_content)})
            current_heading = paragraph
            current_content = []
        elif current_heading:
            current_content.append(paragraph)
        elif headings and position < 3:
            current_heading = headings[0]
            current_content.append(paragraph)

    if current_heading and current_content:
        sections.append({"heading": current_heading, "content": " ".join(current_content)})

    return sections


def page_summary(page: ScrapedPage) -> str:
    lines = ["## Page Summary"]
    enhanced = page.enhanced or {}

    description = (enhanced.get("meta") or {}).get("description")
    if description:
        lines.append(f"**Description:** {description}")

    stats = enhanced.get("contentStats")
    if stats:
        lines.append(
            f"**Content Stats:** {stats.get('totalParagraphs', 0)} paragraphs, "
            f"{stats.get('totalHeadings', 0)} headings"
        )

    links = enhanced.get("linkAnalysis")
    if links:
        lines.append(
            f"**Links:** {links.get('internal', 0)} internal, {links.get('external', 0)} external"
        )

    return "\n".join(lines)


def to_structured_text(page: Optional[Union[ScrapedPage, Dict[str, Any]]]) -> str:
    """Serialize a scraped page into blank-line separated markdown sections.

    Args:
        page: ScrapedPage or the raw dict sent by the scraper

    Returns:
        Structured text ready for chunking
    """
    if not page:
        return "No data available"
    if isinstance(page, dict):
        page = ScrapedPage.model_validate(page)

    headings = page.heading_texts()
    sections: List[str] = []

    if page.title:
        sections.append(f"# {page.title}")

    if page.paras:
        sections.append("## Main Content")
        sections.extend(page.paras)

    topics = key_topics(headings)
    if topics:
        sections.append("## Key Topics")
        sections.append("\n".join(f"- {topic}" for topic in topics))

    details = heading_content_pairs(headings, page.paras) if headings and page.paras else []
    if details:
        sections.append("## Detailed Information")
        for position, section in enumerate(details[:MAX_DETAIL_SECTIONS]):
            sections.append(f"### {section['heading'] or f'Section {position + 1}'}")
            sections.append(section["content"])

    resources = [link for link in page.links if not is_navigation_link(link.text)]
    if resources:
        sections.append("## Related Resources")
        sections.append("\n".join(f"- [{link.text}]({link.href})" for link in resources))

    sections.append(page_summary(page))

    text = "\n\n".join(sections)
    logger.debug(
        "page_flattened",
        title=page.title,
        paragraphs=len(page.paras),
        detail_sections=min(len(details), MAX_DETAIL_SECTIONS),
        length=len(text),
    )
    return text
