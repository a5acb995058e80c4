# =============================================================================
# Report Text Extraction — BeautifulSoup
# =============================================================================
#
# Turns a fetched press-release page into plain text. The press-release body
# lives in `.q4default` containers on the investor-relations site (a release
# may be split over several); everything outside them is navigation and
# boilerplate.
#
# Returns an empty string when no container matches or all are empty. The fetcher
# treats that exactly like a missing page (ExtractionEmpty).
# =============================================================================

from __future__ import annotations

import re

from bs4 import BeautifulSoup

_WHITESPACE = re.compile(r"[ \t\r\f\v]+")


def extract_report_text(html: str | bytes, selector: str = ".q4default") -> str:
    """
    Extract the report body from an HTML page.

    Args:
        html: Raw page markup.
        selector: CSS selector of the elements holding the report body;
            every match contributes, in document order.

    Returns:
        Whitespace-normalised text, one line per block; "" if nothing found.
    """
    soup = BeautifulSoup(html, "lxml")
    containers = soup.select(selector)
    if not containers:
        return ""

    blocks = []
    for container in containers:
        for tag in container(["script", "style", "noscript"]):
            tag.decompose()
        blocks.append(container.get_text(separator="\n"))

    text = "\n".join(blocks)
    lines = [_WHITESPACE.sub(" ", line).strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line)
