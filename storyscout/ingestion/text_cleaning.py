"""Strip platform UI chrome from scraped post text."""

from __future__ import annotations

import re
from typing import List, Optional, Pattern


_CHROME_SOURCES = [
    # action buttons
    r"like|comment|share|reply|send|follow|join|message",
    r"אהבתי|תגובה|הגב|שיתוף|שתף|שלח",
    r"أعجبني|تعليق|مشاركة|رد|إرسال",
    r"me gusta|comentar|compartir|responder|enviar",
    r"j'aime|commenter|partager|répondre|envoyer",
    r"gefällt mir|kommentieren|teilen|antworten|senden",
    # relative time
    r"\d+\s*[smhdwy]",
    r"\d+\s*(sec|secs|min|mins|hr|hrs|wk|wks|yr|yrs)",
    r"\d+\s*(second|minute|hour|day|week|month|year)s?(\s+ago)?",
    r"just now|yesterday|today",
    r"yesterday at \d{1,2}:\d{2}(\s*[ap]m)?",
    r"עכשיו|אתמול|היום",
    r"الآن|أمس",
    # translation / expansion affordances
    r"see translation|see original|translated by .*|rate this translation",
    r"(…|\.\.\.)?\s*see more|see less|show more|show less|read more",
    r"ראה עוד|הצג עוד|הצג פחות|ראה תרגום",
    r"عرض المزيد|رؤية المزيد|عرض الترجمة",
    r"ver más|voir plus|mehr ansehen",
    # counters
    r"[\d.,]+\s*[km]?\s*(likes?|comments?|shares?|reactions?|replies|reply|views?)",
    r"[\d.,]+\s*[km]?",
    r"view (all|more|previous) (\d+\s+)?(comments?|replies)",
    r"all comments|most relevant|newest|top comments|all reactions:?",
    # composer / header chrome
    r"write a (public )?comment.*",
    r"כתוב תגובה.*|כתבו תגובה.*",
    r"اكتب تعليق.*",
    r"author|admin|moderator|top contributor|rising contributor|group expert",
    r"group|public group|private group|visible|anyone can find this group",
    r"hide|report|save|copy link|turn on notifications|unfollow|more options",
    r"·|•",
]

CHROME_PATTERNS: List[Pattern[str]] = [
    re.compile(rf"^(?:{src})$", re.IGNORECASE) for src in _CHROME_SOURCES
]

MIN_LINE_LENGTH = 3


def is_chrome_line(line: str) -> bool:
    stripped = line.strip()
    if len(stripped) < MIN_LINE_LENGTH:
        return True
    return any(p.match(stripped) for p in CHROME_PATTERNS)


def clean_post_text(text: Optional[str]) -> str:
    """Remove UI chrome lines from raw post text.

    Lines are dropped when, trimmed, they are empty, shorter than three
    characters, or match a chrome pattern as a whole. Surviving lines keep
    their original content; runs of three or more newlines collapse to one
    blank line. Applying this twice gives the same result as applying it once.
    """
    if not text:
        return ""
    kept = [line for line in text.split("\n") if not is_chrome_line(line)]
    out = "\n".join(kept)
    out = re.sub(r"\n{3,}", "\n\n", out)
    return out.strip()
