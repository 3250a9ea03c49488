"""
LLM-backed content steps: topic distillation and script writing via Claude.

Both ask for a bare JSON object and parse it; anything unusable raises
AIResponseError so the job records a failure instead of publishing filler.
"""

import json
import logging
import os
import re
from typing import Sequence

import anthropic

from models.content import Article, Script, Topic

logger = logging.getLogger(__name__)

AI_MODEL: str = os.getenv("AI_MODEL", "claude-sonnet-4-6")

_client = anthropic.AsyncAnthropic(api_key=os.getenv("ANTHROPIC_API_KEY", ""))

_MAX_ARTICLES = 20
_MAX_TOPICS = 4
_THUMBNAIL_TITLE_MAX = 50

_QUOTE_CONTEXT = re.compile(
    r"\b(said|says|announced|stated|declared|quoted|tweeted|posted|wrote|claimed|revealed)\b",
    re.IGNORECASE,
)

_DISTILL_SYSTEM = (
    "You are an expert crypto analyst who identifies trending topics "
    "for a young, degen audience."
)

_SCRIPT_SYSTEM = (
    "You are Crypto B, a popular crypto YouTuber known for breaking down "
    "complex crypto news in an entertaining way for degens."
)


class AIResponseError(Exception):
    """The model answered, but not with something we can use."""


def _parse_json(text: str) -> dict:
    # Strip markdown code fences if present
    text = re.sub(r"^```[a-z]*\n?", "", text.strip()).rstrip("`").strip()
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise AIResponseError(f"Model returned invalid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise AIResponseError("Model returned JSON that is not an object")
    return parsed


async def _ask(system: str, prompt: str, max_tokens: int) -> dict:
    resp = await _client.messages.create(
        model=AI_MODEL,
        max_tokens=max_tokens,
        system=system,
        messages=[{"role": "user", "content": prompt}],
    )
    text = "".join(b.text for b in resp.content if getattr(b, "text", None))
    if not text.strip():
        raise AIResponseError("Empty response from model")
    return _parse_json(text)


# ── Topics ────────────────────────────────────────────────────────────────────

async def distill_topics(articles: Sequence[Article]) -> list[Topic]:
    """Pick the 3-4 most important topics and tie each back to a source URL."""
    articles_text = "\n".join(
        f"- {a.title} ({a.source})" for a in list(articles)[:_MAX_ARTICLES]
    )
    prompt = (
        "You are analyzing the latest crypto news to identify the top 3-4 most "
        "trending and important topics from the last few hours.\n\n"
        f"Here are the recent articles:\n{articles_text}\n\n"
        "For each topic provide a catchy title, a 2-3 sentence summary, an "
        "importance score (1-10) and the primary source.\n"
        "Return ONLY a JSON object, no explanation:\n"
        '{"topics": [{"title": "...", "summary": "...", "importance": 8, "source": "..."}]}'
    )

    parsed = await _ask(_DISTILL_SYSTEM, prompt, max_tokens=1024)
    raw = parsed.get("topics")
    if not isinstance(raw, list):
        raise AIResponseError("Model response has no topics list")

    topics = []
    for item in raw:
        if not isinstance(item, dict) or not str(item.get("title", "")).strip():
            continue
        try:
            importance = int(float(item.get("importance", 5)))
        except (TypeError, ValueError):
            importance = 5
        topics.append(Topic(
            title=str(item["title"]).strip(),
            summary=str(item.get("summary", "")).strip(),
            importance=max(1, min(10, importance)),
            source=str(item.get("source", "")).strip(),
        ))

    if not topics:
        raise AIResponseError("Model identified no topics")

    topics.sort(key=lambda t: t.importance, reverse=True)
    topics = topics[:_MAX_TOPICS]
    for topic in topics:
        topic.url = match_source_url(topic, articles)

    logger.info("Topics distilled", extra={"count": len(topics),
                "topics": [t.title for t in topics]})
    return topics


def _keywords(text: str, min_len: int = 4) -> set[str]:
    return {w for w in text.lower().split() if len(w) >= min_len}


def match_source_url(topic: Topic, articles: Sequence[Article]):
    """
    Find the article a topic most likely came from:
      1. an article whose title shares at least two keywords with the topic title
      2. otherwise the first article from the same source
    """
    topic_words = _keywords(topic.title)
    for article in articles:
        if len(topic_words & _keywords(article.title)) >= 2:
            return article.url

    source = topic.source.lower()
    if source:
        for article in articles:
            if article.source.lower() == source:
                return article.url
    return None


# ── Script ────────────────────────────────────────────────────────────────────

async def generate_script(topics: Sequence[Topic]) -> Script:
    topics = list(topics)
    topics_text = "\n\n".join(
        f"{i}. {t.title}: {t.summary}" + (f" (Source: {t.url})" if t.url else "")
        for i, t in enumerate(topics, 1)
    )

    updates = [t.title for t in topics if t.is_update]
    update_note = ""
    if updates:
        update_note = (
            "\n\nThese topics were covered recently; use a DIFFERENT angle and focus "
            f"on what changed: {', '.join(updates)}"
        )

    prompt = (
        "Create an engaging YouTube video script based on these trending crypto topics:\n\n"
        f"{topics_text}{update_note}\n\n"
        "Requirements:\n"
        "- Audience: young crypto degens (18-30); energetic, casual, slightly edgy tone\n"
        "- Length: 4-6 minutes of speaking (600-900 words)\n"
        "- Structure: hook intro, one section per topic with analysis, strong outro\n"
        "- Mention that new videos are posted every 4 hours and that reference "
        "links are in the description\n\n"
        "Also write a catchy title (under 60 characters), a 3-4 paragraph description "
        "listing the reference links, and 15-20 tags.\n"
        "Return ONLY a JSON object:\n"
        '{"title": "...", "description": "...", "tags": ["..."], "script": "..."}'
    )

    parsed = await _ask(_SCRIPT_SYSTEM, prompt, max_tokens=4096)
    title = str(parsed.get("title") or "").strip()
    body = str(parsed.get("script") or "").strip()
    if not title or not body:
        raise AIResponseError("Model response is missing a title or script")

    tags = parsed.get("tags") or []
    if isinstance(tags, str):
        tags = [t.strip() for t in tags.split(",")]

    script = Script(
        title=title,
        description=str(parsed.get("description") or "").strip(),
        tags=[str(t).strip() for t in tags if str(t).strip()],
        body=body,
        topics=topics,
        thumbnail_title=thumbnail_title(title),
    )
    logger.info("Script generated", extra={"title": title, "words": len(body.split())})
    return script


def thumbnail_title(title: str) -> str:
    """Short thumbnail text: decorative quotes dropped, capped at a word boundary."""
    text = title.strip()
    if not _QUOTE_CONTEXT.search(text):
        # Quotes not inside a word, so "Ethereum's" survives
        text = re.sub(r"""(?<!\w)["']|["'](?!\w)""", "", text)
        text = re.sub(r"\s+", " ", text).strip()

    if len(text) > _THUMBNAIL_TITLE_MAX:
        cut = text[:_THUMBNAIL_TITLE_MAX].rsplit(" ", 1)[0]
        text = cut.rstrip(" ,:;-") or text[:_THUMBNAIL_TITLE_MAX]
    return text
