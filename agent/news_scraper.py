"""
Crypto news scraper.

RSS feeds are the primary source (they carry publish dates). When they yield
too few recent articles, the news sites' front pages are scraped with a
headless Chromium via Playwright to top up the list.
"""

import asyncio
import logging
import os
import time
from calendar import timegm
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import feedparser
from playwright.async_api import async_playwright, TimeoutError as PWTimeout

from models.content import Article

logger = logging.getLogger(__name__)

NEWS_WINDOW_HOURS: float = float(os.getenv("NEWS_WINDOW_HOURS", "4"))
MIN_RSS_ARTICLES: int = int(os.getenv("MIN_RSS_ARTICLES", "10"))
HEADLESS: bool = os.getenv("HEADLESS", "true").lower() == "true"

_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/131.0.0.0 Safari/537.36"
)

_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
]

_SUMMARY_CHARS = 200
_PER_SITE_LIMIT = 10


@dataclass(frozen=True)
class Feed:
    url: str
    source: str


RSS_FEEDS = [
    Feed("https://www.coindesk.com/arc/outboundfeeds/rss/", "CoinDesk"),
    Feed("https://cointelegraph.com/rss", "CoinTelegraph"),
    Feed("https://cryptoslate.com/feed/", "CryptoSlate"),
    Feed("https://www.theblock.co/rss.xml", "The Block"),
    Feed("https://decrypt.co/feed", "Decrypt"),
    Feed("https://coinjournal.net/feed/", "CoinJournal"),
]

# Front pages scraped when RSS comes up short: (url, source, headline selectors)
_SITES = [
    ("https://www.coindesk.com/", "CoinDesk", "h2, h3, .headline"),
    ("https://cointelegraph.com/", "CoinTelegraph", "h2, h3, .post-card__title"),
    ("https://cryptoslate.com/", "CryptoSlate", "h2, h3, .post-title"),
]


class ScrapeError(Exception):
    """Raised when no source produced a single usable article."""


async def scrape_news() -> list[Article]:
    cutoff = datetime.now(timezone.utc) - timedelta(hours=NEWS_WINDOW_HOURS)

    articles = await fetch_rss_feeds(cutoff)
    logger.info("Fetched RSS articles", extra={"count": len(articles)})

    if len(articles) < MIN_RSS_ARTICLES:
        logger.info("Supplementing RSS with front-page scraping",
                    extra={"have": len(articles), "want": MIN_RSS_ARTICLES})
        articles.extend(await scrape_front_pages())

    recent = [a for a in dedupe(articles) if a.published >= cutoff]
    if not recent:
        raise ScrapeError(f"No crypto news found in the last {NEWS_WINDOW_HOURS:g} hours")

    logger.info("Scrape complete", extra={"count": len(recent)})
    return recent


# ── RSS ───────────────────────────────────────────────────────────────────────

async def fetch_rss_feeds(cutoff: datetime) -> list[Article]:
    results = await asyncio.gather(
        *(asyncio.to_thread(feedparser.parse, feed.url, agent=_USER_AGENT) for feed in RSS_FEEDS),
        return_exceptions=True,
    )

    articles: list[Article] = []
    for feed, parsed in zip(RSS_FEEDS, results):
        if isinstance(parsed, BaseException):
            logger.warning("RSS feed failed", extra={"source": feed.source, "error": str(parsed)})
            continue
        found = parse_feed_entries(parsed.entries, feed.source, cutoff)
        logger.debug("RSS feed parsed", extra={"source": feed.source, "count": len(found)})
        articles.extend(found)
    return articles


def parse_feed_entries(entries, source: str, cutoff: datetime) -> list[Article]:
    """Turn feedparser entries into Articles, dropping stale or incomplete ones."""
    out = []
    for entry in entries:
        title = (entry.get("title") or "").strip()
        link = (entry.get("link") or entry.get("id") or "").strip()
        if not title or not link:
            continue

        published = _entry_time(entry) or datetime.now(timezone.utc)
        if published < cutoff:
            continue

        summary = (entry.get("summary") or entry.get("description") or "").strip()
        out.append(Article(
            title=title,
            url=link,
            source=source,
            published=published,
            summary=summary[:_SUMMARY_CHARS] or None,
        ))
    return out


def _entry_time(entry) -> Optional[datetime]:
    for key in ("published_parsed", "updated_parsed"):
        parsed = entry.get(key)
        if isinstance(parsed, time.struct_time):
            # feedparser normalises to UTC
            return datetime.fromtimestamp(timegm(parsed), tz=timezone.utc)
    return None


def dedupe(articles: list[Article]) -> list[Article]:
    """Keep the first article per URL, ignoring case and query string."""
    seen: set[str] = set()
    unique = []
    for article in articles:
        key = article.url.lower().split("?")[0]
        if key in seen:
            continue
        seen.add(key)
        unique.append(article)
    return unique


# ── Front-page fallback ───────────────────────────────────────────────────────

async def scrape_front_pages() -> list[Article]:
    """Best effort: a browser that will not start yields whatever was collected."""
    articles: list[Article] = []
    try:
        async with async_playwright() as pw:
            browser = await pw.chromium.launch(headless=HEADLESS, args=_LAUNCH_ARGS)
            try:
                context = await browser.new_context(user_agent=_USER_AGENT, locale="en-US")
                page = await context.new_page()
                for url, source, selectors in _SITES:
                    try:
                        found = await _scrape_site(page, url, source, selectors)
                        logger.info("Scraped front page", extra={"source": source, "count": len(found)})
                        articles.extend(found)
                    except PWTimeout:
                        logger.warning("Front page timed out", extra={"source": source})
                    except Exception as exc:
                        logger.warning("Front page scrape failed",
                                       extra={"source": source, "error": str(exc)})
            finally:
                await browser.close()
    except Exception as exc:
        logger.warning("Front page fallback unavailable",
                       extra={"error": str(exc)}, exc_info=True)
    return articles


async def _scrape_site(page, base_url: str, source: str, selectors: str) -> list[Article]:
    await page.goto(base_url, wait_until="domcontentloaded", timeout=20_000)
    now = datetime.now(timezone.utc)
    found = []

    cards = page.locator("article")
    for i in range(await cards.count()):
        if len(found) >= _PER_SITE_LIMIT:
            break
        card = cards.nth(i)
        headline = card.locator(selectors).first
        link = card.locator("a").first
        if not await headline.count() or not await link.count():
            continue

        title = (await headline.inner_text()).strip()
        href = await link.get_attribute("href") or ""
        if not title or not href:
            continue
        url = href if href.startswith("http") else base_url.rstrip("/") + "/" + href.lstrip("/")
        found.append(Article(title=title, url=url, source=source, published=now))

    return found
