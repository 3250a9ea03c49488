"""Production wiring: the real scraper, LLM, renderer and uploader."""

from agent.ai_service import distill_topics, generate_script
from agent.news_scraper import scrape_news
from agent.renderer import render_thumbnail, render_video
from agent.youtube_uploader import publish
from workers.job_worker import Collaborators


def default_collaborators() -> Collaborators:
    return Collaborators(
        scrape=scrape_news,
        distill=distill_topics,
        write_script=generate_script,
        render_video=render_video,
        render_thumbnail=render_thumbnail,
        publish=publish,
    )
