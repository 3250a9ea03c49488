"""
Payloads exchanged with the pipeline collaborators.

    Article         one scraped news item
    Topic           a distilled trending topic
    Script          title / description / tags / spoken body for one video
    PublishReceipt  what the publishing platform handed back
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Optional


@dataclass
class Article:
    title: str
    url: str
    source: str
    published: datetime
    summary: Optional[str] = None


@dataclass
class Topic:
    title: str
    summary: str
    importance: int = 5     # 1-10
    source: str = ""
    url: Optional[str] = None
    is_update: bool = False  # recently covered; script should take a new angle


@dataclass
class Script:
    title: str
    description: str
    tags: list[str]
    body: str
    topics: list[Topic] = field(default_factory=list)
    thumbnail_title: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "title":          self.title,
            "thumbnailTitle": self.thumbnail_title,
            "description":    self.description,
            "tags":           list(self.tags),
            "script":         self.body,
            "topics":         [asdict(t) for t in self.topics],
        }


@dataclass(frozen=True)
class PublishReceipt:
    platform_video_id: str
    public_url: str
