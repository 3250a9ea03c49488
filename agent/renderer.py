"""
Video and thumbnail rendering.

render_video()      narration (gTTS) + title card (Pillow) -> ffmpeg -> mp4
render_thumbnail()  1280x720 PNG with the title set large over a dark card

Files land in OUTPUT_DIR and the returned paths are passed through the job
untouched; the HTTP layer serves them by basename.
"""

import asyncio
import logging
import os
import time
from pathlib import Path

from gtts import gTTS
from PIL import Image, ImageDraw, ImageFont

from models.content import Script

logger = logging.getLogger(__name__)

OUTPUT_DIR: str = os.getenv("OUTPUT_DIR", "output")
FFMPEG_BIN: str = os.getenv("FFMPEG_BIN", "ffmpeg")
TTS_LANG: str = os.getenv("TTS_LANG", "en")

WIDTH, HEIGHT = 1280, 720

_BG_TOP = (10, 10, 10)
_BG_MID = (26, 26, 46)
_ACCENT = (247, 147, 26)
_WHITE = (255, 255, 255)

_FONT_CANDIDATES = [
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/System/Library/Fonts/Supplemental/Arial Bold.ttf",
    "/Library/Fonts/Arial Bold.ttf",
    "C:/Windows/Fonts/arialbd.ttf",
]

_TITLE_MAX_WIDTH = 1100
_TITLE_MAX_LINES = 3
_TITLE_FONT_START = 90
_TITLE_FONT_MIN = 60


class RenderError(Exception):
    """ffmpeg (or a rendering step) failed."""


def _stamp() -> int:
    return int(time.time() * 1000)


def _output_dir() -> Path:
    path = Path(OUTPUT_DIR)
    path.mkdir(parents=True, exist_ok=True)
    return path


# ── Drawing ───────────────────────────────────────────────────────────────────

def _font(size: int):
    for candidate in _FONT_CANDIDATES:
        if os.path.exists(candidate):
            return ImageFont.truetype(candidate, size)
    return ImageFont.load_default(size=size)


def wrap_text(draw: ImageDraw.ImageDraw, text: str, font, max_width: int) -> list[str]:
    lines: list[str] = []
    current = ""
    for word in text.split():
        candidate = f"{current} {word}".strip()
        if current and draw.textlength(candidate, font=font) > max_width:
            lines.append(current)
            current = word
        else:
            current = candidate
    if current:
        lines.append(current)
    return lines


def _fit_title(draw: ImageDraw.ImageDraw, title: str):
    """Largest font (down to the minimum) that keeps the title within 3 lines."""
    size = _TITLE_FONT_START
    while True:
        font = _font(size)
        lines = wrap_text(draw, title, font, _TITLE_MAX_WIDTH)
        if len(lines) <= _TITLE_MAX_LINES or size <= _TITLE_FONT_MIN:
            return font, size, lines[:_TITLE_MAX_LINES]
        size -= 5


def _background() -> Image.Image:
    img = Image.new("RGB", (WIDTH, HEIGHT), _BG_TOP)
    draw = ImageDraw.Draw(img)

    # Vertical dark gradient peaking mid-frame
    for y in range(HEIGHT):
        t = 1 - abs(y - HEIGHT / 2) / (HEIGHT / 2)
        colour = tuple(int(a + (b - a) * t) for a, b in zip(_BG_TOP, _BG_MID))
        draw.line([(0, y), (WIDTH, y)], fill=colour)

    # Accent glow, top right
    glow = Image.new("RGB", (WIDTH, HEIGHT), _ACCENT)
    mask = Image.new("L", (WIDTH, HEIGHT), 0)
    mdraw = ImageDraw.Draw(mask)
    for r in range(300, 0, -10):
        mdraw.ellipse([1100 - r, 100 - r, 1100 + r, 100 + r], fill=int(100 * (1 - r / 300)))
    img.paste(glow, (0, 0), mask)

    # Faint grid
    grid = tuple(int(c * 0.05 + b * 0.95) for c, b in zip(_ACCENT, _BG_TOP))
    for x in range(0, WIDTH, 50):
        draw.line([(x, 0), (x, HEIGHT)], fill=grid)
    for y in range(0, HEIGHT, 50):
        draw.line([(0, y), (WIDTH, y)], fill=grid)
    return img


def draw_title_card(title: str, path: Path) -> Path:
    img = _background()
    draw = ImageDraw.Draw(img)
    font, size, lines = _fit_title(draw, title)

    line_height = int(size * 1.2)
    y = (HEIGHT - line_height * len(lines)) // 2
    for line in lines:
        draw.text(
            (WIDTH // 2, y + line_height // 2),
            line,
            font=font,
            fill=_WHITE,
            anchor="mm",
            stroke_width=4,
            stroke_fill=(0, 0, 0),
        )
        y += line_height

    draw.rectangle([0, HEIGHT - 12, WIDTH, HEIGHT], fill=_ACCENT)
    img.save(path, "PNG")
    return path


# ── Collaborators ─────────────────────────────────────────────────────────────

async def render_thumbnail(script: Script) -> str:
    path = _output_dir() / f"thumbnail_{_stamp()}.png"
    await asyncio.to_thread(draw_title_card, script.thumbnail_title or script.title, path)
    logger.info("Thumbnail rendered", extra={"path": str(path)})
    return str(path)


def _synthesize(text: str, path: Path) -> Path:
    gTTS(text=text, lang=TTS_LANG).save(str(path))
    return path


async def render_video(script: Script) -> str:
    out = _output_dir()
    stamp = _stamp()
    audio_path = out / f"audio_{stamp}.mp3"
    card_path = out / f"card_{stamp}.png"
    video_path = out / f"video_{stamp}.mp4"

    await asyncio.to_thread(_synthesize, script.body, audio_path)
    await asyncio.to_thread(draw_title_card, script.title, card_path)
    logger.info("Narration and title card ready", extra={"audio": str(audio_path)})

    proc = await asyncio.create_subprocess_exec(
        FFMPEG_BIN, "-y",
        "-loop", "1", "-i", str(card_path),
        "-i", str(audio_path),
        "-c:v", "libx264", "-tune", "stillimage", "-pix_fmt", "yuv420p",
        "-c:a", "aac", "-b:a", "192k",
        "-shortest",
        str(video_path),
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
    )
    _, stderr = await proc.communicate()
    if proc.returncode != 0:
        tail = stderr.decode("utf-8", errors="ignore").strip().splitlines()[-5:]
        raise RenderError(f"ffmpeg exited with {proc.returncode}: {' | '.join(tail)}")

    for scratch in (audio_path, card_path):
        scratch.unlink(missing_ok=True)

    logger.info("Video rendered", extra={"path": str(video_path)})
    return str(video_path)
