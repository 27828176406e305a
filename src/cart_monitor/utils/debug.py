"""Diagnostic artifact sink for structural failures."""

from __future__ import annotations

import contextlib
import json
import re
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiofiles

from cart_monitor.utils.logging import get_logger


if TYPE_CHECKING:
    import nodriver as uc


logger = get_logger(__name__)

_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9_.-]+")


class DebugArtifactSink(ABC):
    """Receives screenshots, HTML dumps and JSON summaries for diagnosis."""

    @abstractmethod
    async def capture(
        self,
        page: uc.Tab,
        label: str,
        extra: dict[str, Any] | None = None,
    ) -> list[str]:
        """Persist artifacts describing the page and return their paths."""
        pass


class NullDebugSink(DebugArtifactSink):
    """Sink used when artifact capture is disabled."""

    async def capture(
        self,
        page: uc.Tab,
        label: str,
        extra: dict[str, Any] | None = None,
    ) -> list[str]:
        return []


class FileDebugArtifactSink(DebugArtifactSink):
    """Write artifacts under a local directory, one file set per capture."""

    def __init__(self, artifact_dir: str | Path = "./data/_debug") -> None:
        self.artifact_dir = Path(artifact_dir)

    async def capture(
        self,
        page: uc.Tab,
        label: str,
        extra: dict[str, Any] | None = None,
    ) -> list[str]:
        """
        Save a full-page screenshot, the page HTML and a JSON summary.

        Capture never raises: a broken page must not hide the original error.
        """
        target_dir = self.artifact_dir / _UNSAFE_NAME_RE.sub("_", label)
        target_dir.mkdir(parents=True, exist_ok=True)
        stem = str(int(time.time() * 1000))
        written: list[str] = []

        screenshot_path = target_dir / f"{stem}.png"
        try:
            await page.save_screenshot(str(screenshot_path), full_page=True)
            written.append(str(screenshot_path))
        except Exception as e:
            logger.warning("Screenshot capture failed", label=label, error=str(e))

        html = ""
        with contextlib.suppress(Exception):
            html = await page.get_content()
        if html:
            html_path = target_dir / f"{stem}.html"
            async with aiofiles.open(html_path, "w", encoding="utf-8") as f:
                await f.write(html)
            written.append(str(html_path))

        summary = {
            "label": label,
            "url": getattr(getattr(page, "target", None), "url", None),
            "captured_at": time.time(),
            **(extra or {}),
        }
        json_path = target_dir / f"{stem}.json"
        async with aiofiles.open(json_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(summary, indent=2, ensure_ascii=False, default=str))
        written.append(str(json_path))

        logger.info("Debug artifacts written", label=label, files=len(written))
        return written
