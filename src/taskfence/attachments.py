"""Downloads attachments referenced in issue and comment bodies.

GitHub serves private attachments from ``private-user-images`` behind a
short-lived ``?jwt=`` token that only appears in the rendered HTML. The
markdown body carries the canonical ``github.com/user-attachments`` URL
instead. Canonical image URLs are paired with signed URLs by their order of
appearance; files, links and legacy ``user-images`` URLs download as-is.

Downloads are plain GETs with no auth header: the signed URL is the only
credential, and it never leaves this module (references are rewritten to
local paths, never to the signed URL).
"""

from __future__ import annotations

import asyncio
import hashlib
import html
import logging
import mimetypes
import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TypeVar

import httpx

from taskfence.jira_client import JiraClient
from taskfence.models import (
    IssueComment,
    IssueData,
    PullRequestData,
    Review,
    ReviewComment,
    TrackerAttachment,
)

logger = logging.getLogger(__name__)

USER_AGENT = "taskfence"
DEFAULT_DOWNLOAD_DIR = Path("/tmp/github-attachments")
DEFAULT_TRACKER_DOWNLOAD_DIR = Path("/tmp/jira-attachments")

EntityT = TypeVar("EntityT", IssueData, PullRequestData)

_SIGNED_URL = re.compile(
    r"https://private-user-images\.githubusercontent\.com/[^\"'\s<>]+\?jwt=[^\"'\s<>]+"
)
_CANONICAL_URL = re.compile(
    r"https://github\.com/user-attachments/(assets|files)/[A-Za-z0-9._-]+(?:/[A-Za-z0-9._-]+)?"
)
_LEGACY_URL = re.compile(r"https://user-images\.githubusercontent\.com/[^\"'\s<>()]+")

# What precedes a canonical URL decides how it was embedded
_IMG_SRC_PREFIX = re.compile(r"<img\b[^>]*\bsrc=[\"']$", re.IGNORECASE)
_MD_IMAGE_PREFIX = re.compile(r"!\[[^\]]*\]\($")
_MD_LINK_PREFIX = re.compile(r"\]\($")

# Wiki markup: !file.png! or !file.png|width=100!
TRACKER_ATTACHMENT_PATTERN = re.compile(r"!([^!|\s]+\.[a-zA-Z0-9]+)(?:\|[^!]*)?!")


@dataclass(frozen=True)
class AttachmentReference:
    canonical_url: str
    download_url: str


def _embedding(text: str, start: int) -> str:
    prefix = text[max(0, start - 500) : start]
    if _IMG_SRC_PREFIX.search(prefix):
        return "image"
    if _MD_IMAGE_PREFIX.search(prefix):
        return "image"
    if _MD_LINK_PREFIX.search(prefix):
        return "link"
    return "bare"


def extract_signed_urls(body_html: str) -> list[str]:
    """Signed URLs in document order, one per distinct image.

    The renderer wraps each image in a link to the same URL, and an image
    embedded twice may carry a fresh token each time, so URLs are deduped on
    their path rather than the full string.
    """
    seen: set[str] = set()
    urls: list[str] = []
    for match in _SIGNED_URL.finditer(body_html or ""):
        url = html.unescape(match.group(0))
        path = url.split("?", 1)[0]
        if path not in seen:
            seen.add(path)
            urls.append(url)
    return urls


def extract_references(body_html: str, body_text: str) -> list[AttachmentReference]:
    """Pair canonical URLs in ``body_text`` with signed URLs in ``body_html``.

    Distinct canonical image assets (``<img src>``, ``![](...)`` or a bare
    asset URL) take signed URLs in order of first appearance. Everything else,
    and any image left over once signed URLs run out, downloads from its
    canonical URL.
    """
    signed = iter(extract_signed_urls(body_html))
    text = body_text or ""

    occurrences: list[tuple[int, str, bool]] = []
    for match in _CANONICAL_URL.finditer(text):
        kind = match.group(1)
        paired = kind == "assets" and _embedding(text, match.start()) != "link"
        occurrences.append((match.start(), match.group(0), paired))
    for match in _LEGACY_URL.finditer(text):
        occurrences.append((match.start(), match.group(0), False))
    occurrences.sort()

    references: dict[str, AttachmentReference] = {}
    for _, url, paired in occurrences:
        if url in references:
            continue
        download_url = next(signed, url) if paired else url
        references[url] = AttachmentReference(canonical_url=url, download_url=download_url)
    return list(references.values())


def _local_filename(canonical_url: str, content_type: str | None) -> str:
    name = canonical_url.split("?", 1)[0].rstrip("/").rsplit("/", 1)[-1]
    if name in ("", ".", ".."):
        name = "attachment-" + hashlib.sha256(canonical_url.encode()).hexdigest()[:12]
    if "." not in name and content_type:
        ext = mimetypes.guess_extension(content_type.split(";", 1)[0].strip())
        if ext:
            name += ext
    return name


def _with_url_hash(name: str, canonical_url: str) -> str:
    digest = hashlib.sha256(canonical_url.encode()).hexdigest()[:8]
    stem, dot, ext = name.rpartition(".")
    if not dot or not stem:
        return f"{name}-{digest}"
    return f"{stem}-{digest}.{ext}"


def rewrite_references(text: str, local_paths: dict[str, str]) -> str:
    """Replace each canonical URL with its local path, longest URL first."""
    for url in sorted(local_paths, key=len, reverse=True):
        pattern = re.compile(re.escape(url) + r"(?![A-Za-z0-9._-])")
        text = pattern.sub(lambda _m, path=local_paths[url]: path, text)
    return text


class AttachmentResolver:
    """Downloads GitHub attachments and rewrites bodies to local paths.

    One resolver serves a whole run: each canonical URL is downloaded at
    most once, and at most ``max_concurrent`` downloads run at a time.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        download_dir: Path = DEFAULT_DOWNLOAD_DIR,
        *,
        max_concurrent: int = 4,
    ):
        self.http = http
        self.download_dir = Path(download_dir)
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._downloads: dict[str, asyncio.Task[Path | None]] = {}
        # file name -> canonical URL written under it during this run
        self._claimed: dict[str, str] = {}

    async def download(self, reference: AttachmentReference) -> Path:
        """Fetch one attachment and write it under ``download_dir``.

        Raises:
            httpx.HTTPError: Request failed or returned non-2xx.
            OSError: The file could not be written.
        """
        resp = await self.http.get(
            reference.download_url,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )
        resp.raise_for_status()
        filename = _local_filename(reference.canonical_url, resp.headers.get("content-type"))
        if self._claimed.setdefault(filename, reference.canonical_url) != reference.canonical_url:
            filename = _with_url_hash(filename, reference.canonical_url)
            self._claimed[filename] = reference.canonical_url
        self.download_dir.mkdir(parents=True, exist_ok=True)
        path = self.download_dir / filename
        path.write_bytes(resp.content)
        logger.info("Downloaded attachment %s -> %s", reference.canonical_url, path)
        return path

    async def _download_safely(self, reference: AttachmentReference) -> Path | None:
        async with self._semaphore:
            try:
                return await self.download(reference)
            except httpx.HTTPStatusError as e:
                # The exception text embeds the signed URL
                logger.warning(
                    "Could not download %s: HTTP %d",
                    reference.canonical_url,
                    e.response.status_code,
                )
            except (httpx.HTTPError, OSError) as e:
                logger.warning(
                    "Could not download %s: %s", reference.canonical_url, type(e).__name__
                )
            return None

    async def _local_path(self, reference: AttachmentReference) -> Path | None:
        task = self._downloads.get(reference.canonical_url)
        if task is None:
            task = asyncio.ensure_future(self._download_safely(reference))
            self._downloads[reference.canonical_url] = task
        return await task

    async def resolve(self, body_html: str, body_text: str) -> str:
        """Return ``body_text`` with every downloadable attachment localized.

        References that fail to download are left untouched.
        """
        references = extract_references(body_html, body_text)
        if not references:
            return body_text
        paths = await asyncio.gather(*(self._local_path(ref) for ref in references))
        local_paths = {
            ref.canonical_url: str(path) for ref, path in zip(references, paths) if path is not None
        }
        return rewrite_references(body_text, local_paths)

    async def _localize_comment(self, item):
        if not isinstance(item, IssueComment) or not item.body:
            return item
        return item.model_copy(update={"body": await self.resolve(item.body_html, item.body)})

    async def localize(self, entity: EntityT) -> EntityT:
        """Localize attachments in the body, timeline comments, reviews and review comments.

        Items are processed concurrently and reassembled in their original order.
        """
        update: dict = {}
        if entity.body:
            update["body"] = await self.resolve(entity.body_html, entity.body)

        timeline = await asyncio.gather(
            *(self._localize_comment(item) for item in entity.timeline_items.nodes)
        )
        update["timeline_items"] = entity.timeline_items.model_copy(update={"nodes": list(timeline)})

        if isinstance(entity, PullRequestData):
            reviews = await asyncio.gather(
                *(self._localize_review(review) for review in entity.reviews.nodes)
            )
            update["reviews"] = entity.reviews.model_copy(update={"nodes": list(reviews)})

        return entity.model_copy(update=update)

    async def _localize_review_comment(self, comment: ReviewComment) -> ReviewComment:
        if not comment.body:
            return comment
        return comment.model_copy(
            update={"body": await self.resolve(comment.body_html, comment.body)}
        )

    async def _localize_review(self, review: Review) -> Review:
        body = review.body
        if body:
            body = await self.resolve(review.body_html, body)
        # gather keeps the original comment order regardless of completion order
        comments = await asyncio.gather(
            *(self._localize_review_comment(c) for c in review.comments.nodes)
        )
        return review.model_copy(
            update={
                "body": body,
                "comments": review.comments.model_copy(update={"nodes": list(comments)}),
            }
        )


class TrackerAttachmentResolver:
    """Resolves ``!file.ext!`` wiki markup against the ticket's attachment list."""

    def __init__(self, jira: JiraClient, download_dir: Path = DEFAULT_TRACKER_DOWNLOAD_DIR):
        self.jira = jira
        self.download_dir = Path(download_dir)

    async def download(self, attachment: TrackerAttachment) -> Path:
        data = await self.jira.download_attachment(attachment.content_url)
        self.download_dir.mkdir(parents=True, exist_ok=True)
        path = self.download_dir / Path(attachment.filename).name
        path.write_bytes(data)
        logger.info("Downloaded Jira attachment %s -> %s", attachment.filename, path)
        return path

    async def resolve(self, text: str, attachments: Sequence[TrackerAttachment]) -> str:
        if not attachments:
            return text
        by_name = {a.filename: a for a in attachments}
        resolved: dict[str, str] = {}
        for match in TRACKER_ATTACHMENT_PATTERN.finditer(text):
            markup, filename = match.group(0), match.group(1)
            if markup in resolved:
                continue
            attachment = by_name.get(filename)
            if attachment is None:
                logger.warning("Jira attachment not found: %s", filename)
                continue
            try:
                resolved[markup] = str(await self.download(attachment))
            except (httpx.HTTPError, OSError) as e:
                logger.error("Failed to download Jira attachment %s: %s", filename, e)
        for markup, path in resolved.items():
            text = text.replace(markup, path)
        return text
