"""Link card metadata fetched from the target page's HTML head."""

from urllib.parse import urljoin

import httpx
import structlog
from bs4 import BeautifulSoup

from inkwell.services.markdown import LinkMetadata

_MAX_HEAD_BYTES = 256 * 1024


def _meta_content(soup: BeautifulSoup, attr: str, name: str) -> str | None:
    tag = soup.find("meta", attrs={attr: name, "content": True})
    if tag is None:
        return None
    return tag["content"].strip() or None


def _favicon(soup: BeautifulSoup, base_url: str | None) -> str | None:
    for link in soup.find_all("link", href=True):
        rel = " ".join(link.get("rel") or []).lower()
        if rel.startswith("icon") or rel == "shortcut icon":
            href = link["href"].strip()
            return urljoin(base_url, href) if base_url else href
    return None


def parse_link_metadata(document: str, base_url: str | None = None) -> LinkMetadata:
    """Extract title, description, preview image and favicon from an HTML page.

    Open Graph properties win over ``twitter:`` cards, which win over the
    plain ``<title>`` and ``description`` tags. The preview image falls back
    to the favicon.

    Args:
        document: HTML source of the page.
        base_url: URL the page was fetched from, used to absolutize the favicon.

    Returns:
        LinkMetadata with whatever the page declares.
    """
    soup = BeautifulSoup(document, "html.parser")

    title = _meta_content(soup, "property", "og:title") or _meta_content(soup, "name", "twitter:title")
    if not title and soup.title is not None:
        title = soup.title.get_text().strip() or None
    description = (
        _meta_content(soup, "property", "og:description")
        or _meta_content(soup, "name", "twitter:description")
        or _meta_content(soup, "name", "description")
    )
    favicon = _favicon(soup, base_url)
    image = _meta_content(soup, "property", "og:image") or _meta_content(soup, "name", "twitter:image") or favicon

    return LinkMetadata(title=title, description=description, image=image, favicon=favicon)


class HttpLinkMetadataFetcher:
    """Fetches pages over HTTP; failures leave the card with its URL as title."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(follow_redirects=True, timeout=10.0)
        self._logger = logger or structlog.get_logger(__name__)
        self._cache: dict[str, LinkMetadata | None] = {}

    async def fetch(self, url: str) -> LinkMetadata | None:
        if url in self._cache:
            return self._cache[url]
        try:
            response = await self._client.get(url, headers={"Accept": "text/html"})
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            self._logger.warning("link_metadata_fetch_failed", url=url, error=str(e))
            self._cache[url] = None
            return None
        metadata = parse_link_metadata(response.text[:_MAX_HEAD_BYTES], base_url=str(response.url))
        self._cache[url] = metadata
        return metadata

    async def aclose(self) -> None:
        await self._client.aclose()
