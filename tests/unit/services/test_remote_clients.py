"""Unit tests for the remote storage clients and the link metadata fetcher."""

import io
import json

import httpx
import pytest
from botocore.exceptions import ClientError

from inkwell.errors import StorageError
from inkwell.services.link_metadata import HttpLinkMetadataFetcher, parse_link_metadata
from inkwell.services.storage.remote import KV_API_BASE, HttpKvClient, S3ObjectClient

KV_PREFIX = "/client/v4/accounts/account/storage/kv/namespaces/ns"


class FakeS3:
    """Minimal stand-in for a boto3 S3 client."""

    def __init__(self, error_code: str | None = None) -> None:
        self.objects: dict[tuple[str, str], bytes] = {}
        self.content_types: dict[tuple[str, str], str] = {}
        self.error_code = error_code

    def _raise(self, operation: str, code: str) -> None:
        raise ClientError({"Error": {"Code": code, "Message": code}}, operation)

    def head_object(self, Bucket: str, Key: str) -> dict:
        if self.error_code:
            self._raise("HeadObject", self.error_code)
        if (Bucket, Key) not in self.objects:
            self._raise("HeadObject", "404")
        return {}

    def put_object(self, Bucket: str, Key: str, Body: bytes, ContentType: str) -> dict:
        if self.error_code:
            self._raise("PutObject", self.error_code)
        self.objects[(Bucket, Key)] = Body
        self.content_types[(Bucket, Key)] = ContentType
        return {}

    def get_object(self, Bucket: str, Key: str) -> dict:
        if (Bucket, Key) not in self.objects:
            self._raise("GetObject", "NoSuchKey")
        return {"Body": io.BytesIO(self.objects[(Bucket, Key)])}


def _kv_client(handler) -> HttpKvClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=KV_API_BASE)
    return HttpKvClient(account_id="account", api_token="token", client=client)


class TestS3ObjectClient:
    """Tests for the S3-compatible object client."""

    async def test_put_head_get(self) -> None:
        fake = FakeS3()
        client = S3ObjectClient(client=fake)

        assert await client.head("media", "abc") is False
        await client.put("media", "abc", b"pixels", "image/png")

        assert await client.head("media", "abc") is True
        assert await client.get("media", "abc") == b"pixels"
        assert fake.content_types[("media", "abc")] == "image/png"

    async def test_access_denied_is_a_storage_error(self) -> None:
        client = S3ObjectClient(client=FakeS3(error_code="AccessDenied"))

        with pytest.raises(StorageError, match="head failed"):
            await client.head("media", "abc")
        with pytest.raises(StorageError, match="put failed"):
            await client.put("media", "abc", b"x", "image/png")

    async def test_get_missing_object(self) -> None:
        client = S3ObjectClient(client=FakeS3())

        with pytest.raises(StorageError, match="get failed"):
            await client.get("media", "missing")


class TestHttpKvClient:
    """Tests for the KV REST client."""

    async def test_metadata_of_missing_key(self) -> None:
        client = _kv_client(lambda request: httpx.Response(404))

        assert await client.get_metadata("ns", "posts/hello") is None
        await client.aclose()

    async def test_metadata_result(self) -> None:
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"success": True, "result": {"hash": "ab"}})

        client = _kv_client(handler)

        assert await client.get_metadata("ns", "posts/hello") == {"hash": "ab"}
        assert requests[0].url.raw_path == f"{KV_PREFIX}/metadata/posts%2Fhello".encode()
        await client.aclose()

    async def test_put_sends_value_and_metadata(self) -> None:
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={"success": True})

        client = _kv_client(handler)

        await client.put("ns", "hello", b"body bytes", {"hash": "ab"})

        (request,) = requests
        assert request.method == "PUT"
        assert request.url.raw_path == f"{KV_PREFIX}/values/hello".encode()
        content = request.read()
        assert b"body bytes" in content
        assert json.dumps({"hash": "ab"}).encode() in content
        await client.aclose()

    async def test_get_value(self) -> None:
        client = _kv_client(lambda request: httpx.Response(200, content=b"stored"))

        assert await client.get("ns", "hello") == b"stored"
        await client.aclose()

    @pytest.mark.parametrize("status", [400, 500])
    async def test_error_status(self, status: int) -> None:
        client = _kv_client(lambda request: httpx.Response(status))

        with pytest.raises(StorageError):
            await client.get_metadata("ns", "hello")
        with pytest.raises(StorageError):
            await client.put("ns", "hello", b"x", {})
        with pytest.raises(StorageError):
            await client.get("ns", "hello")
        await client.aclose()

    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _kv_client(handler)

        with pytest.raises(StorageError, match="connection refused"):
            await client.get_metadata("ns", "hello")
        await client.aclose()


class TestParseLinkMetadata:
    """Tests for extracting link card metadata from HTML."""

    def test_open_graph_properties(self) -> None:
        document = """
        <html><head>
        <title>Fallback</title>
        <meta property="og:title" content="Example &amp; Co">
        <meta property="og:description" content="An example page">
        <meta property="og:image" content="https://example.com/card.png">
        </head></html>
        """

        metadata = parse_link_metadata(document)

        assert metadata.title == "Example & Co"
        assert metadata.description == "An example page"
        assert metadata.image == "https://example.com/card.png"

    def test_falls_back_to_title_and_description(self) -> None:
        document = '<head><title> Plain page </title><meta name="description" content="Described"></head>'

        metadata = parse_link_metadata(document)

        assert metadata.title == "Plain page"
        assert metadata.description == "Described"
        assert metadata.image is None

    def test_empty_document(self) -> None:
        metadata = parse_link_metadata("")

        assert metadata.title is None

    def test_single_quoted_open_graph_title_wins(self) -> None:
        metadata = parse_link_metadata("<meta property='og:title' content='Real Title'><title>Fallback</title>")

        assert metadata.title == "Real Title"

    def test_twitter_card_fallbacks(self) -> None:
        document = """
        <head>
        <title>Page title</title>
        <meta name="twitter:title" content="Card title">
        <meta name="twitter:description" content="Card description">
        <meta name="twitter:image" content="https://example.com/twitter.png">
        </head>
        """

        metadata = parse_link_metadata(document)

        assert metadata.title == "Card title"
        assert metadata.description == "Card description"
        assert metadata.image == "https://example.com/twitter.png"

    def test_favicon_is_absolutized_and_used_as_image(self) -> None:
        document = '<head><title>Docs</title><link rel="icon" type="image/png" href="/static/icon.png"></head>'

        metadata = parse_link_metadata(document, base_url="https://example.com/docs/page")

        assert metadata.favicon == "https://example.com/static/icon.png"
        assert metadata.image == "https://example.com/static/icon.png"

    def test_shortcut_icon_without_base_url(self) -> None:
        metadata = parse_link_metadata('<link rel="shortcut icon" href="favicon.ico">')

        assert metadata.favicon == "favicon.ico"


class TestHttpLinkMetadataFetcher:
    """Tests for fetching link metadata over HTTP."""

    async def test_fetches_and_caches(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(str(request.url))
            return httpx.Response(200, text="<title>Example</title>")

        fetcher = HttpLinkMetadataFetcher(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        first = await fetcher.fetch("https://example.com/")
        second = await fetcher.fetch("https://example.com/")

        assert first.title == "Example"
        assert second == first
        assert calls == ["https://example.com/"]
        await fetcher.aclose()

    async def test_http_error_returns_none(self) -> None:
        fetcher = HttpLinkMetadataFetcher(
            client=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
        )

        assert await fetcher.fetch("https://example.com/missing") is None
        await fetcher.aclose()

    async def test_malformed_url_returns_none(self) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, text="<title>unreachable</title>")

        fetcher = HttpLinkMetadataFetcher(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        assert await fetcher.fetch("https://[") is None
        assert calls == []
        await fetcher.aclose()
