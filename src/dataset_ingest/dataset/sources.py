"""Raw-text reader: fetch the current content of a collection's source.

Four source kinds are supported:

* ``fileLocal``: an uploaded file, loaded with LangChain document loaders
  (workbooks are rendered one block per worksheet row);
* ``link``: a web page fetched with ``requests`` and cleaned with BeautifulSoup;
* ``apiFile``: a file served by a dataset's API server;
* ``externalFile``: a file downloaded from an arbitrary URL.

Network and loader errors propagate unchanged to the caller.
"""

from __future__ import annotations

import logging
import re
import tempfile
import unicodedata
from pathlib import Path
from urllib.parse import urlparse

import openpyxl
import requests
import xlrd
from bs4 import BeautifulSoup
from langchain_community.document_loaders import PyPDFLoader, TextLoader

from dataset_ingest.chunking.spreadsheet import format_worksheets
from dataset_ingest.dataset.files import LocalFileStore
from dataset_ingest.db.schema import Collection, Dataset
from dataset_ingest.errors import SourceConfigError, SourceReadError
from dataset_ingest.models import CollectionType, RawTextResult, SourceDescriptor, SourceReadType

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {"User-Agent": "dataset-ingest/0.1"}
BOILERPLATE_TAGS = ["script", "style", "nav", "footer", "header", "aside", "noscript", "iframe"]


def build_source_descriptor(collection: Collection, dataset: Dataset) -> SourceDescriptor:
    """Describe where *collection*'s content comes from.

    Raises
    ------
    SourceConfigError
        The collection type cannot be read, or a required field is missing.
    """
    ctype = collection.type
    if ctype == CollectionType.link:
        if not collection.raw_link:
            raise SourceConfigError("rawLink is missing")
        return SourceDescriptor(
            type=SourceReadType.link,
            source_id=collection.raw_link,
            selector=collection.web_page_selector,
        )
    if ctype == CollectionType.file:
        if not collection.file_id:
            raise SourceConfigError("fileId is missing")
        return SourceDescriptor(type=SourceReadType.file_local, source_id=collection.file_id)
    if ctype == CollectionType.api_file:
        if not collection.api_file_id:
            raise SourceConfigError("apiFileId is missing")
        return SourceDescriptor(
            type=SourceReadType.api_file,
            source_id=collection.api_file_id,
            api_server=dataset.api_server,
        )
    if ctype == CollectionType.external_file:
        if not collection.external_file_url:
            raise SourceConfigError("externalFileUrl is missing")
        return SourceDescriptor(
            type=SourceReadType.external_file,
            source_id=collection.external_file_url,
            external_file_id=collection.external_file_id,
        )
    raise SourceConfigError(f"Collection type {ctype!r} has no readable source")


# ── helpers ────────────────────────────────────────────────────────────


def _normalise(text: str) -> str:
    """Unicode NFC, collapse whitespace, strip control chars."""
    text = unicodedata.normalize("NFC", text)
    text = re.sub(r"[^\S\n]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f]", "", text)
    return text.strip()


def _extract_title_html(soup: BeautifulSoup) -> str:
    if soup.title and soup.title.string:
        return soup.title.string.strip()
    h1 = soup.find("h1")
    if h1:
        return h1.get_text(strip=True)
    return ""


def html_to_text(html: str, selector: str | None = None) -> RawTextResult:
    """Strip boilerplate from *html*; keep only *selector* matches when given."""
    soup = BeautifulSoup(html, "html.parser")
    title = _extract_title_html(soup)
    for tag in soup(BOILERPLATE_TAGS):
        tag.decompose()

    if selector:
        parts = [node.get_text(separator="\n", strip=True) for node in soup.select(selector)]
        text = "\n\n".join(p for p in parts if p)
    else:
        text = soup.get_text(separator="\n", strip=True)
    return RawTextResult(title=title or None, raw_text=_normalise(text))


def read_workbook(path: Path) -> dict[str, list[list]]:
    """Cell values of every worksheet, keyed by sheet name."""
    if path.suffix.lower() == ".xls":
        book = xlrd.open_workbook(str(path))
        return {sheet.name: [sheet.row_values(i) for i in range(sheet.nrows)] for sheet in book.sheets()}

    book = openpyxl.load_workbook(path, read_only=True, data_only=True)
    try:
        return {ws.title: [list(row) for row in ws.iter_rows(values_only=True)] for ws in book.worksheets}
    finally:
        book.close()


def load_file_text(path: Path) -> str:
    """Extract text from a file on disk."""
    suffix = path.suffix.lower()
    if suffix in (".xlsx", ".xls"):
        return format_worksheets(read_workbook(path))
    if suffix == ".pdf":
        docs = PyPDFLoader(str(path)).load()
    elif suffix in (".html", ".htm"):
        return html_to_text(path.read_text(encoding="utf-8", errors="replace")).raw_text
    else:
        docs = TextLoader(str(path), autodetect_encoding=True).load()
    return _normalise("\n\n".join(doc.page_content for doc in docs))


# ── reader ─────────────────────────────────────────────────────────────


class SourceReader:
    """Reads :class:`SourceDescriptor` targets into raw text.

    Parameters
    ----------
    file_store:
        Where ``fileLocal`` sources live.
    timeout:
        HTTP timeout in seconds.
    http:
        Optional ``requests.Session`` (tests pass a mock).
    """

    def __init__(
        self,
        file_store: LocalFileStore,
        *,
        timeout: float = 30.0,
        http: requests.Session | None = None,
    ) -> None:
        self._files = file_store
        self._timeout = timeout
        self._http = http or requests.Session()

    def read(self, source: SourceDescriptor) -> RawTextResult:
        if source.type == SourceReadType.file_local:
            return self._read_local(source.source_id)
        if source.type == SourceReadType.link:
            return self._read_link(source.source_id, source.selector)
        if source.type == SourceReadType.external_file:
            if not source.external_file_id:
                raise SourceConfigError("externalFileId is missing")
            return RawTextResult(raw_text=self._download_text(source.source_id))
        if source.type == SourceReadType.api_file:
            return self._read_api_file(source.source_id, source.api_server or {})
        raise SourceConfigError(f"Unsupported source type {source.type!r}")

    def _read_local(self, file_id: str) -> RawTextResult:
        text = load_file_text(self._files.path(file_id))
        return RawTextResult(title=self._files.original_name(file_id), raw_text=text)

    def _read_link(self, url: str, selector: str | None) -> RawTextResult:
        resp = self._http.get(url, headers=DEFAULT_HEADERS, timeout=self._timeout)
        resp.raise_for_status()
        result = html_to_text(resp.text, selector)
        if not result.raw_text:
            raise SourceReadError(f"Can not fetch content from link {url}")
        return RawTextResult(title=result.title or url, raw_text=result.raw_text)

    def _download_text(self, url: str) -> str:
        resp = self._http.get(url, headers=DEFAULT_HEADERS, timeout=self._timeout)
        resp.raise_for_status()
        suffix = Path(urlparse(url).path).suffix.lower() or ".txt"
        ctype = resp.headers.get("content-type", "")
        if "html" in ctype and suffix != ".pdf":
            return html_to_text(resp.text).raw_text

        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / f"download{suffix}"
            path.write_bytes(resp.content)
            return load_file_text(path)

    def _read_api_file(self, api_file_id: str, api_server: dict) -> RawTextResult:
        base_url = (api_server.get("base_url") or "").rstrip("/")
        if not base_url:
            raise SourceConfigError("Dataset has no API server configured")
        headers = dict(DEFAULT_HEADERS)
        if api_server.get("authorization"):
            headers["Authorization"] = f"Bearer {api_server['authorization']}"

        resp = self._http.get(
            f"{base_url}/v1/file/content",
            params={"id": api_file_id},
            headers=headers,
            timeout=self._timeout,
        )
        resp.raise_for_status()
        payload = resp.json()
        data = payload.get("data", payload)

        title = data.get("title")
        content = data.get("content")
        if content:
            return RawTextResult(title=title, raw_text=_normalise(content))
        preview_url = data.get("previewUrl")
        if preview_url:
            return RawTextResult(title=title, raw_text=self._download_text(preview_url))
        raise SourceReadError(f"API file {api_file_id} returned no content")
