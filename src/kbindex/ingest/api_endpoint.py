"""External API endpoints as knowledge-base sources.

Requests go through the guarded Fetcher. Responses are parsed as JSON, XML or
plain text (auto-detected from Content-Type unless forced), narrowed with a
dotted ``data_path``, optionally paginated by page number, then flattened into
``Key: value`` text.
"""

from __future__ import annotations

import base64
import json
import urllib.parse
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field, fields
from typing import Any

from kbindex.errors import FetchError, ParseError
from kbindex.ingest.fetch import Fetcher, HttpResponse
from kbindex.logging import get_logger

AUTH_TYPES = ("none", "api_key", "bearer", "basic", "oauth2")
RESPONSE_FORMATS = ("auto", "json", "xml", "text")
_BODY_METHODS = ("POST", "PUT", "PATCH")


@dataclass
class ApiOptions:
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    body: dict[str, Any] | str | None = None
    auth_type: str = "none"
    auth_credentials: dict[str, str] = field(default_factory=dict)
    response_format: str = "auto"
    pagination: bool = False
    pagination_key: str = "page"
    max_pages: int = 10
    data_path: str | None = None
    content_fields: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.method = self.method.upper()
        if self.auth_type not in AUTH_TYPES:
            raise ValueError(f"auth_type must be one of {AUTH_TYPES}, got '{self.auth_type}'")
        if self.response_format not in RESPONSE_FORMATS:
            raise ValueError(
                f"response_format must be one of {RESPONSE_FORMATS}, got '{self.response_format}'"
            )
        if self.max_pages < 1:
            raise ValueError("max_pages must be >= 1")

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ApiOptions:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class ApiResult:
    url: str
    data: Any
    content: str

    @property
    def item_count(self) -> int:
        return len(self.data) if isinstance(self.data, (list, dict)) else 1


class ApiEndpointProcessor:
    def __init__(self, fetcher: Fetcher | None = None, logger=None) -> None:
        self._fetcher = fetcher or Fetcher()
        self._log = logger or get_logger(__name__)

    def process(self, url: str, options: ApiOptions | None = None) -> ApiResult:
        """Fetch *url* (and further pages) and render the payload as text.

        Raises:
            FetchError: The first request failed.
            ParseError: The first response is malformed JSON or XML.
        """
        opts = options or ApiOptions()
        data = self._parse(self._request(url, opts, opts.body), opts)

        if opts.pagination:
            data = self._paginate(url, opts, data)

        return ApiResult(url=url, data=data, content=extract_content(data, opts.content_fields))

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _request(self, url: str, opts: ApiOptions, body: dict[str, Any] | str | None) -> HttpResponse:
        headers = {"Accept": "application/json, application/xml, text/plain, */*"}
        headers.update(opts.headers)
        query: dict[str, Any] = {}
        headers, query = _apply_auth(opts, headers, query)

        data: bytes | None = None
        if opts.method in _BODY_METHODS and body:
            if isinstance(body, dict):
                data = json.dumps(body).encode("utf-8")
                headers["Content-Type"] = "application/json"
            else:
                data = str(body).encode("utf-8")
        elif opts.method == "GET" and isinstance(body, dict):
            query.update(body)

        target = _with_query(url, query) if query else url
        response = self._fetcher.request(target, method=opts.method, headers=headers, data=data)
        return response

    def _paginate(self, url: str, opts: ApiOptions, first: Any) -> list[Any]:
        all_data = list(first) if isinstance(first, list) else [first]
        for page in range(2, opts.max_pages + 1):
            body = dict(opts.body) if isinstance(opts.body, dict) else {}
            body[opts.pagination_key] = page
            try:
                parsed = self._parse(self._request(url, opts, body), opts)
            except (FetchError, ParseError) as exc:
                self._log.info("api_pagination_stopped", url=url, page=page, reason=str(exc))
                break
            if not parsed:
                break
            all_data.extend(parsed if isinstance(parsed, list) else [parsed])
        return all_data

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def _parse(self, response: HttpResponse, opts: ApiOptions) -> Any:
        body = response.text()
        fmt = opts.response_format
        if fmt == "auto":
            fmt = _detect_format(response.content_type, body)

        if fmt == "json":
            try:
                data = json.loads(body)
            except json.JSONDecodeError as exc:
                self._log.error("api_json_parse_failed", url=response.url, error=str(exc))
                raise ParseError(f"Failed to parse JSON: {exc}") from exc
        elif fmt == "xml":
            try:
                data = _element_to_data(ET.fromstring(body))
            except ET.ParseError as exc:
                self._log.error("api_xml_parse_failed", url=response.url, error=str(exc))
                raise ParseError(f"Failed to parse XML response: {exc}") from exc
        else:
            return body

        if opts.data_path:
            data = extract_data_path(data, opts.data_path)
        return data


def _detect_format(content_type: str, body: str) -> str:
    if "json" in content_type:
        return "json"
    if content_type in ("application/xml", "text/xml") or content_type.endswith("+xml"):
        return "xml"
    if content_type.startswith("text/"):
        return "text"
    try:
        json.loads(body)
    except ValueError:
        return "text"
    return "json"


def _apply_auth(
    opts: ApiOptions, headers: dict[str, str], query: dict[str, Any]
) -> tuple[dict[str, str], dict[str, Any]]:
    creds = opts.auth_credentials
    if opts.auth_type == "api_key":
        key_name = creds.get("key_name", "X-API-Key")
        api_key = creds.get("api_key", "")
        if creds.get("key_location", "header") == "query":
            query[key_name] = api_key
        else:
            headers[key_name] = api_key
    elif opts.auth_type == "bearer":
        if creds.get("token"):
            headers["Authorization"] = f"Bearer {creds['token']}"
    elif opts.auth_type == "basic":
        username, password = creds.get("username", ""), creds.get("password", "")
        if username and password:
            token = base64.b64encode(f"{username}:{password}".encode()).decode("ascii")
            headers["Authorization"] = f"Basic {token}"
    elif opts.auth_type == "oauth2":
        if creds.get("access_token"):
            headers["Authorization"] = f"Bearer {creds['access_token']}"
    return headers, query


def _with_query(url: str, params: dict[str, Any]) -> str:
    parts = urllib.parse.urlsplit(url)
    query = dict(urllib.parse.parse_qsl(parts.query, keep_blank_values=True))
    query.update({k: str(v) for k, v in params.items()})
    return urllib.parse.urlunsplit(parts._replace(query=urllib.parse.urlencode(query)))


def _element_to_data(element: ET.Element) -> Any:
    """Convert an XML element into nested dicts/lists/strings."""
    children = list(element)
    if not children and not element.attrib:
        return (element.text or "").strip()
    result: dict[str, Any] = {}
    if element.attrib:
        result["@attributes"] = dict(element.attrib)
    for child in children:
        value = _element_to_data(child)
        if child.tag in result:
            if not isinstance(result[child.tag], list):
                result[child.tag] = [result[child.tag]]
            result[child.tag].append(value)
        else:
            result[child.tag] = value
    text = (element.text or "").strip()
    if text and not children:
        result["value"] = text
    return result


# ------------------------------------------------------------------
# Content rendering
# ------------------------------------------------------------------

def extract_data_path(data: Any, path: str) -> Any:
    """Follow a dotted path (``data.items``) into *data*; None if any step is missing."""
    current = data
    for key in path.split("."):
        if isinstance(current, dict) and key in current:
            current = current[key]
        elif isinstance(current, list) and key.isdigit() and int(key) < len(current):
            current = current[int(key)]
        else:
            return None
    return current


def extract_content(data: Any, content_fields: list[str] | None = None) -> str:
    if data is None or data == "" or data == [] or data == {}:
        return ""
    if content_fields and isinstance(data, (list, dict)):
        return _extract_fields(data, content_fields)
    if isinstance(data, str):
        return data
    if isinstance(data, (list, dict)):
        return structure_to_text(data)
    return str(data)


def _extract_fields(data: list | dict, content_fields: list[str]) -> str:
    parts: list[str] = []
    if isinstance(data, list):
        for item in data:
            if not isinstance(item, dict):
                continue
            values = [str(item[f]) for f in content_fields if item.get(f) not in (None, "")]
            if values:
                parts.append(" - ".join(values))
    else:
        parts = [str(data[f]) for f in content_fields if data.get(f) not in (None, "")]
    return "\n\n".join(parts)


def structure_to_text(data: list | dict) -> str:
    """Flatten nested data into ``Key: value`` lines (list items keyed by index)."""
    items = data.items() if isinstance(data, dict) else enumerate(data)
    lines = []
    for key, value in items:
        label = str(key)
        label = label[:1].upper() + label[1:]
        if isinstance(value, (list, dict)):
            lines.append(f"{label}: {structure_to_text(value)}")
        else:
            lines.append(f"{label}: {'' if value is None else value}")
    return "\n".join(lines)
