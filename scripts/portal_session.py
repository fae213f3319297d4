"""Authenticated cookie session against the WaterSmart customer portal.

The portal has no API. A form login answers with a redirect and a fresh
``PHPSESSID`` cookie, after which the server walks the browser through an
arbitrary chain of further redirects, any of which may rotate the session id.
The usage CSV endpoint does the same before serving the payload.

All cookie state lives in an immutable :class:`SessionCookie` that is threaded
explicitly through each hop; the ``requests`` cookie jar is disabled so the
``Cookie`` header sent is always exactly the one built here.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from http.cookiejar import DefaultCookiePolicy
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple
from urllib.parse import urljoin, urlsplit

import requests
from bs4 import BeautifulSoup
from tqdm import tqdm
from urllib3.exceptions import ReadTimeoutError

from portal_config import Credentials, PortalConfig
from portal_errors import (
    ConfigurationError,
    ProtocolError,
    RequestTimeoutError,
    StorageError,
    TransportError,
)
from run_logging import format_exception_message, log_event

AUTH_COOKIE_NAME = "auth_session"
SESSION_COOKIE_NAME = "PHPSESSID"
CHUNK_SIZE = 64 * 1024

BROWSER_HEADERS: Dict[str, str] = {
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,"
        "image/apng,*/*;q=0.8,application/signed-exchange;v=b3;q=0.7"
    ),
    # Only encodings requests can decode without optional extras.
    "Accept-Encoding": "gzip, deflate",
    "Accept-Language": "en-US,en;q=0.9",
    "DNT": "1",
    "Sec-CH-UA": '"Chromium";v="127", "Not)A;Brand";v="99"',
    "Sec-CH-UA-Mobile": "?0",
    "Sec-CH-UA-Platform": '"macOS"',
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "same-origin",
    "Sec-Fetch-User": "?1",
    "Upgrade-Insecure-Requests": "1",
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/127.0.0.0 Safari/537.36"
    ),
}


@dataclass(frozen=True)
class SessionCookie:
    """Long-lived ``auth_session`` token plus the latest server-issued session id."""

    auth_token: str
    session_id: Optional[str] = None

    def with_session_id(self, session_id: str) -> "SessionCookie":
        return replace(self, session_id=session_id)

    def header_value(self) -> str:
        if self.session_id:
            return f"{AUTH_COOKIE_NAME}={self.auth_token}; {SESSION_COOKIE_NAME}={self.session_id}"
        return f"{AUTH_COOKIE_NAME}={self.auth_token}"

    def __repr__(self) -> str:
        state = "set" if self.session_id else "unset"
        return f"SessionCookie(auth_token='***', session_id=<{state}>)"


@dataclass(frozen=True)
class RedirectResponse:
    status_code: Optional[int]
    location: Optional[str] = None
    set_cookie_headers: Tuple[str, ...] = ()

    @classmethod
    def from_response(cls, response: requests.Response) -> "RedirectResponse":
        return cls(
            status_code=response.status_code,
            location=response.headers.get("Location") or None,
            set_cookie_headers=tuple(set_cookie_headers(response)),
        )

    @property
    def is_redirect(self) -> bool:
        return self.status_code is not None and 300 <= self.status_code < 400


def set_cookie_headers(response: requests.Response) -> List[str]:
    # response.headers joins repeated Set-Cookie values with ", ", which is
    # ambiguous next to Expires dates; read the raw header list instead.
    raw_headers = getattr(response.raw, "headers", None)
    getlist = getattr(raw_headers, "getlist", None)
    if callable(getlist):
        return [str(value) for value in getlist("Set-Cookie")]
    value = response.headers.get("Set-Cookie")
    return [value] if value else []


def extract_session_id(cookie_headers: Sequence[str]) -> Optional[str]:
    prefix = f"{SESSION_COOKIE_NAME}="
    for header in cookie_headers:
        pair = header.split(";", 1)[0].strip()
        if not pair.startswith(prefix):
            continue
        value = pair[len(prefix):].strip()
        if value:
            return value
    return None


def advance_session(
    cookie: SessionCookie,
    cookie_headers: Sequence[str],
) -> Tuple[SessionCookie, Optional[str]]:
    """Return the cookie to use for the next hop and the newly issued id, if any."""
    session_id = extract_session_id(cookie_headers)
    if session_id is None:
        return cookie, None
    return cookie.with_session_id(session_id), session_id


def browser_headers(login_url: str) -> Dict[str, str]:
    parts = urlsplit(login_url)
    origin = f"{parts.scheme}://{parts.netloc}"
    headers = dict(BROWSER_HEADERS)
    headers["Origin"] = origin
    headers["Referer"] = f"{origin}/index.php/logout"
    return headers


def read_text_fallback(raw: bytes) -> str:
    """Decode as UTF-8 (dropping a BOM); latin-1 maps every byte, so it cannot fail."""
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def unexpected_status_message(status_code: Optional[int], url: str, response: requests.Response) -> str:
    message = f"Unexpected status code: {status_code} from {url}"
    content_type = response.headers.get("Content-Type", "")
    if "html" not in content_type.lower():
        return message
    try:
        soup = BeautifulSoup(response.text, "html.parser")
    except requests.RequestException:
        return message
    title = soup.title.get_text(strip=True) if soup.title else ""
    if title:
        message = f"{message} (page title: {title})"
    return message


class PortalClient:
    def __init__(
        self,
        config: PortalConfig,
        session: Optional[requests.Session] = None,
        show_progress: bool = True,
    ) -> None:
        self.config = config
        self.timeout_seconds = config.timeout_seconds
        self.max_redirects = config.max_redirects
        self.show_progress = show_progress
        self.session = session or requests.Session()
        # The Cookie header is built per request from SessionCookie; keep the jar empty.
        self.session.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))
        self.session.headers.update(browser_headers(config.login_url))

    def __enter__(self) -> "PortalClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self.session.close()

    def _send(
        self,
        method: str,
        url: str,
        *,
        cookie: Optional[SessionCookie] = None,
        stream: bool = False,
        **kwargs: object,
    ) -> requests.Response:
        headers: Dict[str, str] = {}
        if cookie is not None:
            headers["Cookie"] = cookie.header_value()
        try:
            return self.session.request(
                method,
                url,
                headers=headers,
                timeout=self.timeout_seconds,
                allow_redirects=False,
                stream=stream,
                **kwargs,
            )
        except requests.Timeout as exc:
            raise RequestTimeoutError(
                f"Timed out after {self.timeout_seconds:g}s waiting for {url}"
            ) from exc
        except requests.RequestException as exc:
            raise TransportError(f"Problem with request to {url}: {format_exception_message(exc)}") from exc

    def login(self, credentials: Credentials) -> SessionCookie:
        missing = credentials.missing_fields()
        if missing:
            raise ConfigurationError("Missing credentials: " + ", ".join(missing))

        login_url = self.config.login_url
        log_event("LOGIN_SUBMIT", url=login_url)
        form = {"token": "", "email": credentials.email, "password": credentials.password}
        with self._send("POST", login_url, data=form) as response:
            hop = RedirectResponse.from_response(response)
            if hop.status_code is None:
                raise TransportError("No response status from the login endpoint.")
            if not hop.is_redirect:
                raise ProtocolError(
                    unexpected_status_message(hop.status_code, login_url, response),
                    status_code=hop.status_code,
                )
            if not hop.location:
                raise ProtocolError(
                    f"Login redirect ({hop.status_code}) is missing a Location header.",
                    status_code=hop.status_code,
                )
            cookie, session_id = advance_session(SessionCookie(credentials.auth_token), hop.set_cookie_headers)
            if session_id is None:
                raise ProtocolError(
                    f"Login response did not set a {SESSION_COOKIE_NAME} cookie.",
                    status_code=hop.status_code,
                )
            first_url = urljoin(login_url, hop.location)

        log_event("LOGIN_REDIRECT", status=hop.status_code, url=first_url)
        return cookie.with_session_id(self.follow_redirects(first_url, cookie))

    def _walk_redirects(
        self,
        url: str,
        cookie: SessionCookie,
        *,
        stream: bool = False,
    ) -> Tuple[requests.Response, SessionCookie, str]:
        """GET ``url`` and its redirects until a 200; the returned response is still open."""
        current_url = url
        for hop in range(self.max_redirects + 1):
            response = self._send("GET", current_url, cookie=cookie, stream=stream)
            step = RedirectResponse.from_response(response)
            if step.status_code == 200:
                return response, cookie, current_url

            with response:
                if step.status_code is None:
                    raise TransportError(f"No response status from {current_url}.")
                if not step.is_redirect:
                    raise ProtocolError(
                        unexpected_status_message(step.status_code, current_url, response),
                        status_code=step.status_code,
                    )
                if not step.location:
                    raise ProtocolError(
                        f"Redirect ({step.status_code}) from {current_url} is missing a Location header.",
                        status_code=step.status_code,
                    )

            cookie, new_session_id = advance_session(cookie, step.set_cookie_headers)
            if new_session_id is not None:
                log_event("SESSION_ROTATED", hop=hop + 1)
            current_url = urljoin(current_url, step.location)
            log_event("REDIRECT_HOP", hop=hop + 1, status=step.status_code, url=current_url)

        raise ProtocolError(
            f"Redirect loop: no final response after {self.max_redirects} redirects "
            f"(last location {current_url})."
        )

    def follow_redirects(self, url: str, cookie: SessionCookie) -> str:
        """Walk the redirect chain from ``url`` and return the latest session id."""
        response, cookie, final_url = self._walk_redirects(url, cookie)
        response.close()
        log_event("REDIRECT_DONE", url=final_url)
        if not cookie.session_id:
            raise ProtocolError("Redirect chain finished but no session identifier was obtained.")
        return cookie.session_id

    def fetch_resource(
        self,
        url: str,
        cookie: SessionCookie,
        destination: Optional[Path] = None,
    ) -> str:
        """Download ``url`` with an established session and return the body as text.

        When ``destination`` is given the body is also written there in the same
        pass (via a ``.part`` file that replaces the destination on success).
        """
        if not cookie.session_id:
            raise ValueError("fetch_resource() needs the SessionCookie returned by login().")

        response, cookie, final_url = self._walk_redirects(url, cookie, stream=True)
        with response:
            total = response.headers.get("Content-Length")
            total_bytes = int(total) if total and total.isdigit() else None
            label = destination.name if destination is not None else "download"
            with tqdm(
                total=total_bytes,
                unit="B",
                unit_scale=True,
                desc=label,
                disable=not self.show_progress,
            ) as progress:
                payload = self._store_body(response, destination, progress)

        log_event(
            "DOWNLOAD_DONE",
            url=final_url,
            bytes=len(payload),
            output=str(destination) if destination is not None else "memory",
        )
        return read_text_fallback(payload)

    def _iter_chunks(self, response: requests.Response) -> Iterator[bytes]:
        try:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if chunk:
                    yield chunk
        except requests.Timeout as exc:
            raise RequestTimeoutError(f"Timed out reading body from {response.url}") from exc
        except requests.ConnectionError as exc:
            # requests re-raises a mid-body read timeout as ConnectionError.
            if exc.args and isinstance(exc.args[0], ReadTimeoutError):
                raise RequestTimeoutError(f"Timed out reading body from {response.url}") from exc
            raise TransportError(
                f"Problem reading body from {response.url}: {format_exception_message(exc)}"
            ) from exc
        except OSError as exc:
            # requests.RequestException is an OSError subclass.
            raise TransportError(
                f"Problem reading body from {response.url}: {format_exception_message(exc)}"
            ) from exc

    def _store_body(
        self,
        response: requests.Response,
        destination: Optional[Path],
        progress: tqdm,
    ) -> bytes:
        buffer = bytearray()
        if destination is None:
            for chunk in self._iter_chunks(response):
                buffer.extend(chunk)
                progress.update(len(chunk))
            return bytes(buffer)

        tmp_path = destination.with_suffix(destination.suffix + ".part")
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "wb") as handle:
                for chunk in self._iter_chunks(response):
                    handle.write(chunk)
                    buffer.extend(chunk)
                    progress.update(len(chunk))
            tmp_path.replace(destination)
        except OSError as exc:
            if tmp_path.exists():
                tmp_path.unlink()
            raise StorageError(
                f"Could not write download to {destination}: {format_exception_message(exc)}"
            ) from exc
        except TransportError:
            if tmp_path.exists():
                tmp_path.unlink()
            raise
        return bytes(buffer)
