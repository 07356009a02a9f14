"""
Google Sheets Row Store — Sheets v4 REST API over aiohttp.

Operations used:
- ``GET  values/{sheet}!A1:E``                         read every row
- ``POST values/{sheet}!A1:E:append`` (RAW, INSERT_ROWS) append a row
- ``PUT  values/{sheet}!{cell}`` (RAW)                  overwrite a cell
- ``POST :batchUpdate`` deleteDimension                 delete a row
- ``POST :batchUpdate`` addSheet                        create missing tabs

Authorisation uses a service account: an RS256-signed JWT is exchanged for an
access token, which is cached until shortly before it expires.

Security Note:
    Never log cell values; they contain wrapped keys and ciphertext.
"""
import time
import asyncio
import base64
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Optional, Union
from urllib.parse import quote

import orjson
import aiohttp
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from ..exceptions import ConfigError, RowIndexError, StoreError
from .base import RowStore

logger = logging.getLogger("secretable.providers")

SHEETS_API = "https://sheets.googleapis.com"
SHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"
_JWT_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
_TOKEN_LIFETIME = 3600
_TOKEN_LEEWAY = 60
_ROW_RANGE = "A1:E"


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


class StaticToken:
    """Fixed bearer token, for tests or externally managed credentials."""

    def __init__(self, token: str):
        self._token = token

    async def token(self, session: aiohttp.ClientSession) -> str:
        return self._token


class ServiceAccountCredentials:
    """OAuth2 service-account flow for the Sheets scope."""

    def __init__(
        self,
        client_email: str,
        private_key: rsa.RSAPrivateKey,
        token_uri: str = DEFAULT_TOKEN_URI,
        scope: str = SHEETS_SCOPE,
    ):
        self.client_email = client_email
        self.token_uri = token_uri
        self.scope = scope
        self._private_key = private_key
        self._token: Optional[str] = None
        self._expires_at = 0.0

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ServiceAccountCredentials":
        """Load a Google service account JSON key file.

        Raises:
            ConfigError: If the file is missing, malformed or not an RSA key.
        """
        try:
            info = orjson.loads(Path(path).expanduser().read_bytes())
            client_email = info["client_email"]
            key = serialization.load_pem_private_key(
                info["private_key"].encode("utf-8"), password=None,
            )
        except (OSError, KeyError, TypeError, ValueError) as err:
            raise ConfigError(
                f"Unable to load Google credentials {path}: {err}"
            ) from err
        if not isinstance(key, rsa.RSAPrivateKey):
            raise ConfigError(f"Google credentials {path} do not hold an RSA key")
        return cls(client_email, key, info.get("token_uri", DEFAULT_TOKEN_URI))

    def _assertion(self, now: int) -> str:
        header = {"alg": "RS256", "typ": "JWT"}
        claims = {
            "iss": self.client_email,
            "scope": self.scope,
            "aud": self.token_uri,
            "iat": now,
            "exp": now + _TOKEN_LIFETIME,
        }
        signing_input = (
            f"{_b64url(orjson.dumps(header))}.{_b64url(orjson.dumps(claims))}"
        )
        signature = self._private_key.sign(
            signing_input.encode("ascii"), padding.PKCS1v15(), hashes.SHA256(),
        )
        return f"{signing_input}.{_b64url(signature)}"

    async def token(self, session: aiohttp.ClientSession) -> str:
        """Return a cached access token, fetching a new one when expired."""
        if self._token and time.time() < self._expires_at - _TOKEN_LEEWAY:
            return self._token
        now = int(time.time())
        form = {"grant_type": _JWT_GRANT, "assertion": self._assertion(now)}
        try:
            async with session.post(self.token_uri, data=form) as resp:
                body = await resp.read()
                if resp.status >= 400:
                    raise StoreError(
                        f"Token request failed with HTTP {resp.status}"
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            raise StoreError(f"Token request failed: {err}") from err
        try:
            payload = orjson.loads(body)
            self._token = payload["access_token"]
            self._expires_at = now + int(payload.get("expires_in", _TOKEN_LIFETIME))
        except (orjson.JSONDecodeError, KeyError, TypeError, ValueError) as err:
            raise StoreError(f"Malformed token response: {err}") from err
        logger.debug("Obtained access token for %s", self.client_email)
        return self._token


class SheetsRowStore(RowStore):
    """Row store backed by one Google spreadsheet."""

    def __init__(
        self,
        spreadsheet_id: str,
        credentials: Any,
        session: Optional[aiohttp.ClientSession] = None,
        base_url: str = SHEETS_API,
    ):
        self._spreadsheet_id = spreadsheet_id
        self._credentials = credentials
        self._session = session
        self._own_session = session is None
        self._base_url = base_url.rstrip("/")
        self._sheet_ids: dict[str, int] = {}

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    def _url(self, suffix: str) -> str:
        return f"{self._base_url}/v4/spreadsheets/{self._spreadsheet_id}{suffix}"

    def _values_url(self, sheet_range: str, suffix: str = "") -> str:
        return self._url(f"/values/{quote(sheet_range, safe='!:')}{suffix}")

    async def _request(
        self,
        method: str,
        url: str,
        params: Optional[dict[str, str]] = None,
        body: Any = None,
    ) -> dict:
        session = self._get_session()
        token = await self._credentials.token(session)
        headers = {"Authorization": f"Bearer {token}"}
        data = None
        if body is not None:
            headers["Content-Type"] = "application/json"
            data = orjson.dumps(body)
        try:
            async with session.request(
                method, url, params=params, data=data, headers=headers,
            ) as resp:
                raw = await resp.read()
                if resp.status >= 400:
                    raise StoreError(
                        f"Sheets API {method} failed with HTTP {resp.status}: "
                        f"{raw.decode('utf-8', 'replace')[:200]}"
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            raise StoreError(f"Sheets API {method} failed: {err}") from err
        if not raw:
            return {}
        try:
            return orjson.loads(raw)
        except orjson.JSONDecodeError as err:
            raise StoreError(f"Malformed Sheets API response: {err}") from err

    async def _load_sheet_ids(self) -> None:
        meta = await self._request(
            "GET", self._url(""), params={"fields": "sheets.properties"},
        )
        self._sheet_ids = {
            sheet["properties"]["title"]: sheet["properties"]["sheetId"]
            for sheet in meta.get("sheets", [])
        }

    async def setup(self, sheets: Iterable[str]) -> None:
        for title in sheets:
            try:
                await self._request(
                    "POST",
                    self._url(":batchUpdate"),
                    body={"requests": [{"addSheet": {"properties": {"title": title}}}]},
                )
                logger.info("Created sheet %s", title)
            except StoreError as err:
                if "already exists" not in str(err):
                    raise
        await self._load_sheet_ids()

    async def close(self) -> None:
        if self._own_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def read_rows(self, sheet: str) -> list[list[str]]:
        data = await self._request("GET", self._values_url(f"{sheet}!{_ROW_RANGE}"))
        return [[str(cell) for cell in row] for row in data.get("values", [])]

    async def append_row(self, sheet: str, values: list[str]) -> None:
        try:
            await self._request(
                "POST",
                self._values_url(f"{sheet}!{_ROW_RANGE}", ":append"),
                params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
                body={"values": [list(values)], "majorDimension": "ROWS"},
            )
        except StoreError:
            logger.error(
                "Unable to append new values to sheet %s of %s",
                sheet, self._spreadsheet_id,
            )
            raise

    async def update_cell(self, sheet: str, cell: str, value: str) -> None:
        try:
            await self._request(
                "PUT",
                self._values_url(f"{sheet}!{cell}"),
                params={"valueInputOption": "RAW"},
                body={"values": [[value]], "majorDimension": "ROWS"},
            )
        except StoreError:
            logger.error(
                "Unable to update cell %s!%s of %s",
                sheet, cell, self._spreadsheet_id,
            )
            raise

    async def delete_row(self, sheet: str, index: int) -> None:
        rows = await self.read_rows(sheet)
        if index < 0 or index >= len(rows):
            raise RowIndexError(
                f"Row {index} out of range for sheet {sheet} ({len(rows)} rows)"
            )
        if sheet not in self._sheet_ids:
            await self._load_sheet_ids()
        if sheet not in self._sheet_ids:
            raise StoreError(f"Sheet {sheet} not found")
        request = {
            "deleteDimension": {
                "range": {
                    "sheetId": self._sheet_ids[sheet],
                    "dimension": "ROWS",
                    "startIndex": index,
                    "endIndex": index + 1,
                }
            }
        }
        try:
            await self._request(
                "POST", self._url(":batchUpdate"), body={"requests": [request]},
            )
        except StoreError:
            logger.error(
                "Unable to delete row %d of sheet %s", index, sheet,
            )
            raise
