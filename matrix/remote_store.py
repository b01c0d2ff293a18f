# matrix/remote_store.py
"""
Client for the spreadsheet-backed web script that holds the authoritative
member and utility rows.

Reads go out as GET ?action=..., writes as POST ?action=... with a JSON body
sent as text/plain (the script host rejects CORS preflights for JSON).
Every call carries a hard timeout and is attempted exactly once.
"""
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from matrix.entities import ROOT_MEMBER_ID, Member, Utility, UtilityStatus
from matrix.errors import RemoteUnavailable
from matrix.normalization import normalize_members

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 20


@dataclass(frozen=True)
class RemoteResult:
    success: bool
    message: str = ""


class SheetsRemoteStore:

    def __init__(self, base_url: str, timeout: float = DEFAULT_TIMEOUT_SECONDS,
                 http: Optional[requests.Session] = None, root_id: str = ROOT_MEMBER_ID):
        self.base_url = base_url
        self.timeout = timeout
        self.root_id = root_id
        self.http = http or self._build_session()

    @staticmethod
    def _build_session() -> requests.Session:
        session = requests.Session()
        # Writes carry no dedup key, so never let the transport replay them
        adapter = HTTPAdapter(max_retries=Retry(total=0, raise_on_status=False))
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    # -------------------------
    # Transport
    # -------------------------
    def _decode(self, response: requests.Response) -> Any:
        if response.status_code >= 400:
            raise RemoteUnavailable(f"HTTP {response.status_code} from remote store")
        try:
            data = response.json()
        except ValueError:
            raise RemoteUnavailable(f"Non-JSON response: {response.text[:100]!r}")
        if isinstance(data, dict) and data.get("error"):
            raise RemoteUnavailable(f"Remote error: {data['error']}")
        return data

    def _get(self, action: str, **params) -> Any:
        query = dict(params, action=action, _=str(int(time.time() * 1000)))
        try:
            response = self.http.get(self.base_url, params=query, timeout=self.timeout)
        except requests.exceptions.Timeout:
            raise RemoteUnavailable(f"Remote store timeout after {self.timeout} seconds")
        except requests.exceptions.RequestException as e:
            raise RemoteUnavailable(f"Remote store connection error: {e}")
        return self._decode(response)

    def _post(self, action: str, body: Dict[str, Any]) -> RemoteResult:
        try:
            response = self.http.post(
                self.base_url,
                params={"action": action},
                data=json.dumps(body),
                headers={"Content-Type": "text/plain;charset=utf-8"},
                timeout=self.timeout,
            )
            data = self._decode(response)
        except requests.exceptions.Timeout:
            logger.warning(f"{action}: remote store timeout after {self.timeout} seconds")
            return RemoteResult(False, "Remote store timeout")
        except requests.exceptions.RequestException as e:
            logger.warning(f"{action}: remote store connection error: {e}")
            return RemoteResult(False, "Remote store connection error")
        except RemoteUnavailable as e:
            logger.warning(f"{action}: {e.message}")
            return RemoteResult(False, e.message)

        if isinstance(data, dict) and data.get("success") is False:
            return RemoteResult(False, str(data.get("message") or "Remote store rejected the write"))
        return RemoteResult(True, str(data.get("message", "ok")) if isinstance(data, dict) else "ok")

    # -------------------------
    # Contract
    # -------------------------
    def fetch_all(self) -> List[Member]:
        """All members with their utilities (attachment payloads omitted)."""
        return normalize_members(self._get("getUsers"), self.root_id)

    def register(self, member: Member) -> RemoteResult:
        return self._post("register", member.to_dict())

    def add_utility(self, utility: Utility, member_id: str) -> RemoteResult:
        body = utility.to_dict()
        body["userId"] = member_id
        return self._post("addUtility", body)

    def update_member_fields(self, member_id: str, fields: Dict[str, Any]) -> RemoteResult:
        body = dict(fields)
        body["id"] = member_id
        return self._post("updateUser", body)

    def update_utility_status(self, member_id: str, utility_id: str, status: UtilityStatus) -> RemoteResult:
        return self._post("updateUtilityStatus", {
            "userId": member_id,
            "utilityId": utility_id,
            "status": status.value,
        })

    def fetch_attachment(self, utility_id: str) -> Optional[str]:
        """Lazy-load one attachment payload. None when the remote has none."""
        data = self._get("getUtilityImage", utilityId=utility_id)
        if isinstance(data, dict) and data.get("success") and data.get("attachmentData"):
            return str(data["attachmentData"])
        return None
