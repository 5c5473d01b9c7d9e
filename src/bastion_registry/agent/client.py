"""
RegistryClient SDK — sync client for the bastion registry API.

Used by the CLI and the tunnel agent to register machines, list them,
and send heartbeats.
"""

import json
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import httpx


@dataclass
class ClientRegistration:
    """Result of register() call."""

    success: bool
    name: str = ""
    port: int = 0
    server: str = ""
    tunnel_port: int = 0
    ssh_user: str = ""
    server_public_key: str = ""
    code: str = ""
    message: str = ""


@dataclass
class ClientMachine:
    """Machine entry returned by list_machines()."""

    name: str
    owner: str
    port: int
    local_user: str
    last_seen: Optional[datetime] = None


@dataclass
class ClientResult:
    """Outcome of a mutation call."""

    success: bool
    code: str = ""
    message: str = ""


class RegistryClient:
    """
    Synchronous HTTP client for the bastion registry.

    Refuses plain HTTP unless ``allow_insecure`` is set, since the API key
    travels in a header.
    """

    def __init__(
        self,
        server_url: str,
        api_key: str = "",
        timeout: int = 15,
        max_retries: int = 3,
        retry_backoff_base: float = 0.5,
        allow_insecure: bool = False,
    ):
        if not server_url.startswith("https://") and not allow_insecure:
            raise ValueError("server URL must use HTTPS")
        self.server_url = server_url.rstrip("/")
        self.api_key = api_key
        self.max_retries = max_retries
        self.retry_backoff_base = retry_backoff_base
        self._http = httpx.Client(
            base_url=self.server_url,
            timeout=timeout,
            headers={"X-API-Key": api_key} if api_key else {},
        )

    def _request(
        self,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> Any:
        """Central HTTP method with retry and structured error handling.

        Retries on timeouts, transport errors, 5xx and 429. Other 4xx
        responses return immediately with the server's detail message.
        """
        last_error = None
        for attempt in range(self.max_retries):
            try:
                resp = getattr(self._http, method)(path, **kwargs)
                if resp.status_code >= 500 or resp.status_code == 429:
                    last_error = f"HTTP {resp.status_code}"
                    if attempt < self.max_retries - 1:
                        time.sleep(self.retry_backoff_base * (2 ** attempt))
                        continue
                    return {
                        "error": f"Server error: {resp.status_code}",
                        "code": "SERVER_ERROR",
                        "status": resp.status_code,
                    }
                if resp.status_code >= 400:
                    return {
                        "error": self._detail(resp),
                        "code": "CLIENT_ERROR",
                        "status": resp.status_code,
                    }
                return resp.json()
            except httpx.TimeoutException:
                last_error = "timeout"
                if attempt < self.max_retries - 1:
                    time.sleep(self.retry_backoff_base * (2 ** attempt))
                    continue
            except httpx.HTTPError as e:
                last_error = str(e)
                if attempt < self.max_retries - 1:
                    time.sleep(self.retry_backoff_base * (2 ** attempt))
                    continue
            except json.JSONDecodeError:
                return {"error": "Invalid JSON response", "code": "JSON_ERROR"}

        return {"error": f"All {self.max_retries} retries exhausted: {last_error}", "code": "CONNECTION_ERROR"}

    @staticmethod
    def _detail(resp) -> str:
        try:
            data = resp.json()
        except (json.JSONDecodeError, ValueError):
            return f"Client error: {resp.status_code}"
        if isinstance(data, dict) and isinstance(data.get("detail"), str):
            return data["detail"]
        return f"Client error: {resp.status_code}"

    @staticmethod
    def _is_error(data: Any) -> bool:
        return isinstance(data, dict) and "error" in data

    def _result(self, data: Any) -> ClientResult:
        if self._is_error(data):
            return ClientResult(
                success=False, code=data.get("code", "ERROR"),
                message=data.get("error", ""),
            )
        return ClientResult(success=bool(data.get("ok", False)), code="OK")

    # ── Status ──

    def status(self) -> dict[str, Any]:
        return self._request("get", "/api/status")

    # ── Registration ──

    def register(
        self,
        name: str,
        owner: str,
        local_user: str,
        public_key: str,
    ) -> ClientRegistration:
        body = {
            "name": name,
            "owner": owner,
            "local_user": local_user,
            "public_key": public_key.strip(),
        }
        data = self._request("post", "/api/register", json=body)
        if self._is_error(data):
            return ClientRegistration(
                success=False, code=data.get("code", "ERROR"),
                message=data.get("error", ""),
            )
        return ClientRegistration(
            success=True,
            name=data.get("name", ""),
            port=data.get("port", 0),
            server=data.get("server", ""),
            tunnel_port=data.get("tunnel_port", 0),
            ssh_user=data.get("ssh_user", ""),
            server_public_key=data.get("server_public_key", ""),
            code="REGISTERED",
        )

    def list_machines(self) -> list[ClientMachine]:
        data = self._request("get", "/api/machines")
        if self._is_error(data):
            raise RuntimeError(data.get("error", "list failed"))

        machines = []
        for entry in data:
            last_seen = None
            if entry.get("last_seen"):
                try:
                    last_seen = datetime.fromisoformat(entry["last_seen"])
                except (ValueError, TypeError):
                    pass
            machines.append(ClientMachine(
                name=entry.get("name", ""),
                owner=entry.get("owner", ""),
                port=entry.get("port", 0),
                local_user=entry.get("local_user", ""),
                last_seen=last_seen,
            ))
        return machines

    def delete(self, name: str) -> ClientResult:
        return self._result(self._request("delete", f"/api/machines/{name}"))

    def rename(self, old_name: str, new_name: str) -> ClientResult:
        data = self._request(
            "put", f"/api/machines/{old_name}/rename", json={"new_name": new_name}
        )
        return self._result(data)

    # ── Heartbeat ──

    def heartbeat(self, name: str) -> bool:
        data = self._request("post", "/api/heartbeat", json={"name": name})
        if self._is_error(data):
            return False
        return data.get("ok", False)

    # ── Lifecycle ──

    def close(self) -> None:
        """Close the HTTP client."""
        self._http.close()
