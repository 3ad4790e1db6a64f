from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Dict, NoReturn

import httpx
import typer

from cli.config import CLIConfig

PENDING_STATUSES = frozenset({"uploaded", "processing"})


class ApiClient:
    """Thin httpx wrapper around the threshold service endpoints."""

    def __init__(self, config: CLIConfig) -> None:
        self._config = config
        self._client = httpx.Client(base_url=config.base_url, timeout=config.request_timeout)

    def close(self) -> None:
        self._client.close()

    def upload_file(self, path: Path) -> str:
        payload = self._post_csv("/files", path)
        file_id = payload.get("file_id")
        if not isinstance(file_id, str):
            raise typer.BadParameter("Unexpected response payload when uploading file.")
        return file_id

    def analyze_file(self, path: Path) -> Dict[str, Any]:
        return self._post_csv("/analyze", path)

    def get_result(self, file_id: str) -> Dict[str, Any]:
        response = self._client.get(f"/files/{file_id}")
        if response.status_code == 404:
            raise typer.BadParameter(f"File {file_id} was not found.")
        self._raise_for_status(response)
        return response.json()

    def poll_result(self, file_id: str, interval: float, timeout: float) -> Dict[str, Any]:
        deadline = time.monotonic() + timeout
        last_status = "unknown"
        while time.monotonic() <= deadline:
            payload = self.get_result(file_id)
            last_status = payload.get("status", last_status)
            if last_status not in PENDING_STATUSES:
                return payload
            time.sleep(interval)
        typer.secho(
            f"Timed out waiting for processing of {file_id}. Last status: {last_status}",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code=1)

    def _post_csv(self, url: str, path: Path) -> Dict[str, Any]:
        if not path.is_file():
            raise typer.BadParameter(f"Path {path} is not a readable file.")
        with path.open("rb") as handle:
            response = self._client.post(url, files={"file": (path.name, handle, "text/csv")})
        self._raise_for_status(response)
        return response.json()

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            ApiClient._fail(exc)

    @staticmethod
    def _fail(exc: httpx.HTTPStatusError) -> NoReturn:
        try:
            detail = exc.response.json().get("detail")
        except ValueError:
            detail = exc.response.text.strip()
        typer.secho(
            f"Request failed with status {exc.response.status_code}: {detail or 'no detail provided.'}",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(code=1)
