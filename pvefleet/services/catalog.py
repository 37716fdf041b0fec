"""Script catalog mirrored from a GitHub repository.

The JSON definitions under ``json_folder`` are mirrored into
``<scripts_dir>/json``; the shell scripts an item references are fetched on
demand into ``ct/``, ``install/``, ``tools/``, ``vm/`` and ``vw/``.
"""

from __future__ import annotations

import hashlib
import json
import re
from pathlib import Path, PurePosixPath
from typing import Optional

import httpx

from pvefleet.config import Settings, settings
from pvefleet.errors import PveFleetError, RateLimitError
from pvefleet.models.catalog import CatalogItem, GitHubFile
from pvefleet.models.sync import CatalogSyncResult
from pvefleet.utils.logging import get_logger

log = get_logger(__name__)

USER_AGENT = "pvefleet/1.0"
_REPO_RE = re.compile(r"github\.com[/:]([^/]+)/([^/]+?)(?:\.git)?(?:/|$)")
_RATE_LIMIT_STATUS = (403, 429)

# Upstream CT scripts source build.func over the network; point them at
# the local copy instead.
_BUILD_FUNC_RE = re.compile(
    r"source <\(curl -fsSL https://raw\.githubusercontent\.com/"
    r"community-scripts/ProxmoxVE/main/misc/build\.func\)",
)
_BUILD_FUNC_LOCAL = 'SCRIPT_DIR="$(dirname "$0")" \nsource "$SCRIPT_DIR/../core/build.func"'

_SUBDIR_KINDS = ("tools", "vm", "vw")


def repo_path(repo_url: str) -> str:
    """``https://github.com/owner/repo`` -> ``owner/repo``."""
    m = _REPO_RE.search(repo_url)
    if not m:
        raise PveFleetError(f"Invalid GitHub repository URL: {repo_url}")
    return f"{m.group(1)}/{m.group(2)}"


def git_blob_sha(content: bytes) -> str:
    """The sha GitHub reports for a file with this content."""
    header = f"blob {len(content)}\0".encode()
    return hashlib.sha1(header + content).hexdigest()


def local_script_path(script_path: str) -> PurePosixPath:
    """Where an upstream script path lives under the scripts directory.

    ``ct/`` and unknown prefixes flatten into ``ct/<file>``; ``tools/``,
    ``vm/`` and ``vw/`` keep their sub-directories.
    """
    path = PurePosixPath(script_path)
    if path.parts and path.parts[0] in _SUBDIR_KINDS:
        return path
    return PurePosixPath("ct") / path.name


class GitHubCatalog:
    def __init__(
        self,
        cfg: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._cfg = cfg or settings
        self._transport = transport
        self._scripts_dir = Path(self._cfg.scripts_dir)
        self._json_dir = self._scripts_dir / "json"

    # ── HTTP helpers ──────────────────────────────────────────────────

    def _client(self) -> httpx.AsyncClient:
        headers = {"User-Agent": USER_AGENT}
        if self._cfg.github_token:
            headers["Authorization"] = f"token {self._cfg.github_token}"
        return httpx.AsyncClient(
            headers=headers,
            timeout=self._cfg.github_timeout_seconds,
            transport=self._transport,
            follow_redirects=True,
        )

    @staticmethod
    def _raise_for_status(resp: httpx.Response, what: str) -> None:
        if resp.status_code in _RATE_LIMIT_STATUS:
            raise RateLimitError(
                f"GitHub rate limit exceeded while fetching {what} "
                f"(HTTP {resp.status_code})",
            )
        if resp.is_error:
            raise PveFleetError(
                f"Failed to fetch {what}: HTTP {resp.status_code} {resp.reason_phrase}",
            )

    def _raw_url(self, path: str, repo_url: str | None = None) -> str:
        repo = repo_path(repo_url or self._cfg.repo_url)
        return f"https://raw.githubusercontent.com/{repo}/{self._cfg.repo_branch}/{path}"

    async def _list_json_files(self, client: httpx.AsyncClient) -> list[GitHubFile]:
        url = (
            f"https://api.github.com/repos/{repo_path(self._cfg.repo_url)}"
            f"/contents/{self._cfg.json_folder}"
        )
        resp = await client.get(
            url,
            params={"ref": self._cfg.repo_branch},
            headers={"Accept": "application/vnd.github.v3+json"},
        )
        self._raise_for_status(resp, self._cfg.json_folder)
        files = [GitHubFile.model_validate(f) for f in resp.json()]
        return [f for f in files if f.type == "file" and f.name.endswith(".json")]

    # ── public: catalog mirror ────────────────────────────────────────

    async def sync_catalog(self) -> CatalogSyncResult:
        """Mirror new or changed JSON definitions into the local json dir.

        Raises ``RateLimitError`` when GitHub throttles us. Other listing
        failures are reported in the result; per-file failures are
        collected in ``errors`` while the rest continue.
        """
        self._json_dir.mkdir(parents=True, exist_ok=True)
        synced: list[str] = []
        errors: list[str] = []
        async with self._client() as client:
            try:
                remote = await self._list_json_files(client)
            except RateLimitError:
                raise
            except (PveFleetError, httpx.HTTPError) as exc:
                log.warning("catalog.list_failed", error=str(exc))
                return CatalogSyncResult(
                    success=False, message=f"Failed to list catalog files: {exc}",
                )

            pending = [f for f in remote if not self._is_current(f)]
            for item in pending:
                try:
                    resp = await client.get(self._raw_url(item.path))
                    self._raise_for_status(resp, item.path)
                    json.loads(resp.content)
                    (self._json_dir / item.name).write_bytes(resp.content)
                    synced.append(item.name)
                except RateLimitError:
                    raise
                except (PveFleetError, httpx.HTTPError, ValueError) as exc:
                    errors.append(f"{item.name}: {exc}")

        log.info(
            "catalog.synced",
            remote=len(remote),
            synced=len(synced),
            errors=len(errors),
        )
        message = (
            f"Synced {len(synced)} JSON files from GitHub" if synced
            else "All JSON files are up to date"
        )
        return CatalogSyncResult(
            success=True,
            message=message,
            synced_files=synced,
            skipped_count=len(remote) - len(pending),
            errors=errors,
        )

    def _is_current(self, remote: GitHubFile) -> bool:
        local = self._json_dir / remote.name
        if not local.exists():
            return False
        if not remote.sha:
            return True
        return git_blob_sha(local.read_bytes()) == remote.sha

    def load_items(self, filenames: list[str] | None = None) -> list[CatalogItem]:
        """Parse local JSON definitions; all of them when *filenames* is None."""
        if filenames is None:
            paths = sorted(self._json_dir.glob("*.json"))
        else:
            paths = [self._json_dir / name for name in filenames]
        items: list[CatalogItem] = []
        for path in paths:
            try:
                items.append(CatalogItem.model_validate_json(path.read_bytes()))
            except (OSError, ValueError) as exc:
                log.warning("catalog.item_unreadable", file=path.name, error=str(exc))
        return items

    # ── public: script files ──────────────────────────────────────────

    def _script_paths(self, item: CatalogItem) -> list[str]:
        return [m.script for m in item.install_methods if m.script]

    def is_already_present(self, item: CatalogItem) -> bool:
        """True when every script file the item references exists locally."""
        paths = self._script_paths(item)
        if not paths:
            return False
        return all(
            (self._scripts_dir / local_script_path(p)).exists() for p in paths
        )

    async def fetch_item(self, item: CatalogItem) -> list[str]:
        """Download the item's scripts; returns the written relative paths."""
        written: list[str] = []
        async with self._client() as client:
            for script_path in self._script_paths(item):
                content = await self._download(client, script_path, item.repository_url)
                rel = local_script_path(script_path)
                if rel.parts[0] == "ct":
                    content = _BUILD_FUNC_RE.sub(_BUILD_FUNC_LOCAL, content)
                self._write(rel, content)
                written.append(str(rel))

            if any(p.startswith("ct/") for p in self._script_paths(item)):
                rel = PurePosixPath("install") / f"{item.slug}-install.sh"
                try:
                    content = await self._download(client, str(rel), item.repository_url)
                except RateLimitError:
                    raise
                except (PveFleetError, httpx.HTTPError):
                    # Not every CT script ships a separate installer
                    log.debug("catalog.no_install_script", slug=item.slug)
                else:
                    self._write(rel, content)
                    written.append(str(rel))

        log.info("catalog.item_fetched", slug=item.slug, files=len(written))
        return written

    async def _download(
        self,
        client: httpx.AsyncClient,
        path: str,
        repo_url: Optional[str],
    ) -> str:
        resp = await client.get(self._raw_url(path, repo_url))
        self._raise_for_status(resp, path)
        return resp.text

    def _write(self, rel: PurePosixPath, content: str) -> None:
        target = self._scripts_dir / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")


github_catalog = GitHubCatalog()
