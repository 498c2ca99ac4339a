"""
Shared pytest fixtures for flowsync tests.

Provides temporary SQLite stores, a failure-injecting document store and an
in-memory git object repository standing in for GitHub.
"""

import hashlib
from typing import Optional

import pytest

from flowsync.document_store import DocumentStore
from flowsync.errors import RefConflictError, RemoteStoreError, RepositoryError, RepositoryNotFoundError
from flowsync.local_store import LocalStore
from flowsync.types import Identity, RepoTreeItem, TreeEntry


class FlakyStore(DocumentStore):
    """
    DocumentStore that records every committed write and can be told to fail.

    ``writes`` holds one list of ``(kind, address, data, merge)`` per
    successful commit (a single set/delete counts as a one-op commit).
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.writes: list[list[tuple]] = []
        self.fail_writes = False
        self.fail_after_commits: Optional[int] = None

    @property
    def commits(self) -> int:
        return len(self.writes)

    def _apply(self, ops):
        if self.fail_writes:
            raise RemoteStoreError("store unavailable")
        if self.fail_after_commits is not None and self.commits >= self.fail_after_commits:
            raise RemoteStoreError("store unavailable")
        super()._apply(ops)
        self.writes.append(list(ops))


class InMemoryRepository:
    """
    Git object model kept in dicts; implements BackupRepositoryProtocol.

    ``exists=False`` models a missing repository, ``empty=True`` an existing
    repository whose default branch has no commits yet. A repository created
    through ``create_repository`` starts empty as well.
    """

    def __init__(self, *, exists: bool = True, empty: bool = False, branch: str = "main"):
        self.exists = exists
        self.branch = branch
        self.created = False
        self.private: Optional[bool] = None
        self.fail_bootstrap = False
        self.refs: dict[str, str] = {}
        self.trees: dict[str, dict[str, str]] = {}
        self.commits: dict[str, dict] = {}
        self.blobs: dict[str, str] = {}
        self.seed_writes: list[str] = []
        self._counter = 0
        if exists and not empty:
            self.commit_files({"README.md": "# Backup\n"}, message="Initial commit")

    def _sha(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}{self._counter:04d}"

    def _blob_sha(self, content: str) -> str:
        sha = hashlib.sha1(content.encode("utf-8")).hexdigest()
        self.blobs[sha] = content
        return sha

    # --- test helpers --------------------------------------------------------

    def commit_files(self, files: dict[str, str], *, message: str = "Test commit") -> str:
        """Synchronously commit ``files`` on top of the branch head."""
        head = self.refs.get(self.branch)
        tree = dict(self.trees[self.commits[head]["tree"]]) if head else {}
        tree.update(files)
        tree_sha = self._sha("tree")
        self.trees[tree_sha] = tree
        commit_sha = self._sha("commit")
        self.commits[commit_sha] = {"tree": tree_sha, "parents": [head] if head else [], "message": message}
        self.refs[self.branch] = commit_sha
        return commit_sha

    def files(self) -> dict[str, str]:
        head = self.refs.get(self.branch)
        if head is None:
            return {}
        return dict(self.trees[self.commits[head]["tree"]])

    def history(self) -> list[str]:
        """Commit shas from the head back along first parents."""
        shas = []
        sha = self.refs.get(self.branch)
        while sha:
            shas.append(sha)
            parents = self.commits[sha]["parents"]
            sha = parents[0] if parents else None
        return shas

    def _ancestors(self, sha: str) -> set[str]:
        seen = set()
        stack = [sha]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self.commits[current]["parents"])
        return seen

    # --- BackupRepositoryProtocol ---------------------------------------------

    async def get_default_branch(self) -> str:
        if not self.exists:
            raise RepositoryNotFoundError("Get repository: not found", status=404)
        return self.branch

    async def create_repository(self, *, private: bool = True, auto_init: bool = True) -> str:
        self.exists = True
        self.created = True
        self.private = private
        return self.branch

    async def get_branch_head(self, branch: str) -> Optional[str]:
        return self.refs.get(branch)

    async def get_commit_tree(self, commit_sha: str) -> str:
        return self.commits[commit_sha]["tree"]

    async def create_tree(self, entries: list[TreeEntry], *, base_tree: Optional[str] = None) -> str:
        tree = dict(self.trees[base_tree]) if base_tree else {}
        for entry in entries:
            tree[entry.path] = entry.content
        sha = self._sha("tree")
        self.trees[sha] = tree
        return sha

    async def create_commit(self, message: str, tree_sha: str, parents: list[str]) -> str:
        sha = self._sha("commit")
        self.commits[sha] = {"tree": tree_sha, "parents": list(parents), "message": message}
        return sha

    async def create_branch(self, branch: str, sha: str) -> None:
        if branch in self.refs:
            raise RefConflictError(f"Reference heads/{branch} already exists", status=422)
        self.refs[branch] = sha

    async def update_branch(self, branch: str, sha: str) -> None:
        head = self.refs.get(branch)
        if head is None:
            raise RepositoryError(f"Reference heads/{branch} does not exist", status=422)
        if head not in self._ancestors(sha):
            raise RefConflictError("Update is not a fast forward", status=422)
        self.refs[branch] = sha

    async def list_tree(self, ref: str, *, recursive: bool = True) -> list[RepoTreeItem]:
        items = []
        folders = set()
        for path, content in sorted(self.files().items()):
            parts = path.split("/")
            for i in range(1, len(parts)):
                folders.add("/".join(parts[:i]))
            items.append(RepoTreeItem(path=path, type="blob", sha=self._blob_sha(content)))
        items.extend(RepoTreeItem(path=f, type="tree", sha=self._sha("tree")) for f in sorted(folders))
        return items

    async def read_blob(self, sha: str) -> str:
        return self.blobs[sha]

    async def write_file(self, path: str, content: str, *, message: str, branch: str) -> None:
        if self.fail_bootstrap:
            raise RepositoryError("Write failed: 500 server error", status=500)
        self.seed_writes.append(path)
        self.commit_files({path: content}, message=message)


@pytest.fixture
def identity():
    return Identity("alice")


@pytest.fixture
def store(tmp_path):
    """FlakyStore on a temporary SQLite file."""
    s = FlakyStore(tmp_path / "remote.db")
    yield s
    s.close()


@pytest.fixture
def local(tmp_path):
    s = LocalStore(tmp_path / "local.db")
    yield s
    s.close()


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def make_store(tmp_path):
    """Factory for extra FlakyStores (e.g. with a small batch limit)."""
    stores = []

    def make(name: str = "extra.db", **kwargs) -> FlakyStore:
        s = FlakyStore(tmp_path / name, **kwargs)
        stores.append(s)
        return s

    yield make
    for s in stores:
        s.close()


@pytest.fixture
def make_repository():
    """Factory for InMemoryRepository variants (missing, empty, ...)."""
    return InMemoryRepository
