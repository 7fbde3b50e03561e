"""Tool integrations used by the TCR session workflow."""

from .patch import PatchError, PatchResult, apply_patch, looks_like_unified_diff, strip_code_fence
from .test_runner import SuiteResult, SuiteStatus, run_test_command
from .vcs import GitError, GitRepository
from .workspace_snapshot import snapshot_file_tree

__all__ = [
    "GitError",
    "GitRepository",
    "PatchError",
    "PatchResult",
    "SuiteResult",
    "SuiteStatus",
    "apply_patch",
    "looks_like_unified_diff",
    "run_test_command",
    "snapshot_file_tree",
    "strip_code_fence",
]
