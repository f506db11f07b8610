"""Path management utilities for camino-deployments library."""

from pathlib import Path
from typing import Optional, Union


def get_default_project_root() -> Path:
    """
    Get default project root (current directory).

    Returns:
        Path to the hardhat project being deployed
    """
    return Path.cwd()


def get_project_paths(project_root: Optional[Union[Path, str]] = None) -> tuple[Path, Path, Path]:
    """
    Get the standard hardhat project paths.

    Args:
        project_root: Custom project directory (defaults to the current directory)

    Returns:
        Tuple of (artifacts_dir, ledger_path, deployments_dir)
    """
    if project_root is None:
        project_root = get_default_project_root()
    else:
        project_root = Path(project_root).absolute()

    artifacts_dir = project_root / "artifacts"
    deployments_dir = project_root / "deployments"
    ledger_path = deployments_dir / "ledger.json"

    return (artifacts_dir, ledger_path, deployments_dir)
