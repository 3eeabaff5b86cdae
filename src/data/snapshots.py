"""
Run-scoped output snapshots.

Outputs are written to a temporary file in the destination directory and
moved into place with ``os.replace``, so readers only ever see the previous
complete snapshot or the new complete one. Stages with several outputs stage
them in a scratch directory and commit the set together (``stage_outputs``).
"""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from contextlib import contextmanager
from typing import Any, Iterator, List, Union

import joblib
import pandas as pd

from src.exceptions import SnapshotWriteError

logger = logging.getLogger(__name__)


def _atomic_write(path: Union[str, Path], writer) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    os.close(fd)
    try:
        writer(tmp_name)
        os.replace(tmp_name, path)
    except Exception as exc:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise SnapshotWriteError(f"Could not write snapshot {path}: {exc}") from exc
    return path


def write_snapshot(df: pd.DataFrame, path: Union[str, Path]) -> Path:
    """Replace ``path`` with ``df`` as CSV."""
    written = _atomic_write(path, lambda tmp: df.to_csv(tmp, index=False))
    logger.info("Wrote %d rows to %s", len(df), written)
    return written


def save_artifact(obj: Any, path: Union[str, Path]) -> Path:
    """Replace ``path`` with a joblib dump of ``obj``."""
    return _atomic_write(path, lambda tmp: joblib.dump(obj, tmp))


def commit_staged(staging_dir: Union[str, Path], output_dir: Union[str, Path]) -> List[str]:
    """
    Move every file of ``staging_dir`` into ``output_dir`` as one unit.

    Files being replaced are first moved aside; if any move fails, the files
    already committed are removed and the previous ones restored.

    Returns:
        Names of the committed files

    Raises:
        SnapshotWriteError: if the set could not be committed
    """
    staging_dir, output_dir = Path(staging_dir), Path(output_dir)
    names = sorted(p.name for p in staging_dir.iterdir()
                   if p.is_file() and not p.name.startswith('.'))
    backup_dir = staging_dir / '.previous'
    backup_dir.mkdir()

    backups, committed = {}, []
    try:
        for name in names:
            target = output_dir / name
            if target.exists():
                os.replace(target, backup_dir / name)
                backups[name] = backup_dir / name
            os.replace(staging_dir / name, target)
            committed.append(name)
    except OSError as exc:
        for name in committed:
            (output_dir / name).unlink()
        for name, backup in backups.items():
            os.replace(backup, output_dir / name)
        raise SnapshotWriteError(
            f"Could not commit outputs {names} to {output_dir}: {exc}"
        ) from exc

    logger.info("Committed %d outputs to %s", len(committed), output_dir)
    return committed


@contextmanager
def stage_outputs(output_dir: Union[str, Path]) -> Iterator[Path]:
    """
    Scratch directory whose files are committed to ``output_dir`` together.

    Usage:
        with stage_outputs(out) as staging:
            write_snapshot(df, staging / "a.csv")
            save_artifact(model, staging / "model.pkl")

    If the block raises, nothing is committed and ``output_dir`` keeps its
    previous files.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    staging = Path(tempfile.mkdtemp(dir=output_dir, prefix='.staging.'))
    try:
        yield staging
        commit_staged(staging, output_dir)
    finally:
        shutil.rmtree(staging, ignore_errors=True)
