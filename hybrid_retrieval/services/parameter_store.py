"""Persistence of learned parameters."""

import json
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Union, runtime_checkable

from ..config.settings import get_storage_config
from ..utils.logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class ParameterStore(Protocol):
    """Load/save interface for the learned-parameter record."""

    def load(self) -> Optional[Dict[str, Any]]:
        ...

    def save(self, record: Dict[str, Any]) -> bool:
        ...


class JsonParameterStore:
    """Learned-parameter record kept in a single JSON file.

    Saves merge into the record already on disk, so keys written by other
    components survive, and replace the file atomically.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        path = path or get_storage_config().get("parameters_path", "data/learned_parameters.json")
        self.path = Path(path)
        self._lock = threading.Lock()

    def load(self) -> Optional[Dict[str, Any]]:
        """Read the stored record, or None when nothing valid is stored."""
        if not self.path.exists():
            logger.debug(f"No stored parameters at {self.path}")
            return None

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load parameters from {self.path}: {e}")
            return None

        if not isinstance(data, dict):
            logger.error(f"Ignoring parameter file {self.path}: expected a JSON object")
            return None
        return data

    def save(self, record: Dict[str, Any]) -> bool:
        """Merge ``record`` into the stored one and write it atomically.

        Args:
            record: Flat weights/thresholds and nested pattern maps

        Returns:
            True when the file was written
        """
        with self._lock:
            merged = _merge(self.load() or {}, record)
            merged["saved_at"] = datetime.now().isoformat()
            tmp_path = None

            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with tempfile.NamedTemporaryFile(
                    mode="w", encoding="utf-8", dir=self.path.parent,
                    prefix=f".{self.path.name}.", suffix=".tmp", delete=False
                ) as tmp:
                    tmp_path = tmp.name
                    json.dump(merged, tmp, ensure_ascii=False, indent=2, default=str)
                os.replace(tmp_path, self.path)
            except (OSError, TypeError, ValueError) as e:
                logger.error(f"Failed to save parameters to {self.path}: {e}")
                if tmp_path and os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                return False

        logger.info(f"Saved learned parameters to {self.path}")
        return True


def _merge(base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    """Recursive dict merge; values in ``update`` win, unrelated keys in ``base`` survive."""
    merged = dict(base)
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged
