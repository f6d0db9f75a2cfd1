"""
Saving and loading trained workflows with joblib.
"""

import logging
import os
from datetime import datetime
from typing import List

import joblib

from .workflow import Workflow

logger = logging.getLogger(__name__)


class ModelRepository:
    def __init__(self, base_path="models"):
        self.base_path = base_path
        os.makedirs(self.base_path, exist_ok=True)

    def get_model_path(self, name: str) -> str:
        if not name or os.sep in name or name.startswith("."):
            raise ValueError(f"Invalid model name: {name!r}")
        return os.path.join(self.base_path, f"{name}.pkl")

    def save(self, name: str, workflow: Workflow) -> str:
        if not isinstance(workflow, Workflow) or not workflow.is_trained:
            raise ValueError("Only trained workflows can be saved; call fit() first.")
        path = self.get_model_path(name)
        package = {"workflow": workflow, "saved_at": datetime.now().isoformat()}
        joblib.dump(package, path)
        logger.info(f"Saved workflow '{name}' to {path}")
        return path

    def load(self, name: str) -> Workflow:
        path = self.get_model_path(name)
        if not os.path.exists(path):
            raise FileNotFoundError(f"No saved workflow named '{name}' in {self.base_path}")
        package = joblib.load(path)
        logger.info(f"Loaded workflow '{name}' (saved {package['saved_at']})")
        return package["workflow"]

    def list(self) -> List[str]:
        return sorted(f[:-4] for f in os.listdir(self.base_path) if f.endswith(".pkl"))
