"""
Fit Logging Utilities

Writes one JSON record per grid point of a model-selection run to disk
(JSON Lines), so long tuning runs can be inspected afterwards.

Example usage:
    >>> logger = FitLogger(base_dir='fits')
    >>> logger.log_run({'method': 'ebic', 'rho': 0.1, 'criterion': 812.4})
    >>> records = logger.load_results('ebic')
"""

import json
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np


class NumpyEncoder(json.JSONEncoder):
    """
    JSON encoder that handles numpy types.

    Arrays become lists; numpy scalars become Python scalars.
    Non-finite floats are written as null.
    """

    def default(self, obj):
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.bool_):
            return bool(obj)
        return super().default(obj)


def _nan_to_none(value: Any) -> Any:
    if isinstance(value, float) and not np.isfinite(value):
        return None
    if isinstance(value, dict):
        return {k: _nan_to_none(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_nan_to_none(v) for v in value]
    return value


class FitLogger:
    """
    Logger for per-grid-point selection records.

    Records are grouped by selection method, one file per method:

        fits/
        ├── ebic.jsonl
        └── kfold.jsonl

    Attributes:
        base_dir: Directory holding the JSONL files.
    """

    def __init__(self, base_dir: str = 'fits'):
        """
        Initialize the fit logger.

        Args:
            base_dir: Directory for storing records; created if missing.
        """
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _results_file(self, method: str) -> Path:
        safe_name = str(method).replace(' ', '_').replace('/', '_')
        return self.base_dir / f"{safe_name}.jsonl"

    def log_run(self, record: Dict[str, Any], run_id: Optional[str] = None) -> str:
        """
        Append one record.

        Adds 'run_id' and 'timestamp' if not present.

        Args:
            record: Dictionary with at least a 'method' key.
            run_id: Identifier shared by all records of one selection run.

        Returns:
            The run_id of this record.

        Raises:
            ValueError: If 'method' is missing.
        """
        if 'method' not in record:
            raise ValueError("record must contain 'method'")

        result = dict(record)
        result.setdefault('run_id', run_id or str(uuid.uuid4())[:8])
        result.setdefault('timestamp', datetime.now().isoformat())

        encoded = json.loads(json.dumps(result, cls=NumpyEncoder))
        with open(self._results_file(result['method']), 'a') as f:
            json.dump(_nan_to_none(encoded), f)
            f.write('\n')

        return result['run_id']

    def load_results(self, method: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Load records for one method, or for all methods if None.

        Malformed lines are reported with a ValueError naming the file.
        """
        if method is not None:
            files = [self._results_file(method)]
        else:
            files = sorted(self.base_dir.glob('*.jsonl'))

        results = []
        for file_path in files:
            if not file_path.exists():
                continue
            with open(file_path, 'r') as f:
                for line_no, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        results.append(json.loads(line))
                    except json.JSONDecodeError as e:
                        raise ValueError(f"Malformed record in {file_path}:{line_no}: {e}") from e
        return results

    def to_dataframe(self, method: Optional[str] = None):
        """
        Load records as a pandas DataFrame, one row per grid point.

        List-valued fields (such as per-fold NLLs) are kept as lists.
        """
        import pandas as pd

        return pd.DataFrame(self.load_results(method))
