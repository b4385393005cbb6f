"""
Independent Fit Execution

Runs a list of independent fit tasks sequentially or in a process pool.
Results are stored by task position, so the output order never depends
on completion order. A task that raises only marks its own slot.
"""

import traceback
from concurrent.futures import ProcessPoolExecutor, as_completed
from typing import Any, Callable, Dict, List, Sequence

from tqdm import tqdm


def _guarded(func: Callable, task: Any) -> Dict[str, Any]:
    """Run one task and capture any exception as an error string."""
    try:
        return {'result': func(task), 'error': None, 'traceback': None}
    except Exception as e:
        return {
            'result': None,
            'error': f"{type(e).__name__}: {e}",
            'traceback': traceback.format_exc()
        }


def run_tasks(
    func: Callable,
    tasks: Sequence[Any],
    n_jobs: int = 1,
    verbose: bool = False,
    desc: str = "Fitting"
) -> List[Dict[str, Any]]:
    """
    Execute func on every task.

    Args:
        func: Picklable top-level function taking one task argument.
        tasks: Task arguments.
        n_jobs: Number of worker processes; 1 runs in-process.
        verbose: Show a tqdm progress bar.
        desc: Progress bar label.

    Returns:
        List aligned with tasks; each entry has 'result', 'error' and
        'traceback' (error fields are None on success).
    """
    outcomes: List[Dict[str, Any]] = [None] * len(tasks)

    if n_jobs > 1 and len(tasks) > 1:
        with ProcessPoolExecutor(max_workers=n_jobs) as executor:
            futures = {executor.submit(_guarded, func, task): i for i, task in enumerate(tasks)}
            iterator = as_completed(futures)
            if verbose:
                iterator = tqdm(iterator, total=len(tasks), desc=desc)

            for future in iterator:
                index = futures[future]
                try:
                    outcomes[index] = future.result()
                except Exception as e:
                    # the worker process itself died
                    outcomes[index] = {
                        'result': None,
                        'error': f"{type(e).__name__}: {e}",
                        'traceback': traceback.format_exc()
                    }
    else:
        iterator = tqdm(tasks, desc=desc) if verbose else tasks
        for i, task in enumerate(iterator):
            outcomes[i] = _guarded(func, task)

    return outcomes
