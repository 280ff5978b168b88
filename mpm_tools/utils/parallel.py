"""
# Ordered Parallel Map

Thread-pool evaluation of independent items with a progress bar, returning
results in input order.

## Functions

- `ordered_map`: Apply a function to every item, serially or on a thread pool

## Example Usage

```python
from mpm_tools.utils.parallel import ordered_map
from mpm_tools.errors import NonErgodicMatrix

outcomes = ordered_map(model.run, combinations, workers=8, catch=(NonErgodicMatrix,))
for value, error in outcomes:
    ...
```
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Iterable
import logging

from tqdm import tqdm


Outcome = tuple[Any, BaseException | None]
"""Type alias for (value, error); value is None whenever error is set."""


def ordered_map(
    func: Callable[[Any], Any],
    items: Iterable[Any],
    workers: int = 4,
    parallel: bool = True,
    catch: tuple[type[BaseException], ...] = (),
    desc: str = None,
    progress: bool = True,
) -> list[Outcome]:
    """
    Apply `func` to every item and collect outcomes by input index.

    Exceptions listed in `catch` are recorded against their item and the
    remaining items still run; anything else propagates.

    Args:
        func (Callable): Function of one item.
        items (Iterable): Items to evaluate. Materialised into a list.
        workers (int, optional): Thread pool size. Defaults to 4.
        parallel (bool, optional): Use a thread pool. Defaults to True.
        catch (tuple[type], optional): Exceptions recorded per item.
        desc (str, optional): Progress bar label.
        progress (bool, optional): Show a tqdm progress bar. Defaults to True.

    Returns:
        list[tuple]: (value, error) per item, in input order.
    """
    items = list(items)
    N = len(items)
    res: list[Outcome] = [(None, None) for _ in range(N)]

    with tqdm(total=N, desc=desc, disable=not progress) as pbar:
        if not parallel or workers <= 1:
            for idx, item in enumerate(items):
                try:
                    res[idx] = (func(item), None)
                except catch as e:
                    logging.warning(f"Evaluation for index {idx} failed: {e}")
                    res[idx] = (None, e)
                pbar.update(1)
            return res

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(func, items[i]): i for i in range(N)
            }

            for future in as_completed(futures):
                pbar.update(1)
                idx = futures[future]
                try:
                    res[idx] = (future.result(), None)
                except catch as e:
                    logging.warning(f"Evaluation for index {idx} failed: {e}")
                    res[idx] = (None, e)

    return res
