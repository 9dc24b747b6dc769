"""High-level Python API for reading and writing tags across many files."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from . import id3v1
from .core import AudioFile
from .exceptions import TagforgeError
from .mapping import extract_year, parse_track, resolve_genre
from .metadata import Picture, normalize_delta
from .utils import Config, get_file_hash, print_progress_safe

logger = logging.getLogger(__name__)

PathType = Union[str, Path]
ResultType = Dict[str, Any]
UpdatesType = Union[Mapping[PathType, Dict[str, Any]], Iterable[Tuple[PathType, Dict[str, Any]]]]


# ---------- Per-file work ----------
def read_file(path: PathType) -> ResultType:
    """Read one file into a result record; errors are captured, not raised."""
    result = {'path': str(path), 'passed': False}
    try:
        with AudioFile.managed(path) as audio:
            result['metadata'] = audio.read_metadata().to_dict()
        result['passed'] = True
    except (TagforgeError, OSError) as e:
        result['error'] = str(e)
    return result


def _expected(key: str, value: Any, file_type: str) -> Any:
    """What a read-back should return for a written value."""
    if value is None:
        return None
    if key == 'year':
        return extract_year(value)
    if key == 'track':
        return parse_track(value)
    if key == 'genre':
        if file_type == 'id3v1':
            return id3v1.genre_name(id3v1.genre_index(value))
        if file_type == 'id3v2':
            return resolve_genre(value)
    return value


def verify_written(path: PathType, delta: Dict[str, Any]) -> Dict[str, bool]:
    """Re-read path and check every field of a normalized delta landed."""
    with AudioFile.managed(path) as audio:
        reloaded = audio.read_metadata()

    results = {}
    for key, value in delta.items():
        if reloaded.file_type == 'id3v1' and key in ('lyrics', 'cover'):
            continue
        got = getattr(reloaded, key)
        expected = _expected(key, value, reloaded.file_type)
        if isinstance(expected, Picture):
            results[key] = got is not None and got.data == expected.data
        elif reloaded.file_type == 'id3v1' and isinstance(expected, str) and got is not None:
            # ID3v1 fields are truncated to their width
            results[key] = expected.startswith(got)
        else:
            results[key] = got == expected
    return results


def write_file(path: PathType, delta: Dict[str, Any], verify: bool = True) -> ResultType:
    """Apply a delta to one file and report the outcome as a result record."""
    result = {'path': str(path), 'passed': False, 'changed': False}
    try:
        changes = normalize_delta(delta)
        with AudioFile.managed(path) as audio:
            result['changed'] = audio.write_metadata(changes)

        if verify and result['changed']:
            checks = verify_written(path, changes)
            failed = sorted(k for k, ok in checks.items() if not ok)
            if failed:
                result['error'] = f"verification failed for: {', '.join(failed)}"
                return result

        if result['changed']:
            result['sha256'] = get_file_hash(Path(path))
        result['passed'] = True
    except (TagforgeError, OSError) as e:
        result['error'] = str(e)
    return result


# ---------- Dispatch ----------
def _run(jobs: List[Tuple[PathType, Callable[[], ResultType]]], max_workers: Optional[int],
         use_parallel: bool, verbose: Optional[bool]) -> List[ResultType]:
    if verbose is None:
        verbose = Config.DEFAULT_VERBOSE
    total = len(jobs)
    if total == 0:
        return []

    parallel = use_parallel and total >= Config.MIN_FILES_FOR_PARALLEL and max_workers != 1
    results = []

    if not parallel:
        logger.info(f"Processing {total} files sequentially")
        for i, (path, job) in enumerate(jobs, 1):
            result = job()
            results.append(result)
            if verbose:
                print_progress_safe(f"Progress: {i}/{total} ({i/total*100:.1f}%)", end='\r' if i < total else '\n')
        return results

    workers = max_workers or Config.MAX_WORKERS
    logger.info(f"Processing {total} files in parallel with {workers} workers")
    completed = 0
    with ThreadPoolExecutor(max_workers=workers) as executor:
        future_to_path = {executor.submit(job): path for path, job in jobs}
        for future in as_completed(future_to_path):
            path = future_to_path[future]
            completed += 1
            try:
                results.append(future.result())
            except Exception as e:
                logger.error(f"Unexpected error processing {path}: {e}")
                results.append({'path': str(path), 'passed': False, 'error': f'Unexpected error: {e}'})
            if verbose:
                print_progress_safe(
                    f"Progress: {completed}/{total} ({completed/total*100:.1f}%) - {Path(path).name}",
                    end='\r'
                )
    if verbose:
        print_progress_safe()

    order = {str(path): i for i, (path, _) in enumerate(jobs)}
    results.sort(key=lambda r: order.get(r['path'], total))
    return results


def read_batch(paths: Iterable[PathType], *, max_workers: Optional[int] = None,
               use_parallel: bool = True, verbose: Optional[bool] = None) -> List[ResultType]:
    """
    Read the tags of every path.

    Returns:
        One record per path, in input order: ``path``, ``passed`` and either
        ``metadata`` (exchange dictionary) or ``error``

    Examples:
        >>> results = read_batch(['a.mp3', 'b.flac'])
        >>> [r['metadata'].get('title') for r in results if r['passed']]
    """
    jobs = [(p, lambda p=p: read_file(p)) for p in paths]
    return _run(jobs, max_workers, use_parallel, verbose)


def write_batch(updates: UpdatesType, *, max_workers: Optional[int] = None, use_parallel: bool = True,
                verify: bool = True, verbose: Optional[bool] = None) -> List[ResultType]:
    """
    Apply a delta to each file.

    Args:
        updates: Mapping of path to delta, or (path, delta) pairs
        max_workers: Number of parallel workers (None = Config.MAX_WORKERS)
        use_parallel: If False, always process sequentially
        verify: Re-read each changed file and check the written fields
        verbose: Show progress (None = Config.DEFAULT_VERBOSE)

    Returns:
        One record per file: ``path``, ``passed``, ``changed``, ``sha256`` of a
        changed file and ``error`` on failure

    Examples:
        >>> write_batch({'a.mp3': {'album': 'Live'}, 'b.flac': {'album': 'Live'}})
    """
    pairs = list(updates.items()) if isinstance(updates, Mapping) else list(updates)
    jobs = [(p, lambda p=p, d=d: write_file(p, d, verify)) for p, d in pairs]
    return _run(jobs, max_workers, use_parallel, verbose)


def summarize(results: List[ResultType]) -> Dict[str, int]:
    """Counts of processed, successful and failed records."""
    successful = sum(1 for r in results if r.get('passed'))
    return {
        'processed': len(results),
        'successful': successful,
        'failed': len(results) - successful,
    }
