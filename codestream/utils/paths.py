"""
Path helpers shared by the plan parsers, the emergency extractor and the
continuation controller
"""

from typing import Iterable, List, Optional

from codestream.core.config import settings


def normalize_source_path(path: str, source_root: Optional[str] = None) -> str:
    """Place a relative path under the source root unless it already is"""
    root = (source_root if source_root is not None else settings.SOURCE_ROOT).strip('/')
    path = path.strip()
    while path.startswith('./'):
        path = path[2:]
    path = path.lstrip('/')
    if not root or path.startswith(root + '/'):
        return path
    return f"{root}/{path}"


def path_variants(path: str, source_root: Optional[str] = None) -> List[str]:
    """The path itself plus its form with and without the source root prefix"""
    root = (source_root if source_root is not None else settings.SOURCE_ROOT).strip('/')
    variants = [path]
    prefix = root + '/'
    if path.startswith(prefix):
        variants.append(path[len(prefix):])
    else:
        variants.append(prefix + path)
    return variants


def unique_ordered(paths: Iterable[str]) -> List[str]:
    """Deduplicate while keeping first-seen order"""
    seen = set()
    result = []
    for path in paths:
        if path and path not in seen:
            seen.add(path)
            result.append(path)
    return result
