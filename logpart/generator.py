"""Synthetic access-log generator for benchmarks and demos.

Writes files of comma-delimited lines
    192.168.0.1,2025-02-25 13:00:15,/index,200,Firefox/98.0
to a local directory or an S3 prefix, a configurable share of them malformed.
"""
import concurrent.futures
import datetime
import logging
import random
import uuid
from typing import Callable, Dict, Iterator, List, Tuple

from .storage import Storage

logger = logging.getLogger(__name__)

# prefix : (files, lines per file)
WORKLOADS: Dict[str, Tuple[int, int]] = {
    "tiny": (4, 1_000),
    "1m": (100, 10_000),
    "10m": (1_000, 10_000),
    "100m": (10_000, 10_000),
}

STATUSES = [200, 200, 200, 200, 201, 204, 301, 304, 400, 401, 403, 404, 404, 500, 502, 503]
URLS = ["/index", "/contact", "/blog", "/about", "/login", "/api/v1/items", "/search", "/cart"]
USER_AGENTS = [
    "Firefox/98.0",
    "Mozilla/5.0 (X11; Linux x86_64) Chrome/120.0",
    "Safari/17.1",
    "curl/8.4.0",
    "python-requests/2.31",
]

_MALFORMED_SHAPES = (
    lambda fields: ",".join(fields[:3]),
    lambda fields: ",".join(fields[:3] + ["abc"] + fields[4:]),
    lambda fields: "",
)


def generate_lines(seed: int = 42, malformed_rate: float = 0.0) -> Iterator[str]:
    rng = random.Random(seed)
    clients = [f"10.0.{rng.randint(0, 255)}.{rng.randint(1, 254)}" for _ in range(500)]
    now = datetime.datetime(2025, 2, 25, 13, 0, 0)
    while True:
        now += datetime.timedelta(seconds=rng.randint(0, 3))
        line = ",".join([
            rng.choice(clients),
            now.strftime("%Y-%m-%d %H:%M:%S"),
            rng.choice(URLS),
            str(rng.choice(STATUSES)),
            rng.choice(USER_AGENTS),
        ])
        if malformed_rate and rng.random() < malformed_rate:
            line = rng.choice(_MALFORMED_SHAPES)(line.split(","))
        yield line


class StorageWriter:
    """Writes each batch of lines as one new object under prefix."""

    def __init__(self, storage: Storage, prefix: str):
        self._storage = storage
        self._prefix = prefix.strip("/")

    def __call__(self, lines: List[str]) -> str:
        name = f"{self._prefix}/{uuid.uuid4()}.log" if self._prefix else f"{uuid.uuid4()}.log"
        logger.debug("writing %s", name)
        self._storage.put(name, ("\n".join(lines) + "\n").encode("utf-8"))
        return name


def generate(
    num_files: int,
    lines_per_file: int,
    writer: Callable[[List[str]], str],
    seed: int = 42,
    malformed_rate: float = 0.0,
    max_workers: int = 20,
) -> List[str]:
    line_generator = generate_lines(seed=seed, malformed_rate=malformed_rate)
    with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = []
        for _ in range(num_files):
            batch = [next(line_generator) for _ in range(lines_per_file)]
            futures.append(executor.submit(writer, batch))
        concurrent.futures.wait(futures)
    names = [future.result() for future in futures]
    logger.info("generated %d file(s) of %d line(s)", num_files, lines_per_file)
    return names
