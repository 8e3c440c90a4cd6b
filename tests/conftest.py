"""Shared pytest fixtures and utilities for Bar POS tests."""

from __future__ import annotations

import argparse
import logging
import sys
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Callable, Iterator, List, TypeVar

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from bar_pos import constants, core_logic, data_manager  # noqa: E402
from bar_pos.document_store import DocumentStore  # noqa: E402
from bar_pos.setup_excel import build_workbook, create_master_workbook  # noqa: E402

T = TypeVar("T")

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
BASE_MOMENT = datetime(2024, 5, 10, 18, 0, tzinfo=UTC)
# Retry budget for tests that race threads on one store.
RACE_MAX_ATTEMPTS = 500
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "StoreName = {store_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Transactions]\n"
    "MaxAttempts = {max_attempts}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    store_name: str


def run_in_threads(count: int, target: Callable[[int], T]) -> List[T]:
    """Run ``target(index)`` on ``count`` threads released together.

    Results come back in index order; an exception raised by any thread is
    re-raised here.
    """

    barrier = threading.Barrier(count)

    def _start(index: int) -> T:
        barrier.wait()
        return target(index)

    with ThreadPoolExecutor(max_workers=count) as pool:
        futures = [pool.submit(_start, index) for index in range(count)]
        return [future.result() for future in futures]


class TickingClock:
    """Deterministic clock that moves one second forward on every reading."""

    def __init__(self, start: datetime = BASE_MOMENT, step: timedelta = timedelta(seconds=1)) -> None:
        self.current = start
        self.step = step
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            moment = self.current
            self.current = self.current + self.step
            return moment

    def jump_to(self, moment: datetime) -> None:
        with self._lock:
            self.current = moment


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture(autouse=True)
def _reset_package_logger() -> Iterator[None]:
    """Detach log files opened by a test and restore the default level."""

    yield
    logger = logging.getLogger("bar_pos")
    logger.setLevel(logging.INFO)
    for handler in list(logger.handlers):
        if isinstance(handler, RotatingFileHandler):
            logger.removeHandler(handler)
            handler.close()


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized master workbook in a temp folder."""

    def _create_workbook(*, subdir: str | None = None, filename: str = "bar_pos_data.xlsx") -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh master workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        store_name: str = "Test Bar",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        max_attempts: int = constants.DEFAULT_MAX_TRANSACTION_ATTEMPTS,
    ) -> ConfigBundle:
        bundle_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_name
        workbook_path = workbook_factory(subdir=bundle_name)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                store_name=store_name,
                schema_version=schema_version,
                max_attempts=max_attempts,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            store_name=store_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load a disk-backed runtime context through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# In-memory fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "bar_pos_data.xlsx",
        store_name="Test Bar",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
    )


@pytest.fixture
def store(clock: TickingClock) -> DocumentStore:
    """Document store over a fresh in-memory workbook."""

    return DocumentStore(build_workbook(), clock=clock)


@pytest.fixture
def context(settings: data_manager.ConfigSettings, store: DocumentStore) -> core_logic.RuntimeContext:
    return core_logic.RuntimeContext(settings=settings, store=store)


@pytest.fixture
def product_factory(context: core_logic.RuntimeContext) -> Callable[..., data_manager.ProductRow]:
    """Register catalog products with sensible defaults."""

    def _create(
        title: str = "Beer",
        *,
        stock: int = 10,
        sell_price: str = "10.00",
        buy_price: str = "4.00",
    ) -> data_manager.ProductRow:
        return core_logic.add_product(
            context,
            title=title,
            sell_price=Decimal(sell_price),
            buy_price=Decimal(buy_price),
            stock=stock,
        )

    return _create


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="bar-pos", description="Bar POS")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def racing_context(context: core_logic.RuntimeContext) -> core_logic.RuntimeContext:
    """Same store as ``context`` with a retry budget sized for thread races."""

    return core_logic.RuntimeContext(
        settings=replace(context.settings, max_transaction_attempts=RACE_MAX_ATTEMPTS),
        store=context.store,
    )
