"""
GeoClassify — Shared Base Tool
===============================
Abstract base class for every GeoClassify command-line tool.

Design Pattern:
    Template Method.  :meth:`GeoTool.run` fixes the order
    validate → process → report; a concrete tool only supplies
    :meth:`validate_inputs` and :meth:`process`.

Stages:
    A tool splits ``process`` into named steps with :meth:`GeoTool.stage`.
    Each stage is timed into :attr:`GeoTool.timings`.  A
    :class:`~shared.python.exceptions.GeoClassifyError` escaping a stage
    carries that stage's name, so ``str(exc)`` reads
    ``"[composite] Cannot composite an empty scene collection ..."``.

Usage::

    from shared.python.base_tool import GeoTool

    class MyTool(GeoTool):
        def validate_inputs(self) -> None:
            Validators.assert_directory_exists(self.input_path)

        def process(self) -> None:
            with self.stage("composite"):
                ...
            with self.stage("classify"):
                ...
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from shared.python.exceptions import GeoClassifyError

# Root of the logger tree.  Tool modules log to
# "geoclassify.<tool>.<module>" and inherit this handler.
logger = logging.getLogger("geoclassify")

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s — %(message)s"
LOG_DATEFMT = "%H:%M:%S"


class GeoTool(ABC):
    """Base class for GeoClassify tools.

    Attributes:
        input_path: Primary input (file or directory).
        output_path: Output file or directory.
        verbose: Log at DEBUG instead of INFO.
        timings: Seconds spent in each completed stage, in run order.
    """

    def __init__(
        self,
        input_path: Path,
        output_path: Path,
        *,
        verbose: bool = False,
    ) -> None:
        self.input_path: Path = Path(input_path)
        self.output_path: Path = Path(output_path)
        self.verbose: bool = verbose
        self.timings: dict[str, float] = {}

        self._configure_logging()

    # ------------------------------------------------------------------
    # Abstract interface
    # ------------------------------------------------------------------

    @abstractmethod
    def validate_inputs(self) -> None:
        """Check every precondition before any data is read.

        Raise an :class:`~shared.python.exceptions.InputValidationError`
        or :class:`~shared.python.exceptions.ConfigurationError` on the
        first failure.
        """

    @abstractmethod
    def process(self) -> None:
        """Do the work.  Called by :meth:`run` after validation."""

    # ------------------------------------------------------------------
    # Template method
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Validate, process and report.

        Errors propagate unchanged (apart from the stage tag) so the CLI
        can print them and choose the exit code.
        """
        logger.info("Starting %s", self.__class__.__name__)
        self.timings.clear()
        start = time.perf_counter()

        with self.stage("validate"):
            self.validate_inputs()
        self.process()

        self._report_success(time.perf_counter() - start)

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        """Time one named step and tag errors escaping it with *name*.

        Nested stages keep the innermost tag.
        """
        logger.info("Stage '%s' ...", name)
        start = time.perf_counter()
        try:
            yield
        except GeoClassifyError as exc:
            if exc.stage is None:
                exc.stage = name
            logger.error("Stage '%s' failed: %s", exc.stage, exc.message)
            raise
        elapsed = time.perf_counter() - start
        self.timings[name] = self.timings.get(name, 0.0) + elapsed
        logger.debug("Stage '%s' finished in %.2fs", name, elapsed)

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def _report_success(self, elapsed: float) -> None:
        logger.info(
            "%s completed in %.2fs → %s",
            self.__class__.__name__,
            elapsed,
            self.output_path,
        )

    def _configure_logging(self) -> None:
        """Attach one console handler to the ``geoclassify`` logger.

        Repeated tool instances reuse the existing handler; only the
        level follows ``self.verbose``.
        """
        if not logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
            logger.addHandler(handler)
        logger.setLevel(logging.DEBUG if self.verbose else logging.INFO)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"input_path={self.input_path!r}, "
            f"output_path={self.output_path!r})"
        )
