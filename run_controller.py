# ============================================================================
#  run_controller.py - Batch Run Orchestration
#  Version: 1.0.0
# ============================================================================
import logging
import time
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from errors import AuthExpiredError, FatalSyncError, SyncError
from oauth import CredentialContext

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RunState(str, Enum):
    INIT = "INIT"
    ENUMERATING = "ENUMERATING"
    PROCESSING = "PROCESSING"
    ABORTED = "ABORTED"
    COMPLETED = "COMPLETED"


class ItemOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    ALREADY_SATISFIED = "already_satisfied"
    UNAVAILABLE = "unavailable"
    FAILED = "failed"


class Pacer:
    """Fixed delay between consecutive calls. The first call never waits."""

    def __init__(self, interval: float):
        self.interval = interval
        self._started = False

    def __call__(self):
        if self._started and self.interval > 0:
            time.sleep(self.interval)
        self._started = True


class SyncRun:
    """Counters and state of one batch run. Only the controller writes to it."""

    def __init__(self, operation: str, dry_run: bool = False, mutation_delay: float = 0.3):
        self.operation = operation
        self.dry_run = dry_run
        self.pace_mutation = Pacer(mutation_delay)
        self.state = RunState.INIT
        self.counters: Dict[str, int] = {outcome.value: 0 for outcome in ItemOutcome}
        self.errors: List[Tuple[str, str]] = []
        self.abort_reason: Optional[str] = None
        self.instruction: Optional[str] = None
        self._finalized = False

    @property
    def processed(self) -> int:
        return sum(self.counters.values())

    @property
    def aborted(self) -> bool:
        return self.state == RunState.ABORTED

    def record(self, outcome: ItemOutcome, item: str, error: Optional[str] = None):
        self.counters[outcome.value] += 1
        if error:
            self.errors.append((item, error))

    def abort(self, reason: str, instruction: Optional[str] = None):
        self.state = RunState.ABORTED
        self.abort_reason = reason
        self.instruction = instruction

    def summary(self) -> Dict[str, int]:
        return {"processed": self.processed, **self.counters}

    def finalize(self):
        if self._finalized:
            return
        self._finalized = True
        if self.state != RunState.ABORTED:
            self.state = RunState.COMPLETED

        logger.info("=" * 80)
        logger.info(f"📊 Summary ({self.operation}{', DRY RUN' if self.dry_run else ''}):")
        logger.info(f"├─ Processed: {self.processed}")
        logger.info(f"├─ Succeeded: {self.counters['succeeded']}")
        logger.info(f"├─ Already satisfied: {self.counters['already_satisfied']}")
        logger.info(f"├─ Unavailable: {self.counters['unavailable']}")
        logger.info(f"└─ Failed: {self.counters['failed']}")
        for item, error in self.errors:
            logger.info(f"   ❌ {item}: {error}")
        if self.aborted:
            logger.error(f"⚠️  Run aborted: {self.abort_reason}")
            if self.instruction:
                logger.error(f"   {self.instruction}")
        elif self.dry_run:
            logger.info("🏃 Dry run mode - no changes were made")
        logger.info("=" * 80)


class RunController:
    """Drives one run: enumerate, process each item, classify errors, summarize.

    Per-item SyncErrors are recorded and the run moves on. A FatalSyncError
    stops the run at the item boundary. An AuthExpiredError gets exactly one
    credential refresh and retry per run before it is treated as fatal.
    """

    def __init__(
        self,
        operation: str,
        dry_run: bool = False,
        mutation_delay: float = 0.3,
        credentials: Optional[CredentialContext] = None,
    ):
        self.run = SyncRun(operation, dry_run=dry_run, mutation_delay=mutation_delay)
        self.credentials = credentials
        self._auth_retry_used = False

    def _process(self, process: Callable[[T, SyncRun], ItemOutcome], item: T) -> ItemOutcome:
        try:
            return process(item, self.run)
        except AuthExpiredError:
            if self.credentials is None or self._auth_retry_used:
                raise
            self._auth_retry_used = True
            logger.warning("Supplier credential rejected, refreshing once and retrying item")
            self.credentials.refresh()
            return process(item, self.run)

    def execute(
        self,
        enumerate_items: Callable[[], Iterable[T]],
        process: Callable[[T, SyncRun], ItemOutcome],
        label: Callable[[T], str] = str,
    ) -> SyncRun:
        run = self.run
        logger.info(f"Starting {run.operation} ({'DRY RUN' if run.dry_run else 'LIVE'})")
        try:
            run.state = RunState.ENUMERATING
            try:
                items = list(enumerate_items())
            except FatalSyncError as e:
                run.errors.append(("<run>", str(e)))
                run.abort(str(e), e.instruction)
                return run
            except SyncError as e:
                run.errors.append(("<run>", str(e)))
                run.abort(f"Enumeration failed: {e}")
                return run

            logger.info(f"Processing {len(items)} item(s)")
            run.state = RunState.PROCESSING
            for index, item in enumerate(items, 1):
                name = label(item)
                logger.info(f"[{index}/{len(items)}] {name}")
                try:
                    outcome = self._process(process, item)
                except FatalSyncError as e:
                    run.record(ItemOutcome.FAILED, name, str(e))
                    run.abort(str(e), e.instruction)
                    break
                except KeyboardInterrupt:
                    run.abort(f"Interrupted at item {index}/{len(items)}")
                    break
                except SyncError as e:
                    logger.error(f"   ❌ {name}: {e}")
                    run.record(ItemOutcome.FAILED, name, str(e))
                    continue
                run.record(outcome, name)
        finally:
            run.finalize()
        return run
# ============================================================================
# End of run_controller.py - Version: 1.0.0
# ============================================================================
