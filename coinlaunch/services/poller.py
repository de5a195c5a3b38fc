"""
Poller - scans the intent store on a fixed interval and dispatches each stage

    1. AWAITING_MINT                      -> claim, mint
    2. MINTING with a tx hash             -> check receipt
    3. MINTED                             -> claim, publish confirmation
    4. MINTING without a tx, lease expired  -> re-claim, mint again
    5. COMMENTING, lease expired          -> adopt an existing reply or publish again
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set

from coinlaunch.database import IntentDatabase
from coinlaunch.errors import (
    ConfigurationError,
    StaleStateError,
    TerminalError,
    TransientError,
    redact,
)
from coinlaunch.models import Intent, IntentState

from .token_minter import TokenMinter
from .twitter_commenter import TwitterCommenter

STAGES = ('mint', 'confirm', 'comment', 'remint', 'recomment')
STATUS_EVERY_SECONDS = 300


class IntentPoller:
    """Drives intents through the lifecycle; one instance per process"""

    def __init__(self, store: IntentDatabase, minter: TokenMinter, commenter: TwitterCommenter,
                 interval: float = 5.0, batch_size: int = 5, claim_lease_seconds: int = 600,
                 dispatch_timeout: float = 540.0, secrets: Iterable[str] = ()):
        self.store = store
        self.minter = minter
        self.commenter = commenter
        self.interval = interval
        self.batch_size = batch_size
        self.claim_lease = timedelta(seconds=claim_lease_seconds)
        self.dispatch_timeout = dispatch_timeout
        self.secrets = list(secrets)
        self.logger = logging.getLogger('coinlaunch')

        self._semaphores: Dict[str, asyncio.Semaphore] = {
            stage: asyncio.Semaphore(batch_size) for stage in STAGES
        }
        self._in_flight: Set[int] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._stop_event = asyncio.Event()
        self._running = False
        self._skipped_logged: Set[str] = set()

    @property
    def in_flight(self) -> Set[int]:
        return set(self._in_flight)

    # -- dispatch ------------------------------------------------------------

    def _dispatch(self, stage: str, intent: Intent, handler: Callable[[Intent], Awaitable]) -> Optional[asyncio.Task]:
        if intent.id in self._in_flight:
            return None
        self._in_flight.add(intent.id)
        task = asyncio.create_task(self._run(stage, intent, handler))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, stage: str, intent: Intent, handler: Callable[[Intent], Awaitable]):
        label = f"[{stage}] intent {intent.id} (${intent.symbol})"
        try:
            async with self._semaphores[stage]:
                await asyncio.wait_for(handler(intent), timeout=self.dispatch_timeout)
        except StaleStateError as e:
            self.logger.debug(f"{label} claimed elsewhere: {e}")
        except TerminalError as e:
            self._fail(intent, e)
        except TransientError as e:
            self.logger.warning(f"{label} will retry: {redact(str(e), self.secrets)}")
        except asyncio.TimeoutError:
            self.logger.warning(f"{label} timed out after {self.dispatch_timeout:.0f}s, left for lease recovery")
        except ConfigurationError as e:
            self.logger.error(f"{label} {e}")
        except Exception as e:
            self.logger.error(f"{label} unexpected error: {redact(str(e), self.secrets)}", exc_info=True)
        finally:
            self._in_flight.discard(intent.id)

    def _fail(self, intent: Intent, error: Exception):
        reason = redact(str(error) or type(error).__name__, self.secrets)
        try:
            self.store.record_failure(intent.id, reason)
        except Exception as e:
            self.logger.error(f"Could not record failure for intent {intent.id}: {e}", exc_info=True)

    # -- stage handlers --------------------------------------------------------

    async def _mint(self, intent: Intent):
        await self.minter.mint(intent)

    async def _confirm(self, intent: Intent):
        result = await self.minter.check_confirmation(intent)
        if result is None:
            self.logger.debug(f"Intent {intent.id} tx {intent.mint_tx_hash} still pending")

    async def _comment(self, intent: Intent):
        await self.commenter.publish(intent)

    async def _remint(self, intent: Intent):
        claimed = self.store.reclaim(intent.id, IntentState.MINTING, self._lease_cutoff())
        await self.minter.mint(claimed)

    async def _recomment(self, intent: Intent):
        claimed = self.store.reclaim(intent.id, IntentState.COMMENTING, self._lease_cutoff())
        if await self.commenter.reconcile(claimed) is None:
            await self.commenter.publish(claimed)

    def _lease_cutoff(self) -> datetime:
        return datetime.now() - self.claim_lease

    def _stage_ready(self, stage: str, component) -> bool:
        if component.is_configured:
            self._skipped_logged.discard(stage)
            return True
        if stage not in self._skipped_logged:
            self.logger.warning(f"⏸️ Skipping {stage} stage: component not configured")
            self._skipped_logged.add(stage)
        return False

    # -- loop ------------------------------------------------------------------

    async def tick(self) -> List[asyncio.Task]:
        """Scan every stage once and dispatch what is due"""
        tasks: List[Optional[asyncio.Task]] = []
        n = self.batch_size

        if self._stage_ready('mint', self.minter):
            for intent in self.store.find_by_state(IntentState.AWAITING_MINT, limit=n):
                tasks.append(self._dispatch('mint', intent, self._mint))
            for intent in self.store.find_by_state(IntentState.MINTING, limit=n, with_tx_ref=True):
                tasks.append(self._dispatch('confirm', intent, self._confirm))

        if self._stage_ready('comment', self.commenter):
            for intent in self.store.find_by_state(IntentState.MINTED, limit=n):
                tasks.append(self._dispatch('comment', intent, self._comment))

        if self.minter.is_configured:
            for intent in self.store.find_by_state(IntentState.MINTING, limit=n, with_tx_ref=False,
                                                   claimed_before=self._lease_cutoff()):
                tasks.append(self._dispatch('remint', intent, self._remint))

        if self.commenter.is_configured:
            for intent in self.store.find_by_state(IntentState.COMMENTING, limit=n,
                                                   claimed_before=self._lease_cutoff()):
                tasks.append(self._dispatch('recomment', intent, self._recomment))

        return [task for task in tasks if task is not None]

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight dispatches; True if they all finished"""
        if not self._tasks:
            return True
        done, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        return not pending

    def log_status(self):
        counts = self.store.count_by_state()
        summary = ', '.join(f"{state}: {count}" for state, count in counts.items() if count)
        self.logger.info(f"📊 Intents - {summary or 'none'} | in flight: {len(self._in_flight)}")

    async def run_forever(self):
        self._running = True
        self._stop_event.clear()
        self.logger.info(f"👷 Poller started (every {self.interval:.0f}s, batch {self.batch_size})")
        last_status = 0.0

        while self._running:
            try:
                await self.tick()
            except Exception as e:
                self.logger.error(f"Poll tick failed: {e}", exc_info=True)

            if time.time() - last_status >= STATUS_EVERY_SECONDS:
                last_status = time.time()
                try:
                    self.log_status()
                except Exception as e:
                    self.logger.error(f"Status query failed: {e}")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        self.logger.info("Poller stopped")

    def stop(self):
        self._running = False
        self._stop_event.set()

    async def shutdown(self, grace_seconds: float = 30.0):
        """Stop ticking and give in-flight work grace_seconds to finish"""
        self.stop()
        if await self.drain(timeout=grace_seconds):
            return
        self.logger.warning(
            f"{len(self._tasks)} dispatch(es) still running after {grace_seconds:.0f}s - "
            "cancelling, leases will recover them"
        )
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
