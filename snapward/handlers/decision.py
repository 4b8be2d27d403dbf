"""
Snapward Protection Decision Handler

Save-time state machine. For each save event:

    IDLE -> EVALUATING -> ALLOWED | ALLOWED_WITH_SNAPSHOT | BLOCKED

1. Unprotected path: allowed, nothing else happens.
2. Active cooldown for (path, level): allowed without a new snapshot,
   still audited.
3. Temporary allowance: consumed, snapshot attempted, audited as a user
   override and put into the override cooldown.
4. Otherwise by level:
   - Block: needs confirmation. Confirmed saves are snapshotted before
     they proceed. Declined saves, or saves whose snapshot fails, are
     cancelled and the document is reverted to its pre-save content.
   - Warn: snapshot, then a dismissible "Restore Snapshot" notification.
     Failures are logged and the save proceeds.
   - Watch: like Warn without the notification.

The snapshot always holds the pre-save content, captured from disk (or
from the buffer for files that do not exist yet) when the save is
registered, before the host writes anything.
"""

from __future__ import annotations

import asyncio
import dataclasses
import functools
import inspect
import logging
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Tuple, Union

from snapward.errors import BlobIntegrityError, SaveCancelled, SnapshotCreationError
from snapward.handlers.allowances import TemporaryAllowances
from snapward.policy.engine import PolicyEngine
from snapward.policy.rules import ProtectionLevel, ProtectionPolicy, ProtectionRule
from snapward.snapshot.dedup import SnapshotDeduplicator
from snapward.snapshot.models import FileState, SnapshotState
from snapward.snapshot.naming import SnapshotNamingStrategy, describe_change, relative_path
from snapward.storage.cooldown_store import AuditAction, CooldownAction, CooldownStore
from snapward.storage.snapshot_store import SnapshotStore
from snapward.timing import TimingRecorder, with_timing

logger = logging.getLogger(__name__)


# =========================================================================
# Collaborator interfaces
# =========================================================================


class DocumentAccessor(Protocol):
    """Live editor buffer for the file being saved."""

    path: str

    def read_current(self) -> bytes:
        """Current buffer content (what is about to be written)."""
        ...

    def replace_content(self, content: bytes) -> None:
        """Replace the whole buffer."""
        ...


class BufferDocument:
    """In-memory DocumentAccessor, for hosts without a real editor buffer."""

    def __init__(self, path: Union[str, Path], content: Union[bytes, str] = b""):
        self.path = str(path)
        self.content = content.encode("utf-8") if isinstance(content, str) else content
        self.replacements = 0

    def read_current(self) -> bytes:
        return self.content

    def replace_content(self, content: bytes) -> None:
        self.content = content
        self.replacements += 1


@dataclass(frozen=True)
class ConfirmationRequest:
    """Question put to the user before a Block-level save proceeds."""
    file_path: str
    level: ProtectionLevel
    rule: ProtectionRule

    @property
    def message(self) -> str:
        detail = f" ({self.rule.description})" if self.rule.description else ""
        return (
            f"{self.file_path} is protected by '{self.rule.pattern}'{detail}. "
            "Create a snapshot and save?"
        )


@dataclass(frozen=True)
class Notification:
    file_path: str
    level: ProtectionLevel
    message: str
    snapshot_id: Optional[str] = None
    actions: Tuple[str, ...] = ()


Confirmer = Callable[[ConfirmationRequest], Union[bool, Awaitable[bool]]]
Notifier = Callable[[Notification], Any]

RESTORE_ACTION = "Restore Snapshot"


# =========================================================================
# Decision records
# =========================================================================


class DecisionState(str, Enum):
    IDLE = "idle"
    EVALUATING = "evaluating"
    ALLOWED = "allowed"
    ALLOWED_WITH_SNAPSHOT = "allowed_with_snapshot"
    BLOCKED = "blocked"


class DecisionReason(str, Enum):
    UNPROTECTED = "unprotected"
    COOLDOWN_BYPASS = "cooldown_bypass"
    TEMPORARY_ALLOWANCE = "temporary_allowance"
    BLOCK_SNAPSHOT_CREATED = "block_mode_snapshot_created"
    USER_CANCELLED = "user_cancelled_block_dialog"
    BLOCK_DEFAULT_DENY = "block_mode_default_deny"
    SNAPSHOT_FAILED = "snapshot_creation_failed"
    WARNING_LEVEL = "warning_level"
    WATCH_LEVEL = "watch_level"


@dataclass
class DecisionResult:
    """Outcome of one save event, consumed by the UI layer."""
    should_proceed: bool
    should_snapshot: bool
    reason: DecisionReason
    state: DecisionState
    file_path: str
    level: Optional[ProtectionLevel] = None
    snapshot_id: Optional[str] = None
    deduplicated: bool = False


@dataclass
class SaveEvent:
    """A registered save with its captured pre-save content."""
    document: DocumentAccessor
    key: str
    pre_save_content: bytes
    existed_on_disk: bool
    state: DecisionState = DecisionState.IDLE
    task: Optional["asyncio.Task[DecisionResult]"] = field(default=None, repr=False)


# =========================================================================
# Handler
# =========================================================================


class ProtectionDecisionHandler:
    """Turns save events into allow / warn / block outcomes.

    Args:
        engine: Classifies paths.
        policy: Current policy. Replace with update_policy().
        cooldowns: Single source of truth for "already handled recently".
        snapshots: Snapshot persistence.
        deduplicator: Maps identical content to one canonical snapshot.
        namer: Snapshot naming strategy.
        allowances: Temporary allowance registry.
        confirmer: Asked before Block-level saves. Without one, Block
            saves are denied.
        notifier: Receives Warn-level notifications.
        workspace_root: Paths are stored relative to this root.
        recorder: Timing recorder for snapshot creation.
    """

    def __init__(
        self,
        engine: PolicyEngine,
        policy: ProtectionPolicy,
        cooldowns: CooldownStore,
        snapshots: SnapshotStore,
        deduplicator: Optional[SnapshotDeduplicator] = None,
        namer: Optional[SnapshotNamingStrategy] = None,
        allowances: Optional[TemporaryAllowances] = None,
        confirmer: Optional[Confirmer] = None,
        notifier: Optional[Notifier] = None,
        workspace_root: Optional[Path] = None,
        recorder: Optional[TimingRecorder] = None,
    ):
        self.engine = engine
        self.policy = policy
        self.cooldowns = cooldowns
        self.snapshots = snapshots
        self.deduplicator = deduplicator or SnapshotDeduplicator()
        self.workspace_root = Path(workspace_root) if workspace_root else None
        self.namer = namer or SnapshotNamingStrategy(self.workspace_root, use_git=False)
        self.allowances = allowances or TemporaryAllowances()
        self.confirmer = confirmer
        self.notifier = notifier
        self.stats: Counter = Counter()
        self._create_snapshot = with_timing("snapshot.create", self._create_snapshot_sync, recorder)
        self._level_handlers = {
            ProtectionLevel.BLOCK: self._handle_block,
            ProtectionLevel.WARN: self._handle_warn,
            ProtectionLevel.WATCH: self._handle_watch,
        }

    def update_policy(self, policy: ProtectionPolicy) -> None:
        """Swap in a rebuilt policy. In-flight saves keep the old one."""
        self.policy = policy

    def _key(self, path: str) -> str:
        return relative_path(path, self.workspace_root)

    def _disk_path(self, path: str) -> Path:
        p = Path(path)
        if not p.is_absolute() and self.workspace_root is not None:
            p = self.workspace_root / p
        return p

    # ---------------------------------------------------------------------
    # Registration
    # ---------------------------------------------------------------------

    def capture(self, document: DocumentAccessor) -> SaveEvent:
        """Capture pre-save content without suspending."""
        disk_path = self._disk_path(document.path)
        try:
            content = disk_path.read_bytes()
            existed = True
        except FileNotFoundError:
            content = document.read_current()
            existed = False
        return SaveEvent(
            document=document,
            key=self._key(document.path),
            pre_save_content=content,
            existed_on_disk=existed,
        )

    def register_save(self, document: DocumentAccessor) -> "asyncio.Task[DecisionResult]":
        """Register a pending save outcome.

        Must be called from the host's will-save callback inside a running
        event loop. Content capture and task creation happen before this
        returns; the host should hold the save open until the task
        finishes. The task raises SaveCancelled if the save must not
        complete.
        """
        event = self.capture(document)
        loop = asyncio.get_running_loop()
        event.task = loop.create_task(self._evaluate(event))
        return event.task

    async def handle_save(self, document: DocumentAccessor) -> DecisionResult:
        """Register and wait for a save decision."""
        return await self.register_save(document)

    # ---------------------------------------------------------------------
    # Evaluation
    # ---------------------------------------------------------------------

    def _result(
        self,
        event: SaveEvent,
        state: DecisionState,
        reason: DecisionReason,
        level: Optional[ProtectionLevel] = None,
        snapshot_id: Optional[str] = None,
        deduplicated: bool = False,
    ) -> DecisionResult:
        event.state = state
        self.stats[reason.value] += 1
        logger.debug("Save %s: %s (%s)", event.key, state.value, reason.value)
        return DecisionResult(
            should_proceed=state != DecisionState.BLOCKED,
            should_snapshot=snapshot_id is not None,
            reason=reason,
            state=state,
            file_path=event.key,
            level=level,
            snapshot_id=snapshot_id,
            deduplicated=deduplicated,
        )

    async def _evaluate(self, event: SaveEvent) -> DecisionResult:
        event.state = DecisionState.EVALUATING
        policy = self.policy
        rule = self.engine.find_rule(event.key, policy)
        if rule is None:
            return self._result(event, DecisionState.ALLOWED, DecisionReason.UNPROTECTED)

        level = rule.level
        if self.cooldowns.is_in_cooldown(event.key, level):
            self.cooldowns.record_audit(
                event.key, level, AuditAction.SAVE_ALLOWED,
                {"reason": DecisionReason.COOLDOWN_BYPASS.value},
            )
            return self._result(event, DecisionState.ALLOWED, DecisionReason.COOLDOWN_BYPASS, level)

        allowance = self.allowances.consume(event.key)
        if allowance is not None:
            return await self._handle_allowance(event, rule, allowance)

        return await self._level_handlers[level](event, rule)

    async def _handle_allowance(self, event: SaveEvent, rule: ProtectionRule, allowance: Dict) -> DecisionResult:
        level = rule.level
        snapshot_id, deduplicated = await self._try_snapshot(event, level, trigger="temporary_allowance")
        self.cooldowns.record_audit(
            event.key, level, AuditAction.USER_OVERRIDE,
            {
                "reason": DecisionReason.TEMPORARY_ALLOWANCE.value,
                "mode": allowance.get("mode"),
                "allowance_reason": allowance.get("reason", ""),
                "snapshot_created": snapshot_id is not None,
            },
            snapshot_id=snapshot_id,
        )
        self.cooldowns.set_cooldown(event.key, level, CooldownAction.USER_OVERRIDE, snapshot_id)
        return self._result(
            event, DecisionState.ALLOWED, DecisionReason.TEMPORARY_ALLOWANCE,
            level, snapshot_id, deduplicated,
        )

    async def _handle_block(self, event: SaveEvent, rule: ProtectionRule) -> DecisionResult:
        level = rule.level
        if self.confirmer is None:
            await self._cancel(event, rule, DecisionReason.BLOCK_DEFAULT_DENY)

        confirmed = await self._confirm(ConfirmationRequest(event.key, level, rule))
        if not confirmed:
            await self._cancel(event, rule, DecisionReason.USER_CANCELLED)

        try:
            snapshot_id, deduplicated = await self._snapshot(event, level, trigger="protected_save")
        except SnapshotCreationError as e:
            logger.error("Snapshot failed for Block-level save of %s: %s", event.key, e)
            await self._cancel(event, rule, DecisionReason.SNAPSHOT_FAILED, error=str(e))

        self.cooldowns.set_cooldown(event.key, level, CooldownAction.SNAPSHOT_CREATED, snapshot_id)
        self.cooldowns.record_audit(
            event.key, level, AuditAction.SAVE_ALLOWED,
            {"reason": DecisionReason.BLOCK_SNAPSHOT_CREATED.value, "pattern": rule.pattern},
            snapshot_id=snapshot_id,
        )
        return self._result(
            event, DecisionState.ALLOWED_WITH_SNAPSHOT, DecisionReason.BLOCK_SNAPSHOT_CREATED,
            level, snapshot_id, deduplicated,
        )

    async def _handle_warn(self, event: SaveEvent, rule: ProtectionRule) -> DecisionResult:
        return await self._best_effort(event, rule, DecisionReason.WARNING_LEVEL)

    async def _handle_watch(self, event: SaveEvent, rule: ProtectionRule) -> DecisionResult:
        return await self._best_effort(event, rule, DecisionReason.WATCH_LEVEL)

    async def _best_effort(self, event: SaveEvent, rule: ProtectionRule, reason: DecisionReason) -> DecisionResult:
        """Warn and Watch: snapshot if possible, never block the save."""
        level = rule.level
        snapshot_id, deduplicated = await self._try_snapshot(event, level, trigger=f"{level.value}_save")
        if snapshot_id is None:
            self.cooldowns.record_audit(
                event.key, level, AuditAction.SAVE_ALLOWED,
                {"reason": reason.value, "snapshot_created": False},
            )
            return self._result(event, DecisionState.ALLOWED, reason, level)

        self.cooldowns.set_cooldown(event.key, level, CooldownAction.SNAPSHOT_CREATED, snapshot_id)
        self.cooldowns.record_audit(
            event.key, level, AuditAction.SAVE_ALLOWED,
            {"reason": reason.value, "snapshot_created": True},
            snapshot_id=snapshot_id,
        )
        if level.notifies_user:
            self._notify(Notification(
                file_path=event.key,
                level=level,
                message=f"Snapshot saved before changing {event.key}",
                snapshot_id=snapshot_id,
                actions=(RESTORE_ACTION,),
            ))
        return self._result(event, DecisionState.ALLOWED_WITH_SNAPSHOT, reason, level, snapshot_id, deduplicated)

    # ---------------------------------------------------------------------
    # Cancellation
    # ---------------------------------------------------------------------

    async def _cancel(
        self,
        event: SaveEvent,
        rule: ProtectionRule,
        reason: DecisionReason,
        error: Optional[str] = None,
    ) -> None:
        """Record the block, revert the buffer and raise SaveCancelled."""
        details = {"reason": reason.value, "pattern": rule.pattern}
        if error:
            details["error"] = error
        self.cooldowns.record_audit(event.key, rule.level, AuditAction.SAVE_BLOCKED, details)

        discarded = self.restore_document_contents(event.document, event.pre_save_content)
        self._result(event, DecisionState.BLOCKED, reason, rule.level)
        logger.info("Blocked save of %s (%s)", event.key, reason.value)
        raise SaveCancelled(reason.value, event.key, discarded_content=discarded)

    @staticmethod
    def restore_document_contents(document: DocumentAccessor, content: bytes) -> Optional[bytes]:
        """Put content back into the buffer.

        Returns the replaced buffer content, or None if the buffer already
        held exactly this content.
        """
        current = document.read_current()
        if current == content:
            return None
        document.replace_content(content)
        return current

    # ---------------------------------------------------------------------
    # Collaborators
    # ---------------------------------------------------------------------

    async def _confirm(self, request: ConfirmationRequest) -> bool:
        try:
            answer = self.confirmer(request)
            if inspect.isawaitable(answer):
                answer = await answer
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Confirmation prompt failed for %s; treating as cancelled", request.file_path)
            return False
        return bool(answer)

    def _notify(self, notification: Notification) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier(notification)
        except Exception:
            logger.exception("Notifier failed for %s", notification.file_path)

    # ---------------------------------------------------------------------
    # Snapshot creation
    # ---------------------------------------------------------------------

    async def _try_snapshot(self, event: SaveEvent, level: ProtectionLevel, trigger: str) -> Tuple[Optional[str], bool]:
        """Snapshot that logs instead of raising (Watch, Warn, allowances)."""
        try:
            return await self._snapshot(event, level, trigger)
        except SnapshotCreationError as e:
            logger.warning("Snapshot failed for %s, save continues: %s", event.key, e)
            return None, False

    async def _snapshot(self, event: SaveEvent, level: ProtectionLevel, trigger: str) -> Tuple[str, bool]:
        loop = asyncio.get_running_loop()
        after = event.document.read_current()
        return await loop.run_in_executor(
            None,
            functools.partial(self._create_snapshot, event, level, trigger, after),
        )

    def _create_snapshot_sync(
        self,
        event: SaveEvent,
        level: ProtectionLevel,
        trigger: str,
        after: bytes,
    ) -> Tuple[str, bool]:
        """Dedup, name, persist and audit a pre-save snapshot.

        Returns:
            (snapshot_id, deduplicated)

        Raises:
            SnapshotCreationError: On any hashing or storage failure.
        """
        state: Optional[SnapshotState] = None
        try:
            file_state = FileState.from_content(event.key, event.pre_save_content)
            state = SnapshotState.create(
                [file_state],
                is_protected=level == ProtectionLevel.BLOCK,
                trigger=trigger,
                metadata={"level": level.value, "existed_on_disk": event.existed_on_disk},
            )

            duplicate = self.deduplicator.find_duplicate(state)
            if duplicate is not None:
                if self.snapshots.exists(duplicate):
                    logger.debug("Reusing snapshot %s for %s", duplicate, event.key)
                    return duplicate, True
                # Canonical snapshot was deleted; make this one canonical
                self.deduplicator.forget(duplicate)
                self.deduplicator.find_duplicate(state)

            before = event.pre_save_content if event.existed_on_disk else None
            change = describe_change(event.key, before, after)
            name = self.namer.generate_name([change])
            state = dataclasses.replace(state, name=name)

            self.snapshots.create(state)
        except SnapshotCreationError:
            if state is not None:
                self.deduplicator.forget(state.id)
            raise
        except (OSError, BlobIntegrityError, ValueError) as e:
            if state is not None:
                self.deduplicator.forget(state.id)
            raise SnapshotCreationError(f"Could not snapshot {event.key}: {e}") from e

        self.cooldowns.record_audit(
            event.key, level, AuditAction.SNAPSHOT_CREATED,
            {"name": state.name, "trigger": trigger, "size": file_state.size},
            snapshot_id=state.id,
        )
        return state.id, False
