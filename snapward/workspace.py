"""
Snapward workspace wiring.

Assembles the policy engine, stores and decision handler for one
workspace root from the merged configuration. Used by the CLI and by
editor integrations that host the save pipeline.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, List, Optional, Union

from snapward.config import load_config
from snapward.config.models import SnapwardConfig
from snapward.handlers.allowances import TemporaryAllowances
from snapward.handlers.decision import Confirmer, Notifier, ProtectionDecisionHandler
from snapward.policy.defaults import DEFAULT_IGNORE
from snapward.policy.engine import PolicyEngine
from snapward.policy.loader import load_workspace_rules
from snapward.policy.rules import ProtectionPolicy, ProtectionRule, RuleSource, StackRef
from snapward.policy.stacks import detect_stacks, rules_for_stacks
from snapward.restore.conflicts import ConflictResolver
from snapward.snapshot.dedup import SnapshotDeduplicator
from snapward.snapshot.naming import SnapshotNamingStrategy
from snapward.storage.blob_store import BlobStore
from snapward.storage.cooldown_store import CooldownStore
from snapward.storage.snapshot_store import SnapshotStore
from snapward.timing import TimingRecorder, get_recorder

logger = logging.getLogger(__name__)

ALLOWANCES_FILENAME = "allowances.json"


class Workspace:
    """Everything Snapward needs for one workspace root.

    Stores are opened lazily so read-only commands (``policy show``)
    never touch the database.
    """

    def __init__(
        self,
        root: Union[str, Path],
        config: Optional[SnapwardConfig] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.root = Path(root).resolve()
        self.config = config or load_config(workspace_root=self.root)
        self._clock = clock
        self.engine = PolicyEngine(
            workspace_root=self.root,
            include_defaults=self.config.policy.include_defaults,
            include_extended=self.config.policy.include_extended,
        )
        self._policy: Optional[ProtectionPolicy] = None
        self._cooldowns: Optional[CooldownStore] = None
        self._snapshots: Optional[SnapshotStore] = None
        self._allowances: Optional[TemporaryAllowances] = None
        self._recorder: Optional[TimingRecorder] = None

    @property
    def data_dir(self) -> Path:
        data_dir = Path(self.config.storage.data_dir).expanduser()
        return data_dir if data_dir.is_absolute() else self.root / data_dir

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    def build_policy(self) -> ProtectionPolicy:
        settings = self.config.policy
        loaded = load_workspace_rules(self.root)

        user_rules: List[ProtectionRule] = list(loaded.rules)
        for entry in settings.extra_rules:
            try:
                user_rules.append(ProtectionRule.from_dict(entry, RuleSource.USER))
            except (KeyError, ValueError) as e:
                logger.warning("Ignoring invalid extra rule %r: %s", entry, e)

        stacks = detect_stacks(self.root) if settings.detect_stacks else []
        ignore = list(DEFAULT_IGNORE if settings.ignore is None else settings.ignore)
        ignore.extend(loaded.ignore)

        policy = self.engine.build_policy(
            user_rules=user_rules,
            detected_stack_rules=rules_for_stacks(stacks),
            stacks=[StackRef(id=s.id, name=s.name) for s in stacks],
            ignore=ignore,
        )
        logger.info(
            "Policy for %s: %d rules from %s", self.root, policy.audit.rules_count, policy.audit.source,
        )
        return policy

    @property
    def policy(self) -> ProtectionPolicy:
        if self._policy is None:
            self._policy = self.build_policy()
        return self._policy

    def reload_policy(self) -> ProtectionPolicy:
        self._policy = self.build_policy()
        return self._policy

    # ------------------------------------------------------------------
    # Stores
    # ------------------------------------------------------------------

    @property
    def cooldowns(self) -> CooldownStore:
        if self._cooldowns is None:
            self._cooldowns = CooldownStore(
                self.data_dir / self.config.storage.database_name,
                settings=self.config.cooldowns,
                clock=self._clock,
            )
        return self._cooldowns

    @property
    def snapshots(self) -> SnapshotStore:
        if self._snapshots is None:
            storage = self.config.storage
            self._snapshots = SnapshotStore(
                self.data_dir / storage.snapshots_dir,
                BlobStore(self.data_dir / storage.blobs_dir),
                max_snapshots=storage.max_snapshots,
            )
        return self._snapshots

    @property
    def recorder(self) -> TimingRecorder:
        """Shared recorder, or a dedicated one when slow_operation_ms is set."""
        if self._recorder is None:
            threshold = self.config.slow_operation_ms
            if threshold is None:
                self._recorder = get_recorder()
            else:
                self._recorder = TimingRecorder(slow_threshold_ms=threshold)
        return self._recorder

    @property
    def allowances(self) -> TemporaryAllowances:
        if self._allowances is None:
            self._allowances = TemporaryAllowances(
                state_path=self.data_dir / ALLOWANCES_FILENAME,
                default_ttl_seconds=self.config.allowances.default_ttl_seconds,
                clock=self._clock,
            )
        return self._allowances

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def create_handler(
        self,
        confirmer: Optional[Confirmer] = None,
        notifier: Optional[Notifier] = None,
        recorder: Optional[TimingRecorder] = None,
    ) -> ProtectionDecisionHandler:
        naming = self.config.naming
        return ProtectionDecisionHandler(
            engine=self.engine,
            policy=self.policy,
            cooldowns=self.cooldowns,
            snapshots=self.snapshots,
            deduplicator=SnapshotDeduplicator(self.config.dedup.max_cache_size),
            namer=SnapshotNamingStrategy(
                self.root,
                use_git=naming.use_git,
                git_timeout=naming.git_timeout_seconds,
                max_length=naming.max_name_length,
            ),
            allowances=self.allowances,
            confirmer=confirmer,
            notifier=notifier,
            workspace_root=self.root,
            recorder=recorder or self.recorder,
        )

    def conflict_resolver(self) -> ConflictResolver:
        return ConflictResolver(self.root)

    def close(self) -> None:
        if self._cooldowns is not None:
            self._cooldowns.close()
            self._cooldowns = None
