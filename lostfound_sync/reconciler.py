from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Any, Hashable

from .config_schema import EndpointsConfig
from .errors import NotFoundError, SyncError
from .record_store import RecordStore
from .remote import RemoteCollection
from .run_log import ScreenLog


class MutationKind(str, Enum):
    MARK_READ = "mark_read"
    TOGGLE_FOLLOW = "toggle_follow"
    SOFT_DELETE = "soft_delete"


class MutationStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    SUPERSEDED = "superseded"


@dataclass(eq=False)
class PendingMutation:
    """
    One optimistic change and what is needed to undo it.

    previous holds the pre-mutation value: the record for deletes and reads,
    the old follow flag for follows. index is the store position at removal.
    """

    kind: MutationKind
    target: Hashable
    previous: Any
    index: int | None = None
    status: MutationStatus = MutationStatus.PENDING
    error: SyncError | None = None


@dataclass(frozen=True)
class MutationResult:
    kind: MutationKind
    target: Hashable
    status: MutationStatus
    error: SyncError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class Identity:
    user_id: int | None
    is_admin: bool = False


def can_delete(record: Any, identity: Identity) -> bool:
    """Owners and admins may delete a post."""
    if identity.is_admin:
        return True
    owner = getattr(record, "owner_id", None)
    return owner is not None and owner == identity.user_id


class MutationReconciler:
    """
    Applies optimistic mutations to a RecordStore and confirms them remotely.

    A first-page refresh supersedes every pending mutation: the fresh server
    page is the source of truth and late confirmations no longer touch the store.
    """

    def __init__(
        self,
        store: RecordStore,
        remote: RemoteCollection,
        *,
        endpoints: EndpointsConfig,
        logger: ScreenLog | None = None,
    ) -> None:
        self._store = store
        self._remote = remote
        self._endpoints = endpoints
        self._log = logger
        self._pending: list[PendingMutation] = []
        self._follows: dict[Hashable, bool] = {}
        # Per-thread toggle counter; only the newest toggle may roll a flag back.
        self._follow_seq: dict[Hashable, int] = {}

    @property
    def pending(self) -> list[PendingMutation]:
        return [m for m in self._pending if m.status == MutationStatus.PENDING]

    def is_followed(self, thread_id: Hashable) -> bool:
        return bool(self._follows.get(thread_id, False))

    def followed_threads(self) -> set[Hashable]:
        return {k for k, v in self._follows.items() if v}

    def set_followed(self, thread_ids: set[Hashable]) -> None:
        """Seed the follow map from server state (e.g. the user profile)."""
        self._follows = {t: True for t in thread_ids}

    def on_full_refresh(self) -> None:
        # Follow flags live outside the store; a page refresh says nothing about them.
        for m in self._pending:
            if m.status == MutationStatus.PENDING and m.kind != MutationKind.TOGGLE_FOLLOW:
                m.status = MutationStatus.SUPERSEDED
        self._pending = [m for m in self._pending if m.status == MutationStatus.PENDING]

    async def mark_read(self, record_id: Hashable) -> MutationResult:
        """
        Set is_read immediately, then confirm remotely.

        Read state is a client-local convenience: a failed confirmation is
        reported but the flag stays set.
        """
        previous = self._store.get(record_id)
        if previous is None:
            return self._missing(MutationKind.MARK_READ, record_id)
        if not hasattr(previous, "is_read"):
            return self._rejected(
                MutationKind.MARK_READ,
                record_id,
                SyncError(f"{type(previous).__name__} records have no read state"),
            )

        if getattr(previous, "is_read", False):
            return MutationResult(MutationKind.MARK_READ, record_id, MutationStatus.CONFIRMED)

        self._store.apply_mutation(record_id, lambda r: dataclasses.replace(r, is_read=True))
        mutation = self._track(MutationKind.MARK_READ, record_id, previous)

        try:
            await self._remote.mutate(
                self._endpoints.notifications,
                {"noti_id": record_id},
                method="PATCH",
            )
        except SyncError as e:
            return self._settle_failed(mutation, e, rolled_back=False)

        return self._settle_confirmed(mutation)

    async def mark_all_read(self) -> list[MutationResult]:
        """Mark every unread record in the store, confirming each one separately."""
        unread = [getattr(r, "id") for r in self._store.items if getattr(r, "is_read", True) is False]
        results: list[MutationResult] = []
        for record_id in unread:
            results.append(await self.mark_read(record_id))
        return results

    async def toggle_follow(self, thread_id: Hashable) -> MutationResult:
        previous = self.is_followed(thread_id)
        wanted = not previous
        self._follows[thread_id] = wanted
        seq = self._follow_seq.get(thread_id, 0) + 1
        self._follow_seq[thread_id] = seq
        mutation = self._track(MutationKind.TOGGLE_FOLLOW, thread_id, previous)

        try:
            await self._remote.mutate(
                self._endpoints.follow,
                {"thread_id": thread_id, "follow": wanted},
                method="POST",
            )
        except SyncError as e:
            if self._follow_seq.get(thread_id) != seq:
                # A newer toggle on the same thread owns the flag, settled or not.
                return self._settle_failed(mutation, e, rolled_back=False)
            self._follows[thread_id] = previous
            return self._settle_failed(mutation, e, rolled_back=True)

        return self._settle_confirmed(mutation)

    async def soft_delete(self, record_id: Hashable) -> MutationResult:
        """
        Remove a record now and reinsert it at its old index if the server refuses.

        Ownership is checked by the caller (see can_delete).
        """
        index = self._store.index_of(record_id)
        if index is None:
            return self._missing(MutationKind.SOFT_DELETE, record_id)

        previous = self._store.get(record_id)
        self._store.evict(record_id)
        mutation = self._track(MutationKind.SOFT_DELETE, record_id, previous, index=index)

        path = self._endpoints.delete_post.replace("{id}", str(record_id))
        try:
            await self._remote.mutate(path, {}, method="DELETE")
        except SyncError as e:
            if mutation.status == MutationStatus.SUPERSEDED:
                return self._settle_failed(mutation, e, rolled_back=False)
            self._store.insert_at(index, previous)
            return self._settle_failed(mutation, e, rolled_back=True)

        return self._settle_confirmed(mutation)

    def _track(
        self,
        kind: MutationKind,
        target: Hashable,
        previous: Any,
        *,
        index: int | None = None,
    ) -> PendingMutation:
        mutation = PendingMutation(kind=kind, target=target, previous=previous, index=index)
        self._pending.append(mutation)
        return mutation

    def _settle_confirmed(self, mutation: PendingMutation) -> MutationResult:
        if mutation.status == MutationStatus.PENDING:
            mutation.status = MutationStatus.CONFIRMED
        self._discard(mutation)
        return MutationResult(mutation.kind, mutation.target, MutationStatus.CONFIRMED)

    def _settle_failed(
        self,
        mutation: PendingMutation,
        error: SyncError,
        *,
        rolled_back: bool,
    ) -> MutationResult:
        superseded = mutation.status == MutationStatus.SUPERSEDED
        if not superseded:
            mutation.status = MutationStatus.ROLLED_BACK if rolled_back else MutationStatus.FAILED
        mutation.error = error
        self._discard(mutation)

        if self._log is not None:
            self._log.warning(
                "mutation_rolled_back" if rolled_back else "mutation_failed",
                kind=mutation.kind.value,
                target=mutation.target,
                superseded=superseded,
                error_type=type(error).__name__,
                error=str(error),
            )
        return MutationResult(mutation.kind, mutation.target, mutation.status, error)

    def _missing(self, kind: MutationKind, target: Hashable) -> MutationResult:
        err = NotFoundError(target)
        if self._log is not None:
            self._log.info("mutation_target_missing", kind=kind.value, target=target)
        return MutationResult(kind, target, MutationStatus.FAILED, err)

    def _rejected(self, kind: MutationKind, target: Hashable, error: SyncError) -> MutationResult:
        if self._log is not None:
            self._log.warning("mutation_rejected", kind=kind.value, target=target, error=str(error))
        return MutationResult(kind, target, MutationStatus.FAILED, error)

    def _discard(self, mutation: PendingMutation) -> None:
        try:
            self._pending.remove(mutation)
        except ValueError:
            pass
