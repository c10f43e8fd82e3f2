"""One-shot job that re-keys user documents by national id.

Each user whose document id differs from its ``nationalId`` is copied to
``users/<nationalId>`` (with ``id`` rewritten, and the old id kept as ``uid``
when the document has none) and its old document deleted.
All moves are staged into a single batch: if any move cannot be staged the
batch is abandoned, and a failed commit changes nothing.

Run it only while nothing else writes to the ``users`` collection.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from exam_app.constants.exam_constants import USERS_COLLECTION
from exam_app.core.errors import MigrationError, PersistenceError
from exam_app.storage.document_store import DocumentStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PlannedMove:
    old_id: str
    new_id: str


@dataclass(slots=True)
class MigrationPlan:
    moves: list[PlannedMove] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.moves


@dataclass(slots=True)
class MigrationReport:
    migrated: int
    skipped: int
    dry_run: bool
    plan: MigrationPlan


class UserMigration:
    """Plans and applies the national-id re-keying of ``users``."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    def plan(self) -> MigrationPlan:
        plan = MigrationPlan()
        for doc_id, data in self._store.stream(USERS_COLLECTION):
            national_id = (data.get("nationalId") or "").strip()
            if not national_id or national_id == doc_id:
                logger.info("Skipping user %s (already keyed by national id or no national id)", doc_id)
                plan.skipped.append(doc_id)
                continue
            plan.moves.append(PlannedMove(old_id=doc_id, new_id=national_id))
        return plan

    def run(self, dry_run: bool = False, confirmed: bool = False) -> MigrationReport:
        """Apply the migration. Without ``confirmed`` only a dry run is allowed."""
        plan = self.plan()
        if dry_run:
            logger.info("Dry run: %d users would be migrated, %d skipped", len(plan.moves), len(plan.skipped))
            return MigrationReport(migrated=0, skipped=len(plan.skipped), dry_run=True, plan=plan)
        if not confirmed:
            raise MigrationError("The user migration must be confirmed before it runs.")
        if plan.is_empty:
            logger.info("No users needed migration")
            return MigrationReport(migrated=0, skipped=len(plan.skipped), dry_run=False, plan=plan)

        batch = self._store.batch()
        targets: set[str] = set()
        for move in plan.moves:
            try:
                self._stage_move(batch, move, targets)
            except Exception as exc:
                logger.error("Could not stage user %s -> %s: %s", move.old_id, move.new_id, exc)
                raise MigrationError(
                    f"Migration aborted before commit: user {move.old_id} could not be staged ({exc})."
                ) from exc

        try:
            batch.commit()
        except PersistenceError as exc:
            logger.exception("Committing the user migration failed")
            raise MigrationError(f"Committing the migration of {len(plan.moves)} users failed: {exc}") from exc

        logger.info("Migrated %d user documents", len(plan.moves))
        return MigrationReport(migrated=len(plan.moves), skipped=len(plan.skipped), dry_run=False, plan=plan)

    def _stage_move(self, batch, move: PlannedMove, targets: set[str]) -> None:
        if move.new_id in targets or self._store.exists(USERS_COLLECTION, move.new_id):
            raise MigrationError(f"Target document users/{move.new_id} is already occupied.")
        data = self._store.get(USERS_COLLECTION, move.old_id)
        if data is None:
            raise MigrationError(f"User {move.old_id} disappeared while the migration was staged.")
        data["id"] = move.new_id
        data.setdefault("uid", move.old_id)
        batch.set(USERS_COLLECTION, move.new_id, data)
        batch.delete(USERS_COLLECTION, move.old_id)
        targets.add(move.new_id)
