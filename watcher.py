"""
Change-stream runner for the document triggers.

Run next to the API with TRIGGER_MODE=change_stream. Needs a replica set,
and changeStreamPreAndPostImages enabled on the watched collections for the
`before` snapshot of updates.
"""

import logging
import os
from typing import Optional

import database
import triggers

logger = logging.getLogger(__name__)

WATCHED_COLLECTIONS = ("leads", "attendance")
KINDS = {"insert": "created", "update": "updated", "replace": "updated"}


def event_from_change(change: dict) -> Optional[triggers.ChangeEvent]:
    kind = KINDS.get(change.get("operationType"))
    if kind is None:
        return None
    return triggers.ChangeEvent(
        kind=kind,
        collection=change["ns"]["coll"],
        document_id=str(change["documentKey"]["_id"]),
        before=change.get("fullDocumentBeforeChange"),
        after=change.get("fullDocument"),
    )


def watch(db, resume_after=None):
    pipeline = [{"$match": {"ns.coll": {"$in": list(WATCHED_COLLECTIONS)}}}]
    with db.watch(
        pipeline,
        full_document="updateLookup",
        full_document_before_change="whenAvailable",
        resume_after=resume_after,
    ) as stream:
        logger.info("Watching %s", ", ".join(WATCHED_COLLECTIONS))
        for change in stream:
            event = event_from_change(change)
            if event is None:
                continue
            if event.kind == "updated" and event.before is None:
                logger.warning("No pre-image for %s/%s; enable changeStreamPreAndPostImages", event.collection, event.document_id)
            triggers.dispatch(event)


if __name__ == "__main__":
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if database.db is None:
        raise SystemExit("DATABASE_URL and DATABASE_NAME must be set")
    if database.TRIGGER_MODE == "inline":
        logger.warning("TRIGGER_MODE is inline; the API already dispatches triggers, events will run twice")
    watch(database.db)
