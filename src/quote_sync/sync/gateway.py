"""Remote snapshot gateway contract and reference implementations.

The sync core only ever talks to the remote through ``RemoteGateway``:

- ``push(changes)`` sends pending changes in creation order.
- ``pull()`` returns the remote collection's full current state plus a
  timestamp.  The snapshot is treated as authoritative.

Any failure surfaces as ``GatewayError``; transport detail never leaks
into the core.

Implementations:

- ``InMemoryGateway`` -- a simulated remote store, used for local
  development, demos and tests.
- ``HttpGateway`` -- ``requests``-based JSON endpoint client.  Also
  understands JSONPlaceholder-style ``/posts`` payloads.
"""

from __future__ import annotations

import logging
import random
import threading
from typing import TYPE_CHECKING, Any, Protocol, Sequence

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..core.async_utils import run_sync
from .errors import GatewayError
from .models import ChangeKind, Origin, PendingChange, Quote, Record
from .persistence import SERVER_KEY, KeyValueStore

if TYPE_CHECKING:
    from .context import Clock

logger = logging.getLogger(__name__)

# JSONPlaceholder posts are offset so they never collide with local ids.
POST_ID_OFFSET = 1000
POST_LIMIT = 8
POST_CATEGORIES = (
    "Inspiration",
    "Life",
    "Motivation",
    "Wisdom",
    "Success",
    "Philosophy",
    "Knowledge",
)

# Server-side changes made by InMemoryGateway(simulate_updates=True).
SIMULATED_ADD_CHANCE = 0.25
SIMULATED_EDIT_CHANCE = 0.2
SIMULATED_EDIT_MIN_RECORDS = 3
SERVER_UPDATE_SUFFIX = " [Server Updated]"
SIMULATED_QUOTE = Quote(
    text=(
        "Server update: The best preparation for tomorrow is doing your "
        "best today."
    ),
    category="Motivation",
)


class RemoteSnapshot(BaseModel):
    """Full remote state returned by ``pull()``."""

    model_config = ConfigDict(frozen=True)

    records: list[Record] = Field(default_factory=list)
    timestamp: int


class RemoteGateway(Protocol):
    """Protocol that all remote gateways must satisfy."""

    async def push(self, changes: Sequence[PendingChange]) -> None:
        """Send *changes* to the remote in the given order.

        Raises:
            GatewayError: On any transport or remote failure.
        """
        ...  # pragma: no cover

    async def pull(self) -> RemoteSnapshot:
        """Fetch the remote collection's current state.

        Raises:
            GatewayError: On any transport or remote failure.
        """
        ...  # pragma: no cover

# ---------------------------------------------------------------------------
# In-memory gateway
# ---------------------------------------------------------------------------


class InMemoryGateway:
    """Simulated remote store.

    Pushed ``add``/``update`` changes are stored as ``remote`` records and
    ``delete`` changes remove them.  An ``add`` for an id the server
    already holds with a different quote came from another client that
    minted the same id; it is stored under a fresh server id instead of
    overwriting that quote.  ``put_remote``/``delete_remote`` simulate edits
    made on the server by other clients.

    With *simulate_updates* every ``pull`` may first change the server on
    its own: with a 25% chance it adds a server-generated quote, and with a
    20% chance (once it holds more than three quotes) it edits a random
    quote, appending ``" [Server Updated]"`` and bumping its version.

    Args:
        clock: Timestamp source for snapshots.
        records: Initial remote records.
        persistence: When given, the simulated server state is loaded from
            and saved under the ``server`` key, so it survives restarts.
        simulate_updates: Enable the random server-side changes above.
        rng: Random source for the simulation.
    """

    def __init__(
        self,
        clock: Clock,
        records: Sequence[Record] = (),
        persistence: KeyValueStore | None = None,
        simulate_updates: bool = False,
        rng: random.Random | None = None,
    ) -> None:
        self._clock = clock
        self._persistence = persistence
        self._records: dict[int, Record] = {r.id: r for r in records}
        if persistence is not None and not records:
            for item in persistence.load(SERVER_KEY) or []:
                record = Record.model_validate(item)
                self._records[record.id] = record
        self.simulate_updates = simulate_updates
        self._rng = rng or random.Random()
        self.push_calls: list[list[PendingChange]] = []

    async def push(self, changes: Sequence[PendingChange]) -> None:
        self.push_calls.append(list(changes))
        for change in changes:
            if change.kind == ChangeKind.DELETE:
                self._records.pop(change.record_id, None)
                continue
            record = change.record.model_copy(update={"origin": Origin.REMOTE})
            taken = self._records.get(record.id)
            if (
                change.kind == ChangeKind.ADD
                and taken is not None
                and taken.payload != record.payload
            ):
                new_id = self._next_id()
                logger.warning(
                    "Remote id %d already holds another quote; storing the "
                    "added quote as %d",
                    record.id,
                    new_id,
                )
                record = record.model_copy(update={"id": new_id})
            self._records[record.id] = record
        self._save()
        logger.debug("In-memory remote accepted %d changes", len(changes))

    async def pull(self) -> RemoteSnapshot:
        if self.simulate_updates:
            self.simulate_server_updates()
        return RemoteSnapshot(
            records=list(self._records.values()),
            timestamp=self._clock.now_ms(),
        )

    def simulate_server_updates(self) -> list[str]:
        """Randomly add and edit quotes as other clients would.

        Returns:
            Descriptions of the changes made (empty if none).
        """
        now = self._clock.now_ms()
        made: list[str] = []
        if self._rng.random() < SIMULATED_ADD_CHANCE and self._records:
            added = Record(
                id=self._next_id(),
                payload=SIMULATED_QUOTE,
                version=1,
                last_modified=now,
                origin=Origin.REMOTE,
            )
            self._records[added.id] = added
            made.append("added new server quote")
        if (
            self._rng.random() < SIMULATED_EDIT_CHANCE
            and len(self._records) > SIMULATED_EDIT_MIN_RECORDS
        ):
            target = self._rng.choice(list(self._records.values()))
            payload = target.payload.model_copy(
                update={"text": target.payload.text + SERVER_UPDATE_SUFFIX}
            )
            self._records[target.id] = target.model_copy(
                update={
                    "payload": payload,
                    "version": target.version + 1,
                    "last_modified": max(now, target.last_modified + 1),
                }
            )
            made.append("updated existing quote")
        if made:
            self._save()
            logger.info("Server simulation: %s", ", ".join(made))
        return made

    def put_remote(self, record: Record) -> Record:
        """Store *record* as if another client had written it."""
        stored = record.model_copy(update={"origin": Origin.REMOTE})
        self._records[stored.id] = stored
        self._save()
        return stored

    def delete_remote(self, record_id: int) -> None:
        self._records.pop(record_id, None)
        self._save()

    def records(self) -> list[Record]:
        return list(self._records.values())

    def _next_id(self) -> int:
        return max(self._clock.now_ms(), max([0, *self._records]) + 1)

    def _save(self) -> None:
        if self._persistence is not None:
            self._persistence.save(
                SERVER_KEY, [r.to_wire() for r in self._records.values()]
            )


# ---------------------------------------------------------------------------
# HTTP gateway
# ---------------------------------------------------------------------------


class HttpGateway:
    """Gateway for a JSON-over-HTTP remote.

    ``pull`` issues ``GET url`` and accepts either a list of records or an
    object ``{"records": [...], "timestamp": N}``.  With
    ``payload_format="posts"`` the body is a JSONPlaceholder post list that
    is transformed into quote records.

    ``push`` issues ``POST url`` with ``{"changes": [...]}``; in ``posts``
    format every added or updated quote is posted individually.

    Args:
        url: Remote endpoint.
        clock: Timestamp source for snapshots that carry none.
        payload_format: ``"records"`` (default) or ``"posts"``.
        timeout: Connect/read timeout in seconds.
    """

    def __init__(
        self,
        url: str,
        clock: Clock,
        payload_format: str = "records",
        timeout: float = 30.0,
    ) -> None:
        if payload_format not in ("records", "posts"):
            raise ValueError(
                f"Unknown payload format: '{payload_format}'. Valid formats: ['posts', 'records']"
            )
        self.url = url
        self.payload_format = payload_format
        self.timeout = timeout
        self._clock = clock
        self._thread_local = threading.local()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            session = requests.Session()
            session.headers["Accept"] = "application/json"
            self._thread_local.session = session
        return self._thread_local.session

    # ------------------------------------------------------------------
    # Async contract
    # ------------------------------------------------------------------

    async def push(self, changes: Sequence[PendingChange]) -> None:
        if not changes:
            return
        await run_sync(self._push_blocking, list(changes))

    async def pull(self) -> RemoteSnapshot:
        return await run_sync(self._pull_blocking)

    # ------------------------------------------------------------------
    # Blocking implementation
    # ------------------------------------------------------------------

    def _push_blocking(self, changes: list[PendingChange]) -> None:
        if self.payload_format == "posts":
            bodies = [
                record_to_post(c.record)
                for c in changes
                if c.kind != ChangeKind.DELETE
            ]
        else:
            bodies = [{"changes": [c.to_wire() for c in changes]}]

        session = self._get_session()
        for body in bodies:
            try:
                response = session.post(
                    self.url, json=body, timeout=self.timeout
                )
                response.raise_for_status()
            except requests.RequestException as exc:
                raise GatewayError(f"Push to {self.url} failed: {exc}") from exc
        logger.info("Pushed %d changes to %s", len(changes), self.url)

    def _pull_blocking(self) -> RemoteSnapshot:
        session = self._get_session()
        try:
            response = session.get(self.url, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except requests.RequestException as exc:
            raise GatewayError(f"Pull from {self.url} failed: {exc}") from exc
        except ValueError as exc:
            raise GatewayError(
                f"Pull from {self.url} returned invalid JSON: {exc}"
            ) from exc

        now = self._clock.now_ms()
        if self.payload_format == "posts":
            if not isinstance(body, list):
                raise GatewayError("Expected a list of posts from remote")
            records = posts_to_records(body)
            timestamp = now
        else:
            records, timestamp = parse_records_body(body, now)

        logger.info("Pulled %d records from %s", len(records), self.url)
        return RemoteSnapshot(records=records, timestamp=timestamp)

# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------


def parse_records_body(body: Any, default_timestamp: int) -> tuple[list[Record], int]:
    """Decode a records payload, skipping malformed items.

    Raises:
        GatewayError: If *body* is neither a list nor an object with a
            ``records`` list.
    """
    timestamp = default_timestamp
    if isinstance(body, dict):
        items = body.get("records")
        if isinstance(body.get("timestamp"), int):
            timestamp = body["timestamp"]
    else:
        items = body
    if not isinstance(items, list):
        raise GatewayError("Remote payload has no records list")

    records: list[Record] = []
    for item in items:
        try:
            records.append(
                Record.model_validate(item).model_copy(
                    update={"origin": Origin.REMOTE}
                )
            )
        except ValidationError as exc:
            logger.warning("Skipping malformed remote record: %s", exc)
    return records, timestamp


def posts_to_records(posts: list[Any]) -> list[Record]:
    """Transform JSONPlaceholder posts into quote records.

    Titles longer than 20 characters become the quote text; shorter ones
    are extended with the first 80 characters of the body.  Categories are
    assigned round-robin.  At most ``POST_LIMIT`` posts are used.  Posts
    carry no modification time, so ``last_modified`` is 0 and a local edit
    is always considered newer.
    """
    records: list[Record] = []
    for index, post in enumerate(posts[:POST_LIMIT]):
        try:
            title = str(post["title"])
            body = str(post.get("body", ""))
            post_id = int(post["id"])
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed post: %s", exc)
            continue
        if len(title) > 20:
            text = title
        else:
            text = f"{title}. {body[:80]}..."
        records.append(
            Record(
                id=post_id + POST_ID_OFFSET,
                payload=Quote(
                    text=text,
                    category=POST_CATEGORIES[index % len(POST_CATEGORIES)],
                ),
                version=1,
                last_modified=0,
                origin=Origin.REMOTE,
            )
        )
    return records


def record_to_post(record: Record) -> dict[str, Any]:
    """Convert a quote record to a JSONPlaceholder post body."""
    text = record.payload.text
    return {
        "title": f"Quote: {text[:40]}...",
        "body": (
            f"Category: {record.payload.category}\n"
            f"Full Text: {text}\n"
            f"ID: {record.id}"
        ),
        "userId": 1,
    }
