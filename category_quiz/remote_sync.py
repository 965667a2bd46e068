"""
Synchronisation with the shared remote store: a live subscription to the
question bank and fire-and-forget writes of finished sessions.
"""
import asyncio
import copy
import itertools
import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Set

import httpx

from .models import ScoreRecord

logger = logging.getLogger(__name__)

QUIZ_PATH = "quiz"
SCORES_PATH = "scores"


class RemoteStoreError(RuntimeError):
    """Raised when the remote store cannot complete a request."""
    pass


class Subscription:
    """Handle for a registered listener; dispose() detaches it."""

    def __init__(self, path: str, on_dispose: Optional[Callable[[], Any]] = None):
        self.path = path
        self._on_dispose = on_dispose
        self._disposed = False

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        if self._on_dispose is not None:
            self._on_dispose()
        logger.debug(f"Disposed subscription to '{self.path}'")

    @property
    def is_disposed(self) -> bool:
        return self._disposed


def _split_path(path: str) -> List[str]:
    return [part for part in path.split("/") if part]


def _as_node(value: Any) -> Dict[str, Any]:
    if isinstance(value, dict):
        return value
    if isinstance(value, list):
        return {str(i): item for i, item in enumerate(value) if item is not None}
    return {}


def _child(node: Any, key: str) -> Any:
    if isinstance(node, dict):
        return node.get(key)
    if isinstance(node, list) and key.isdigit() and int(key) < len(node):
        return node[int(key)]
    return None


def _assign(node: Any, key: str, value: Any) -> Any:
    # Arrays stay arrays while the write keeps them dense, like the database's own reads
    if isinstance(node, list) and key.isdigit():
        index = int(key)
        if value is not None and index < len(node):
            node[index] = value
            return node
        if value is not None and index == len(node):
            node.append(value)
            return node
        if value is None and index == len(node) - 1:
            node.pop()
            return node

    node = _as_node(node)
    if value is None:
        node.pop(key, None)
    else:
        node[key] = value
    return node


def _update(node: Any, parts: List[str], data: Any) -> Any:
    key = parts[0]
    if len(parts) > 1:
        data = _update(_child(node, key), parts[1:], data)
    # Empty containers do not exist in the database
    return _assign(node, key, data) or None


def apply_update(root: Any, path: str, data: Any) -> Any:
    """
    Write data at a slash-separated path inside a JSON tree.

    A None value deletes the child, and parents left empty disappear with it.
    Writing at the root replaces the tree. Integer keys written inside an
    array update it in place, so lists such as question options keep their
    shape.

    Returns:
        The updated tree
    """
    parts = _split_path(path)
    if not parts:
        return data
    return _update(root, parts, data)


def _read_path(root: Any, path: str) -> Any:
    node = root
    for key in _split_path(path):
        node = _child(node, key)
        if node is None:
            return None
    return node


class InMemoryStore:
    """Remote store kept in process memory, used offline and in tests."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._root: Any = copy.deepcopy(initial) if initial else None
        self._listeners: Dict[str, List[Callable[[Any], Any]]] = {}
        self._key_counter = itertools.count()

    def get(self, path: str) -> Any:
        return copy.deepcopy(_read_path(self._root, path))

    def set(self, path: str, value: Any) -> None:
        """Write a value and notify listeners on that path and its ancestors."""
        self._root = apply_update(self._root, path, copy.deepcopy(value))
        self._notify(path)

    def subscribe(self, path: str, callback: Callable[[Any], Any]) -> Subscription:
        """Deliver the current value immediately, then every change."""
        self._listeners.setdefault(path, []).append(callback)
        subscription = Subscription(path, lambda: self._unsubscribe(path, callback))
        callback(self.get(path))
        return subscription

    async def push(self, path: str, value: Any) -> str:
        """Append value under path as a new uniquely keyed child."""
        # Zero-padded so keys sort in insertion order
        key = f"{int(time.time() * 1000):013d}{next(self._key_counter):06d}"
        self.set(f"{path.rstrip('/')}/{key}", value)
        return key

    def _unsubscribe(self, path: str, callback: Callable[[Any], Any]) -> None:
        callbacks = self._listeners.get(path, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def _notify(self, changed_path: str) -> None:
        changed = _split_path(changed_path)
        for path, callbacks in list(self._listeners.items()):
            watched = _split_path(path)
            # Listeners on the changed node, its ancestors and its descendants
            if watched[:len(changed)] != changed[:len(watched)]:
                continue
            for callback in list(callbacks):
                callback(self.get(path))


class FirebaseRealtimeStore:
    """
    Remote store backed by the Firebase Realtime Database REST API.

    Writes use POST (which creates a push-keyed child); subscriptions use the
    streaming endpoint, which sends server-sent 'put' and 'patch' events.
    """

    REQUEST_TIMEOUT = 10.0
    RECONNECT_INITIAL_DELAY = 1.0
    RECONNECT_MAX_DELAY = 30.0

    def __init__(
        self,
        database_url: str,
        auth_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        if not database_url:
            raise ValueError("database_url is required")
        self.database_url = database_url.rstrip("/")
        self.auth_token = auth_token
        self._transport = transport
        self._listen_tasks: Set[asyncio.Task] = set()

    def _client(self, **kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, **kwargs)

    def _url(self, path: str) -> str:
        return f"{self.database_url}/{path.strip('/')}.json"

    def _params(self) -> Dict[str, str]:
        return {"auth": self.auth_token} if self.auth_token else {}

    async def push(self, path: str, value: Any) -> str:
        """
        Append value under path as a new push-keyed child.

        Returns:
            Key generated by the database for the new child

        Raises:
            RemoteStoreError: If the request fails
        """
        try:
            async with self._client(timeout=self.REQUEST_TIMEOUT) as client:
                response = await client.post(self._url(path), json=value, params=self._params())
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise RemoteStoreError(
                f"Push to '{path}' failed: status={exc.response.status_code} body={exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise RemoteStoreError(f"Push to '{path}' failed: {exc}") from exc

        return response.json().get("name", "")

    def subscribe(self, path: str, callback: Callable[[Any], Any]) -> Subscription:
        """
        Stream a path, calling callback with the full value after every change.

        Must be called from a running event loop.
        """
        task = asyncio.get_running_loop().create_task(self._listen(path, callback))
        self._listen_tasks.add(task)
        task.add_done_callback(self._listen_tasks.discard)
        logger.info(f"Subscribed to remote path '{path}'")
        return Subscription(path, task.cancel)

    def close(self) -> None:
        """Cancel every open stream."""
        for task in list(self._listen_tasks):
            task.cancel()

    async def _listen(self, path: str, callback: Callable[[Any], Any]) -> None:
        delay = self.RECONNECT_INITIAL_DELAY
        timeout = httpx.Timeout(self.REQUEST_TIMEOUT, read=None)
        headers = {"Accept": "text/event-stream"}

        while True:
            try:
                async with self._client(timeout=timeout, follow_redirects=True) as client:
                    async with client.stream(
                        "GET", self._url(path), params=self._params(), headers=headers
                    ) as response:
                        response.raise_for_status()
                        delay = self.RECONNECT_INITIAL_DELAY
                        if not await self._consume_events(response, path, callback):
                            return
            except httpx.HTTPError as e:
                logger.warning(f"Stream for '{path}' failed: {e}; reconnecting in {delay:.1f}s")
            except ValueError as e:
                logger.warning(f"Malformed event on '{path}': {e}; reconnecting in {delay:.1f}s")

            await asyncio.sleep(delay)
            delay = min(delay * 2, self.RECONNECT_MAX_DELAY)

    async def _consume_events(self, response: httpx.Response, path: str, callback) -> bool:
        """
        Read server-sent events until the stream ends.

        Returns:
            False if the server closed the stream for good, True to reconnect
        """
        value: Any = None
        event: Optional[str] = None
        data_lines: List[str] = []

        async for line in response.aiter_lines():
            line = line.rstrip("\r\n")
            if line.startswith("event:"):
                event = line[len("event:"):].strip()
            elif line.startswith("data:"):
                data_lines.append(line[len("data:"):].strip())
            elif not line:
                raw = "\n".join(data_lines)
                event, data_lines, current = None, [], event

                if current is None or current == "keep-alive":
                    continue
                if current in ("cancel", "auth_revoked"):
                    logger.error(f"Stream for '{path}' closed by server: {current}")
                    return False
                if current not in ("put", "patch"):
                    logger.debug(f"Ignoring stream event '{current}' on '{path}'")
                    continue

                message = json.loads(raw)
                if not isinstance(message, dict):
                    raise ValueError(f"expected an object in '{current}' event, got {raw!r}")
                event_path = message.get("path") or "/"
                if current == "put":
                    value = apply_update(value, event_path, message.get("data"))
                else:
                    for key, child in (message.get("data") or {}).items():
                        value = apply_update(value, f"{event_path.rstrip('/')}/{key}", child)
                callback(copy.deepcopy(value))

        return True


class RemoteSync:
    """Question bank subscription and score publishing over a remote store."""

    def __init__(self, store):
        """
        Initialize with a store capability.

        Args:
            store: Object providing subscribe(path, callback) -> Subscription
                and async push(path, value) -> str
        """
        self.store = store
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, on_update: Callable[[Any], Any]) -> Subscription:
        """
        Listen to the remote question bank for the lifetime of the returned
        subscription.
        """
        def deliver(payload: Any) -> None:
            try:
                on_update(payload)
            except Exception:
                logger.exception("Question bank update handler failed")

        return self.store.subscribe(QUIZ_PATH, deliver)

    def publish(self, record: ScoreRecord) -> Optional[asyncio.Task]:
        """
        Append a score record without waiting for the write.

        Failures are logged and never retried.

        Returns:
            The scheduled write task, or None if no event loop is running
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error(f"No running event loop; score for '{record.category}' was not published")
            return None

        task = loop.create_task(self._push_record(record))
        self._pending.add(task)
        task.add_done_callback(self._handle_publish_completion)
        return task

    async def _push_record(self, record: ScoreRecord) -> str:
        key = await self.store.push(SCORES_PATH, record.to_dict())
        logger.info(
            f"Published score {record.score}/{record.total_questions} for '{record.category}'",
            extra={
                'event_type': 'score_published',
                'category': record.category,
                'key': key,
                'timestamp': time.time()
            }
        )
        return key

    def _handle_publish_completion(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            logger.warning("Score publish was cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Failed to publish score: {error}")

    @property
    def pending_count(self) -> int:
        return len(self._pending)
