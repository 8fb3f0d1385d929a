"""Bounded-concurrency image generation with retry and placeholder fallback.

Requests wait in FIFO order; at most ``max_concurrent`` are in flight across
all sessions. Each request is retried per :class:`RetryPolicy`; anything that
exhausts its attempts or hits a non-retryable rejection resolves to a
placeholder so the round can always proceed to judging.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, List, Optional, Tuple

import requests

from .errors import ImageServiceError
from .state import ImageResult

logger = logging.getLogger(__name__)


def is_retryable_status(status_code: int) -> bool:
    """Client/authorization rejections (4xx) fail fast; timeouts and rate limits do not."""
    if status_code in (408, 429):
        return True
    return not (400 <= status_code < 500)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_factor: float = 2.0

    def is_retryable(self, exc: Exception) -> bool:
        if isinstance(exc, ImageServiceError):
            return exc.retryable
        return True

    def delay_for(self, attempt: int) -> float:
        """Backoff after a failed ``attempt`` (1-based): 1s, 2s, 4s, ..."""
        return self.backoff_base * (self.backoff_factor ** (attempt - 1))

    def should_retry(self, attempt: int, exc: Exception) -> bool:
        return attempt < self.max_attempts and self.is_retryable(exc)


class ImageClient:
    """OpenAI-compatible ``/v1/images/generations`` client."""

    def __init__(self, api_url: str, api_key: str, model: str = 'dall-e-2', size: str = '1024x1024',
                 timeout: float = 60, http=None):
        self.api_url = api_url
        self.api_key = api_key
        self.model = model
        self.size = size
        self.timeout = timeout
        self.http = http or requests.Session()

    def generate(self, prompt: str, art_style: str = '') -> str:
        if not self.api_key:
            raise ImageServiceError('Image API key is not configured', status_code=401, retryable=False)
        body = {
            'model': self.model,
            'prompt': prompt,
            'n': 1,
            'size': self.size,
            'response_format': 'url',
        }
        headers = {
            'Authorization': f'Bearer {self.api_key}',
            'Content-Type': 'application/json',
        }
        try:
            response = self.http.post(self.api_url, json=body, headers=headers, timeout=self.timeout)
        except requests.Timeout as exc:
            raise ImageServiceError(f'Image API timeout after {self.timeout}s') from exc
        except requests.RequestException as exc:
            raise ImageServiceError(f'Image API request failed: {exc}') from exc

        if response.status_code >= 400:
            raise ImageServiceError(
                f'Image API returned {response.status_code}: {response.text[:200]}',
                status_code=response.status_code,
                retryable=is_retryable_status(response.status_code),
            )
        try:
            return response.json()['data'][0]['url']
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ImageServiceError('Invalid response from image API') from exc


@dataclass
class ImageRequest:
    game_code: str
    round: int
    player_id: str
    prompt: str
    art_style: str = ''
    completed_sentence: str = ''


@dataclass
class _Batch:
    requests: List[ImageRequest]
    on_complete: Callable[[List[ImageResult]], None]
    results: dict = field(default_factory=dict)

    @property
    def done(self) -> bool:
        return len(self.results) == len(self.requests)

    def ordered_results(self) -> List[ImageResult]:
        return [self.results[r.player_id] for r in self.requests]


class ImageGenerationPipeline:

    def __init__(self, client, spawn: Callable, sleep: Callable[[float], None] = time.sleep,
                 policy: Optional[RetryPolicy] = None, max_concurrent: int = 2,
                 placeholder_url: str = '/images/placeholder-image-error.png'):
        if max_concurrent < 1:
            raise ValueError('max_concurrent must be at least 1')
        self.client = client
        self.policy = policy or RetryPolicy()
        self.max_concurrent = max_concurrent
        self.placeholder_url = placeholder_url
        self._spawn = spawn
        self._sleep = sleep
        self._queue: Deque[Tuple[_Batch, ImageRequest]] = deque()
        self._workers = 0
        self.in_flight = 0
        self.peak_in_flight = 0
        self._lock = threading.Lock()

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    def submit_batch(self, image_requests: List[ImageRequest],
                     on_complete: Callable[[List[ImageResult]], None]) -> None:
        """Queue one request per contributing player; ``on_complete`` runs once all have settled."""
        batch = _Batch(list(image_requests), on_complete)
        if not batch.requests:
            on_complete([])
            return
        with self._lock:
            for req in batch.requests:
                self._queue.append((batch, req))
            to_spawn = min(self.max_concurrent - self._workers, len(self._queue))
            to_spawn = max(0, to_spawn)
            self._workers += to_spawn
            queued = len(self._queue)
        logger.info(
            f"[image-batch] game={batch.requests[0].game_code} round={batch.requests[0].round} "
            f"queued={len(batch.requests)} queue={queued} workers={self._workers}"
        )
        for _ in range(to_spawn):
            self._spawn(self._worker)

    def _worker(self) -> None:
        while True:
            with self._lock:
                if not self._queue:
                    self._workers -= 1
                    return
                batch, req = self._queue.popleft()
                self.in_flight += 1
                self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            try:
                result = self.generate(req)
            finally:
                with self._lock:
                    self.in_flight -= 1
            with self._lock:
                batch.results[req.player_id] = result
                finished = batch.done
            if finished:
                self._complete(batch)

    def _complete(self, batch: _Batch) -> None:
        results = batch.ordered_results()
        placeholders = sum(1 for r in results if r.is_placeholder)
        logger.info(
            f"[image-batch] game={batch.requests[0].game_code} round={batch.requests[0].round} "
            f"complete total={len(results)} placeholders={placeholders}"
        )
        try:
            batch.on_complete(results)
        except Exception:
            logger.exception(f"[image-batch] game={batch.requests[0].game_code} completion callback failed")

    def generate(self, req: ImageRequest) -> ImageResult:
        """Run one request through the retry policy; never raises."""
        last_error = None
        attempt = 0
        for attempt in range(1, self.policy.max_attempts + 1):
            logger.info(f"[image-attempt] game={req.game_code} player={req.player_id} attempt={attempt}/{self.policy.max_attempts}")
            try:
                url = self.client.generate(req.prompt, req.art_style)
            except Exception as exc:
                last_error = exc
                logger.warning(f"[image-fail] game={req.game_code} player={req.player_id} attempt={attempt} error={exc}")
                if not self.policy.should_retry(attempt, exc):
                    break
                delay = self.policy.delay_for(attempt)
                logger.info(f"[image-retry] game={req.game_code} player={req.player_id} backoff={delay}s")
                self._sleep(delay)
                continue
            logger.info(f"[image-ok] game={req.game_code} player={req.player_id} attempt={attempt}")
            return ImageResult(
                player_id=req.player_id,
                round=req.round,
                image_url=url,
                completed_sentence=req.completed_sentence,
                art_style=req.art_style,
                attempts=attempt,
            )

        logger.error(f"[image-placeholder] game={req.game_code} player={req.player_id} attempts={attempt} error={last_error}")
        return ImageResult(
            player_id=req.player_id,
            round=req.round,
            image_url=self.placeholder_url,
            completed_sentence=req.completed_sentence,
            art_style=req.art_style,
            is_placeholder=True,
            error=str(last_error) if last_error else 'Failed to generate image',
            attempts=attempt,
        )
