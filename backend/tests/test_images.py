import threading
import time

import pytest
import requests

from picture_this.services.games.errors import ImageServiceError
from picture_this.services.games.images import (
    ImageClient,
    ImageGenerationPipeline,
    ImageRequest,
    RetryPolicy,
    is_retryable_status,
)
from picture_this.services.games.engine import run_inline


class ScriptedClient:
    """Raises the queued errors in order, then succeeds."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.attempts = 0

    def generate(self, prompt, art_style=''):
        self.attempts += 1
        if self.errors:
            raise self.errors.pop(0)
        return 'https://images.test/ok.png'


class FakeResponse:
    def __init__(self, status_code, body=None, text=''):
        self.status_code = status_code
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError('no json')
        return self._body


class FakeHttp:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.posted = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.posted.append({'url': url, 'json': json, 'headers': headers, 'timeout': timeout})
        if self.exc:
            raise self.exc
        return self.response


def request_for(player_id, round_no=1):
    return ImageRequest(game_code='ABC123', round=round_no, player_id=player_id,
                        prompt=f'prompt for {player_id}', art_style='realistic',
                        completed_sentence=f'sentence {player_id}')


def make_pipeline(client, sleeps=None, **kwargs):
    sleeps = sleeps if sleeps is not None else []
    return ImageGenerationPipeline(client, run_inline, sleeps.append, **kwargs)


@pytest.mark.parametrize('status, retryable', [
    (400, False), (401, False), (403, False), (404, False),
    (408, True), (429, True), (500, True), (502, True), (503, True),
])
def test_status_classification(status, retryable):
    assert is_retryable_status(status) is retryable


def test_backoff_doubles():
    policy = RetryPolicy(max_attempts=4, backoff_base=1.0)
    assert [policy.delay_for(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]


def test_transient_failures_exhaust_to_placeholder():
    client = ScriptedClient(*[ImageServiceError('503', status_code=503) for _ in range(3)])
    sleeps = []
    pipeline = make_pipeline(client, sleeps, placeholder_url='/placeholder.png')
    result = pipeline.generate(request_for('p2'))
    assert client.attempts == 3
    assert sleeps == [1.0, 2.0]
    assert result.is_placeholder
    assert result.image_url == '/placeholder.png'
    assert result.attempts == 3
    assert '503' in result.error


def test_non_retryable_failure_stops_at_first_attempt():
    client = ScriptedClient(ImageServiceError('401', status_code=401, retryable=False))
    sleeps = []
    result = make_pipeline(client, sleeps).generate(request_for('p2'))
    assert client.attempts == 1
    assert sleeps == []
    assert result.is_placeholder


def test_recovers_after_one_retry():
    client = ScriptedClient(ImageServiceError('timeout'))
    result = make_pipeline(client).generate(request_for('p2'))
    assert result.image_url == 'https://images.test/ok.png'
    assert result.attempts == 2
    assert not result.is_placeholder
    assert result.completed_sentence == 'sentence p2'


def test_batch_results_in_request_order():
    done = []
    pipeline = make_pipeline(ScriptedClient())
    pipeline.submit_batch([request_for(p) for p in ('p3', 'p1', 'p2')], done.append)
    assert [r.player_id for r in done[0]] == ['p3', 'p1', 'p2']


def test_empty_batch_completes_immediately():
    done = []
    make_pipeline(ScriptedClient()).submit_batch([], done.append)
    assert done == [[]]


def test_concurrency_never_exceeds_cap():
    release = threading.Event()
    lock = threading.Lock()
    state = {'active': 0, 'peak': 0}

    class BlockingClient:
        def generate(self, prompt, art_style=''):
            with lock:
                state['active'] += 1
                state['peak'] = max(state['peak'], state['active'])
            release.wait(timeout=5)
            with lock:
                state['active'] -= 1
            return 'https://images.test/slow.png'

    def spawn(fn, *args):
        threading.Thread(target=fn, args=args, daemon=True).start()

    finished = threading.Event()
    results = []

    def on_complete(batch):
        results.extend(batch)
        finished.set()

    pipeline = ImageGenerationPipeline(BlockingClient(), spawn, time.sleep, max_concurrent=2)
    pipeline.submit_batch([request_for(f'p{i}') for i in range(6)], on_complete)

    deadline = time.time() + 5
    while state['active'] < 2 and time.time() < deadline:
        time.sleep(0.01)
    assert state['active'] == 2
    assert pipeline.queue_length == 4

    release.set()
    assert finished.wait(timeout=5)
    assert len(results) == 6
    assert state['peak'] == 2
    assert pipeline.peak_in_flight == 2


def test_client_without_key_is_not_retryable():
    client = ImageClient('http://images.invalid', api_key='', http=FakeHttp())
    with pytest.raises(ImageServiceError) as info:
        client.generate('a prompt')
    assert info.value.retryable is False
    assert client.http.posted == []


def test_client_posts_and_parses_url():
    http = FakeHttp(FakeResponse(200, {'data': [{'url': 'https://cdn.test/x.png'}]}))
    client = ImageClient('http://images.invalid', api_key='k', model='dall-e-2', size='512x512', timeout=7, http=http)
    assert client.generate('a prompt') == 'https://cdn.test/x.png'
    sent = http.posted[0]
    assert sent['json']['prompt'] == 'a prompt'
    assert sent['json']['size'] == '512x512'
    assert sent['headers']['Authorization'] == 'Bearer k'
    assert sent['timeout'] == 7


@pytest.mark.parametrize('http, retryable', [
    (FakeHttp(FakeResponse(500, text='oops')), True),
    (FakeHttp(FakeResponse(400, text='bad prompt')), False),
    (FakeHttp(FakeResponse(429, text='slow down')), True),
    (FakeHttp(exc=requests.Timeout()), True),
    (FakeHttp(exc=requests.ConnectionError()), True),
    (FakeHttp(FakeResponse(200, {'data': []})), True),
])
def test_client_failures_are_classified(http, retryable):
    client = ImageClient('http://images.invalid', api_key='k', http=http)
    with pytest.raises(ImageServiceError) as info:
        client.generate('a prompt')
    assert info.value.retryable is retryable
