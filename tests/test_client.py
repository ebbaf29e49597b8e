import pytest
import requests

from readwise_mirror.sync import (
    AdaptiveRateLimiter,
    HTTPStatusError,
    MalformedResponseError,
    NetworkError,
    ReadwiseReaderClient,
)

from fakes import FakeResponse, FakeSession


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def make_client(responses, clock=None):
    clock = clock or FakeClock()
    session = FakeSession(responses)
    limiter = AdaptiveRateLimiter(clock=clock, sleep=clock.sleep)
    client = ReadwiseReaderClient("token-123", session=session, rate_limiter=limiter, sleep=clock.sleep)
    return client, session, clock


def doc_payload(doc_id, location="later", progress=0.0, tags=None):
    return {
        "id": doc_id,
        "title": f"Doc {doc_id}",
        "author": "Someone",
        "location": location,
        "category": "article",
        "tags": tags or {},
        "html_content": "<p>hi</p>",
        "reading_progress": progress,
    }


def test_pagination_collects_all_pages_without_duplicates():
    client, session, _ = make_client(
        [
            FakeResponse(200, {"results": [doc_payload("a"), doc_payload("b")], "nextPageCursor": "cursor-2"}),
            FakeResponse(200, {"results": [doc_payload("c")], "nextPageCursor": None}),
        ]
    )

    documents = client.list_documents("later")

    assert [d.id for d in documents] == ["a", "b", "c"]
    assert len(session.calls) == 2
    assert "pageCursor" not in session.calls[0]["params"]
    assert session.calls[1]["params"]["pageCursor"] == "cursor-2"
    assert session.calls[0]["params"]["withHtmlContent"] == "true"
    assert session.headers["Authorization"] == "Token token-123"


def test_rate_limit_response_waits_retry_after_and_retries_once():
    client, session, clock = make_client(
        [
            FakeResponse(429, headers={"Retry-After": "5"}),
            FakeResponse(200, {"results": [doc_payload("a")]}),
        ]
    )

    documents = client.list_documents("later")

    assert [d.id for d in documents] == ["a"]
    assert len(session.calls) == 2
    assert clock.sleeps[0] >= 5
    assert client.rate_limiter.throttled


def test_rate_limit_twice_surfaces_failure_after_single_retry():
    client, session, clock = make_client(
        [
            FakeResponse(429, headers={"retry-after": "5"}),
            FakeResponse(429, headers={"retry-after": "5"}),
            FakeResponse(200, {"results": []}),
        ]
    )

    with pytest.raises(HTTPStatusError) as excinfo:
        client.list_documents("later")

    assert excinfo.value.status_code == 429
    assert len(session.calls) == 2
    assert clock.sleeps[0] == 5


def test_rate_limit_without_header_defaults_to_sixty_seconds():
    client, _, clock = make_client([FakeResponse(429), FakeResponse(204)])

    client.update_location("doc-1", "archive")

    assert clock.sleeps[0] == 60


def test_network_error_is_typed():
    client, _, _ = make_client([requests.ConnectionError("down")])

    with pytest.raises(NetworkError):
        client.list_documents("new")


def test_invalid_json_is_typed():
    client, _, _ = make_client([FakeResponse(200, content=b"<html>not json</html>")])

    with pytest.raises(MalformedResponseError):
        client.list_archived_documents("2024-01-01T00:00:00Z")


@pytest.mark.parametrize(
    "payload",
    [
        {"results": [{"title": "no id"}]},
        {"results": [{"id": None, "title": "null id"}]},
        {"results": ["just a string"]},
        {"results": {"id": "a"}},
        ["not", "an", "object"],
    ],
)
def test_malformed_document_entries_are_typed(payload):
    client, _, _ = make_client([FakeResponse(200, payload)])

    with pytest.raises(MalformedResponseError):
        client.list_documents("later")


@pytest.mark.parametrize("payload", [{"results": [{"title": "no id"}]}, {"results": "nope"}, ["a"]])
def test_malformed_single_document_is_typed(payload):
    client, _, _ = make_client([FakeResponse(200, payload)])

    with pytest.raises(MalformedResponseError):
        client.get_document("doc-1")


def test_http_error_carries_status_code():
    client, _, _ = make_client([FakeResponse(500)])

    with pytest.raises(HTTPStatusError) as excinfo:
        client.get_document("doc-1")
    assert excinfo.value.status_code == 500


def test_archive_sends_patch_and_accepts_no_content():
    client, session, _ = make_client([FakeResponse(204)])

    client.archive_document("doc-9")

    call = session.calls[0]
    assert call["method"] == "PATCH"
    assert call["url"].endswith("/update/doc-9/")
    assert call["json"] == {"location": "archive"}


def test_archived_listing_passes_checkpoint():
    client, session, _ = make_client([FakeResponse(200, {"results": [doc_payload("z", location="archive")]})])

    documents = client.list_archived_documents("2024-05-01T10:00:00Z")

    assert documents[0].location == "archive"
    assert session.calls[0]["params"] == {"location": "archive", "updatedAfter": "2024-05-01T10:00:00Z"}


def test_active_listing_skips_excluded_locations_and_finished_documents():
    client, session, _ = make_client(
        [
            FakeResponse(200, {"results": [doc_payload("a", "new"), doc_payload("done", "new", progress=1.0)]}),
            FakeResponse(200, {"results": [doc_payload("b", "shortlist"), doc_payload("a", "shortlist")]}),
        ]
    )

    documents = client.list_active_documents(excluded_locations=["later"])

    assert [d.id for d in documents] == ["a", "b"]
    assert [c["params"]["location"] for c in session.calls] == ["new", "shortlist"]


def test_highlights_are_posted_to_v2_endpoint():
    client, session, _ = make_client([FakeResponse(200, {"ok": True})])

    client.create_highlights([{"text": "quote", "title": "Doc"}])

    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == "https://readwise.io/api/v2/highlights/"
    assert call["json"] == {"highlights": [{"text": "quote", "title": "Doc"}]}


def test_document_tags_are_read_from_tag_objects():
    client, _, _ = make_client(
        [FakeResponse(200, {"results": [doc_payload("a", tags={"t1": {"name": "news"}, "t2": {"name": ""}})]})]
    )

    document = client.list_documents("later")[0]

    assert document.tags == ["news"]


def test_rate_limiter_throttles_after_burst():
    clock = FakeClock()
    limiter = AdaptiveRateLimiter(clock=clock, sleep=clock.sleep)

    for _ in range(5):
        limiter.acquire()

    assert limiter.throttled
    assert clock.sleeps == [3.0]

    limiter.acquire()
    assert clock.sleeps == [3.0, 3.0]


def test_rate_limiter_stays_off_for_slow_sessions():
    clock = FakeClock()
    limiter = AdaptiveRateLimiter(clock=clock, sleep=clock.sleep)

    for _ in range(8):
        limiter.acquire()
        clock.now += 6

    assert not limiter.throttled
    assert clock.sleeps == []


def test_reset_session_clears_throttle():
    client, _, _ = make_client([])
    client.rate_limiter.enable()

    client.reset_session()

    assert not client.rate_limiter.throttled
    assert client.rate_limiter.call_count == 0
