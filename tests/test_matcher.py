"""Test cases for Matcher."""

import grpc
import pytest

from grpc_stub import Matcher, Request, Response, Status
from grpc_stub.matcher import method_predicate, service_predicate


def _request(full_name="routeguide.RouteGuide.GetFeature", **message):
    return Request.new(full_name, message)


def _always(r):
    return True


def test_chained_mutations_apply_in_order():
    """Headers, messages and more headers accumulate in declaration order."""
    m = Matcher(_always).header("a", "1").response({"x": 1}).header("b", "2")
    res = m.handle(_request())
    assert res.headers == {"a": ["1"], "b": ["2"]}
    assert res.messages == [{"x": 1}]
    assert res.trailers == {}
    assert res.status is None


def test_repeated_headers_and_trailers():
    """The same key can be given several times."""
    m = Matcher(_always).header("k", "1").header("k", "2").trailer("t", "x")
    res = m.handle(_request())
    assert res.headers == {"k": ["1", "2"]}
    assert res.trailers == {"t": ["x"]}


def test_each_call_gets_a_fresh_response():
    """Handling twice does not accumulate messages."""
    m = Matcher(_always).response({"x": 1})
    assert m.handle(_request()).messages == [{"x": 1}]
    assert m.handle(_request()).messages == [{"x": 1}]


def test_no_response_configured():
    """A matcher without a response answers with an empty one."""
    res = Matcher(_always).handle(_request())
    assert isinstance(res, Response)
    assert res.messages == []


def test_response_string():
    """A JSON object is parsed into a message."""
    m = Matcher(_always).response_string('{"name": "hello", "location": null}')
    assert m.handle(_request()).messages == [{"name": "hello", "location": None}]


def test_status_from_code():
    """A bare code gets its name as details."""
    res = Matcher(_always).status(grpc.StatusCode.UNAVAILABLE).handle(_request())
    assert res.status == Status(grpc.StatusCode.UNAVAILABLE, "UNAVAILABLE")
    assert res.failed


def test_status_with_details():
    """Custom details are kept, and a Status can be passed as is."""
    m = Matcher(_always).status(grpc.StatusCode.ABORTED, "busy")
    assert m.handle(_request()).status == Status(grpc.StatusCode.ABORTED, "busy")

    status = Status(grpc.StatusCode.DATA_LOSS, "lost")
    assert Matcher(_always).status(status).handle(_request()).status is status


def test_handler_replaces_previous_configuration():
    """handler() discards earlier mutations; later ones apply to its result."""
    m = (
        Matcher(_always)
        .header("dropped", "1")
        .response({"dropped": True})
        .handler(lambda r: Response(messages=[{"echo": r.message["v"]}]))
        .header("kept", "1")
        .response({"second": True})
    )
    res = m.handle(_request(v=7))
    assert res.headers == {"kept": ["1"]}
    assert res.messages == [{"echo": 7}, {"second": True}]


def test_handler_sees_the_request():
    """The handler gets the request being answered."""
    seen = []
    m = Matcher(_always).handler(lambda r: seen.append(r) or Response())
    r = _request(v=1)
    m.handle(r)
    assert seen == [r]


def test_evaluate_requires_every_predicate():
    """Predicates are ANDed."""
    m = Matcher(lambda r: r.message.get("a") == 1).match(lambda r: r.message.get("b"))
    assert m.evaluate(_request(a=1, b=True))
    assert not m.evaluate(_request(a=1, b=False))
    assert not m.evaluate(_request(a=2, b=True))


def test_service_and_method_predicates_on_a_matcher():
    """service() and method() narrow an existing matcher."""
    m = Matcher(_always).service("routeguide.RouteGuide").method("GetFeature")
    assert m.evaluate(_request())
    assert not m.evaluate(_request("routeguide.RouteGuide.ListFeatures"))
    assert not m.evaluate(_request("other.RouteGuide.GetFeature"))


@pytest.mark.parametrize(
    "method, full_name, expected",
    [
        ("GetFeature", "routeguide.RouteGuide.GetFeature", True),
        ("GetFeature", "other.Service.GetFeature", True),
        ("GetFeature", "routeguide.RouteGuide.ListFeatures", False),
        ("routeguide.RouteGuide/GetFeature", "routeguide.RouteGuide.GetFeature", True),
        ("/routeguide.RouteGuide/GetFeature", "routeguide.RouteGuide.GetFeature", True),
        ("routeguide.RouteGuide/GetFeature", "other.Service.GetFeature", False),
    ],
)
def test_method_predicate(method, full_name, expected):
    """A method matches by name, or by service and name."""
    assert method_predicate(method)(_request(full_name)) is expected


def test_service_predicate():
    """A leading slash is ignored."""
    assert service_predicate("routeguide.RouteGuide")(_request())
    assert service_predicate("/routeguide.RouteGuide")(_request())
    assert not service_predicate("RouteGuide")(_request())


def test_requests_snapshot():
    """requests() is a snapshot that does not change with later records."""
    m = Matcher(_always)
    first = _request(n=1)
    m.record(first)
    snapshot = m.requests()
    m.record(_request(n=2))

    assert snapshot == (first,)
    assert [r.message["n"] for r in m.requests()] == [1, 2]
