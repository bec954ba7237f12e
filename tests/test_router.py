import os

import pytest

from static_server.errors import AccessDenied, ClientError, MethodNotAllowed, NotFound, ServerError
from static_server.router import (
    RequestDescriptor,
    Router,
    decode_pathname,
    has_traversal_marker,
    is_contained,
    normalize_pathname,
)


def _get(target, method="GET", host="localhost"):
    return RequestDescriptor(method=method, raw_target=target, host=host)


@pytest.fixture
def router(webroot):
    return Router(str(webroot))


@pytest.mark.parametrize("target", [
    "/../etc/passwd",
    "/subdir/../../etc/passwd",
    "/%2e%2e/etc/passwd",
    "/%2E%2E/etc/passwd",
    "/%2e%2E/etc/passwd",
    "/.%2e/etc/passwd",
    "/%2e./etc/passwd",
    "/..\\..\\windows\\system32",
    "/test.html?next=..",
])
def test_traversal_markers_are_detected(target):
    assert has_traversal_marker(target)


@pytest.mark.parametrize("target", ["/", "/file.test.txt", "/a/./b", "/%2e/x", "/%252e%252e/x"])
def test_ordinary_targets_pass_prescreen(target):
    assert not has_traversal_marker(target)


def test_traversal_is_forbidden_even_when_target_exists(router, webroot):
    # /subdir/../test.html would normalize to an existing file inside the root
    with pytest.raises(AccessDenied):
        router.resolve(_get("/subdir/../test.html"))
    with pytest.raises(AccessDenied):
        router.resolve(_get("/subdir/%2e%2e/test.html"))


def test_method_gate_runs_before_path_checks(router):
    with pytest.raises(MethodNotAllowed) as exc_info:
        router.resolve(_get("/../etc/passwd", method="POST"))
    assert exc_info.value.status == 405
    assert exc_info.value.headers == {"Allow": "GET, HEAD"}


@pytest.mark.parametrize("method", ["POST", "PUT", "DELETE", "OPTIONS", "get"])
def test_only_get_and_head_are_allowed(router, method):
    with pytest.raises(MethodNotAllowed):
        router.resolve(_get("/test.html", method=method))


def test_decode_strips_query_and_percent_decodes():
    assert decode_pathname("/a%20b/c.txt?x=1#frag") == "/a b/c.txt"
    assert decode_pathname("/caf%C3%A9.txt") == "/café.txt"


def test_decode_absolute_form_target():
    assert decode_pathname("http://example.com:8080/test.html?q") == "/test.html"


@pytest.mark.parametrize("target", ["/bad%zz", "/trailing%", "/half%4", "/%ff%fe", "*", "example.com/x"])
def test_decode_failures_are_client_errors(target):
    with pytest.raises(ClientError):
        decode_pathname(target)


@pytest.mark.parametrize("host", ["exa mple.com", "host:notaport", "host:99999", "a/b", "user@host", ":8080"])
def test_bad_host_header_is_client_error(host):
    with pytest.raises(ClientError):
        decode_pathname("/test.html", host)


def test_missing_host_uses_synthetic_authority():
    assert decode_pathname("/test.html", None) == "/test.html"


def test_normalize_collapses_dots_and_separators():
    assert normalize_pathname("/./a//b/./c") == "/a/b/c"
    assert normalize_pathname("//x") == "/x"
    assert normalize_pathname("/") == "/"


def test_containment_uses_separator_boundary():
    assert is_contained("/srv/app", "/srv/app")
    assert is_contained("/srv/app", "/srv/app/index.html")
    assert not is_contained("/srv/app", "/srv/app-evil/index.html")
    assert not is_contained("/srv/app", "/srv")
    assert is_contained("/", "/etc/passwd")


def test_regular_file_resolves_with_metadata(router, webroot):
    target = router.resolve(_get("/test.txt"))
    assert target.path == os.path.realpath(webroot / "test.txt")
    assert target.size == len(b"Plain text file")
    assert not target.is_index


def test_dot_segments_without_parent_are_served(router):
    target = router.resolve(_get("/./test.html"))
    assert target.path.endswith("test.html")


def test_directory_resolves_to_index(router, webroot):
    target = router.resolve(_get("/"))
    assert target.is_index
    assert target.path == os.path.realpath(webroot / "index.html")

    target = router.resolve(_get("/subdir"))
    assert target.path == os.path.realpath(webroot / "subdir" / "index.html")


def test_directory_without_index_is_forbidden(router):
    with pytest.raises(AccessDenied):
        router.resolve(_get("/empty/"))


def test_directory_whose_index_is_a_directory_is_forbidden(router, webroot):
    (webroot / "odd" / "index.html").mkdir(parents=True)
    with pytest.raises(AccessDenied):
        router.resolve(_get("/odd/"))


def test_missing_file_is_not_found(router):
    with pytest.raises(NotFound):
        router.resolve(_get("/missing.txt"))
    with pytest.raises(NotFound):
        router.resolve(_get("/fake/path/file.txt"))


def test_path_below_a_file_is_not_found(router):
    with pytest.raises(NotFound):
        router.resolve(_get("/test.txt/child"))


def test_nul_byte_is_forbidden(router):
    with pytest.raises(AccessDenied):
        router.resolve(_get("/test.html%00.txt"))


def test_symlink_escaping_root_is_forbidden(router, webroot, tmp_path):
    secret = tmp_path / "secret.txt"
    secret.write_text("top secret")
    os.symlink(secret, webroot / "leak.txt")
    with pytest.raises(AccessDenied):
        router.resolve(_get("/leak.txt"))


def test_index_symlink_escaping_root_is_forbidden(router, webroot, tmp_path):
    secret = tmp_path / "outside.html"
    secret.write_text("outside")
    (webroot / "trap").mkdir()
    os.symlink(secret, webroot / "trap" / "index.html")
    with pytest.raises(AccessDenied):
        router.resolve(_get("/trap/"))


def test_symlink_inside_root_is_followed(router, webroot):
    os.symlink(webroot / "test.txt", webroot / "alias.txt")
    target = router.resolve(_get("/alias.txt"))
    assert target.path == os.path.realpath(webroot / "test.txt")


def test_sibling_directory_with_root_prefix_is_not_admitted(tmp_path):
    root = tmp_path / "app"
    evil = tmp_path / "app-evil"
    root.mkdir()
    evil.mkdir()
    (evil / "index.html").write_text("evil")
    os.symlink(evil, root / "link")
    with pytest.raises(AccessDenied):
        Router(str(root)).resolve(_get("/link/index.html"))


@pytest.mark.skipif(not hasattr(os, "mkfifo"), reason="requires mkfifo")
def test_non_regular_file_is_forbidden(router, webroot):
    os.mkfifo(webroot / "pipe")
    with pytest.raises(AccessDenied):
        router.resolve(_get("/pipe"))


def test_stat_failure_other_than_missing_is_server_error(router, monkeypatch):
    def broken_stat(path, *args, **kwargs):
        raise PermissionError(13, "Permission denied", path)

    monkeypatch.setattr("static_server.router.os.stat", broken_stat)
    with pytest.raises(ServerError):
        router.resolve(_get("/test.txt"))


def test_describe_names_request_path_and_file(router, webroot):
    plain = router.resolve(_get("/./test.txt"))
    assert plain.describe() == f"/test.txt -> {os.path.realpath(webroot / 'test.txt')}"

    index = router.resolve(_get("/subdir"))
    assert index.pathname == "/subdir"
    assert index.describe() == f"/subdir -> {os.path.realpath(webroot / 'subdir' / 'index.html')} (directory index)"
