import pytest

from eci_profile.errors import CacheLookupError, SelectorConfigError
from eci_profile.resolver import SelectorResolver


def test_resolve_picks_highest_priority(fake_cache, make_selector, make_pod):
    cache = fake_cache([make_selector(name=f"s{p}", priority=p) for p in (2, 5, 1, 4, 3)])
    selector = SelectorResolver(cache).resolve(make_pod())
    assert selector.name == "s5"


def test_resolve_no_selectors(fake_cache, make_pod):
    assert SelectorResolver(fake_cache()).resolve(make_pod()) is None


def test_resolve_no_match(fake_cache, make_selector, make_pod):
    cache = fake_cache([make_selector(object_labels={"matchLabels": {"app": "web"}})])
    assert SelectorResolver(cache).resolve(make_pod(labels={"app": "db"})) is None


def test_resolve_skips_non_matching_higher_priority(fake_cache, make_selector, make_pod):
    cache = fake_cache(
        [
            make_selector(name="high", priority=100, namespace_labels={"matchLabels": {"burst": "on"}}),
            make_selector(name="low", priority=1),
        ],
        namespaces={"default": {"burst": "off"}},
    )
    assert SelectorResolver(cache).resolve(make_pod()).name == "low"


def test_resolve_namespace_lookup_only_when_needed(fake_cache, make_selector, make_pod):
    cache = fake_cache([make_selector(name="any")])
    assert SelectorResolver(cache).resolve(make_pod(namespace="missing")).name == "any"


def test_resolve_namespace_missing(fake_cache, make_selector, make_pod):
    cache = fake_cache([make_selector(namespace_labels={"matchLabels": {"burst": "on"}})])
    with pytest.raises(CacheLookupError):
        SelectorResolver(cache).resolve(make_pod(namespace="missing"))


def test_resolve_malformed_selector(fake_cache, make_selector, make_pod):
    cache = fake_cache([
        make_selector(name="ok"),
        make_selector(name="bad", object_labels={"matchExpressions": [{"key": "a", "operator": "Nope"}]}),
    ])
    with pytest.raises(SelectorConfigError):
        SelectorResolver(cache).resolve(make_pod())


def test_resolve_list_failure(make_pod):
    class BrokenCache:
        def list_selectors(self):
            raise CacheLookupError("failed to list selectors")

    with pytest.raises(CacheLookupError):
        SelectorResolver(BrokenCache()).resolve(make_pod())
