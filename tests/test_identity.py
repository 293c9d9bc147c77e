"""Tests for refcrawl.identity module."""

import pytest

from refcrawl.document import SeriesInfo, SpecDescriptor
from refcrawl.identity import (
    EquivalenceMap,
    IdentityTables,
    ResolutionStatus,
    ShortnameError,
    SpecIdentityResolver,
    canonicalize_url,
    canonicalizes_to,
    compute_shortname,
    dated_shortname,
    is_latest_level_that_passes,
    load_identity_tables,
    match_referenceable_spec_url,
    match_spec_url,
    normalize_link,
    spec_level,
)


def _css_color():
    return SpecDescriptor(
        url="https://www.w3.org/TR/css-color/",
        shortname="css-color",
        series=SeriesInfo("css-color", "css-color"),
        nightly_url="https://drafts.csswg.org/css-color/",
        release_url="https://www.w3.org/TR/css-color/",
    )


def _dom():
    return SpecDescriptor(
        url="https://dom.spec.whatwg.org/",
        shortname="dom",
        nightly_url="https://dom.spec.whatwg.org/",
    )


class TestCanonicalizeUrl:
    def test_strips_fragment_and_index_page(self):
        url = "http://www.w3.org/TR/css-color-4/Overview.html#foo"
        assert canonicalize_url(url) == "https://www.w3.org/TR/css-color-4/"

    def test_whatwg_multipage(self):
        url = "https://html.spec.whatwg.org/multipage/dom.html#elements"
        assert canonicalize_url(url) == "https://html.spec.whatwg.org/"

    def test_tr_without_slash(self):
        assert canonicalize_url("https://www.w3.org/TR/webidl") == "https://www.w3.org/TR/webidl/"

    def test_github_without_slash(self):
        assert canonicalize_url("https://w3c.github.io/webauthn") == "https://w3c.github.io/webauthn/"

    def test_dated_kept_by_default(self):
        url = "https://www.w3.org/TR/2021/WD-css-color-4-20210601/"
        assert canonicalize_url(url) == url

    def test_dated_to_latest(self):
        url = "https://www.w3.org/TR/2021/WD-css-color-4-20210601/"
        assert canonicalize_url(url, dated_to_latest=True) == "https://www.w3.org/TR/css-color-4/"

    def test_canonicalizes_to(self):
        assert canonicalizes_to(
            "https://www.w3.org/TR/webidl/#idl-types",
            ["https://example.org/", "http://www.w3.org/TR/webidl"],
        )
        assert not canonicalizes_to("https://www.w3.org/TR/webidl/", "https://webidl.spec.whatwg.org/")


class TestLinks:
    def test_normalize_link(self):
        assert normalize_link("https://w3c.github.io/foo/index.html#bar") == "https://w3c.github.io/foo/"
        assert normalize_link("https://dom.spec.whatwg.org") == "https://dom.spec.whatwg.org/"

    def test_dated_shortname(self):
        url = "https://www.w3.org/TR/2021/REC-css-color-4-20210101/#x"
        assert dated_shortname(url) == "css-color-4"
        assert dated_shortname("https://www.w3.org/TR/css-color-4/") is None

    @pytest.mark.parametrize(
        "url",
        [
            "https://drafts.csswg.org/css-grid/",
            "https://dom.spec.whatwg.org/#concept-node",
            "https://www.w3.org/TR/webidl/",
            "https://wicg.github.io/scroll-to-text-fragment/",
            "https://drafts.fxtf.org/filter-effects/",
        ],
    )
    def test_spec_urls(self, url):
        assert match_spec_url(url)

    @pytest.mark.parametrize(
        "url",
        [
            "https://wiki.csswg.org/spec",
            "https://drafts.csswg.org/issues",
            "https://w3c.github.io/test-results/css-grid/",
            "https://example.com/",
            "https://www.w3.org/TR/",
        ],
    )
    def test_not_spec_urls(self, url):
        assert not match_spec_url(url)

    def test_referenceable(self):
        assert match_referenceable_spec_url("https://w3c.github.io/webauthn/")
        assert match_referenceable_spec_url("https://www.w3.org/TR/2020/REC-a-20200101/")
        assert not match_referenceable_spec_url("https://drafts.csswg.org/css-grid/")
        assert not match_referenceable_spec_url("https://wicg.github.io/foo/")


class TestComputeShortname:
    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://www.w3.org/TR/css-color-4/", "css-color-4"),
            ("https://dom.spec.whatwg.org/", "dom"),
            ("https://tc39.es/proposal-temporal/", "tc39-temporal"),
            ("https://w3c.github.io/webappsec-csp/", "csp"),
            ("https://w3c.github.io/webauthn/", "webauthn"),
            ("https://drafts.csswg.org/css-grid-2/", "css-grid-2"),
            ("https://svgwg.org/specs/strokes/", "svg-strokes"),
            ("https://immersive-web.github.io/webxr/extensions.html", "webxr-extensions"),
            ("dom", "dom"),
        ],
    )
    def test_rules(self, url, expected):
        assert compute_shortname(url) == expected

    def test_unknown_host_raises(self):
        with pytest.raises(ShortnameError):
            compute_shortname("https://example.org/foo")

    def test_invalid_characters_raise(self):
        with pytest.raises(ShortnameError, match="unexpected characters"):
            compute_shortname("foo bar")


class TestIdentityTables:
    def test_packaged_tables(self):
        tables = load_identity_tables()
        assert tables.aliases["css3-color"] == "css-color"
        assert tables.outdated["cors"] == "fetch"
        assert "clreq" in tables.non_normative
        assert "SVG2" in tables.obsolete_dfns_model

    def test_tables_are_read_only(self):
        tables = load_identity_tables()
        with pytest.raises(TypeError):
            tables.aliases["new"] = "thing"

    def test_from_dict_defaults(self):
        tables = IdentityTables.from_dict({})
        assert dict(tables.aliases) == {}
        assert tables.non_normative == frozenset()


class TestEquivalenceMap:
    def test_transitive(self):
        equivalents = EquivalenceMap()
        equivalents.add("https://a.example/", "https://b.example/")
        equivalents.add("https://b.example/", "https://c.example/")
        assert equivalents.same("https://a.example/", "https://c.example/")
        assert equivalents.representative("https://c.example/#x") == "https://a.example/"

    def test_primary_becomes_representative(self):
        equivalents = EquivalenceMap()
        equivalents.add("https://a.example/", "https://z.example/", primary="https://z.example/")
        assert equivalents.representative("https://a.example/") == "https://z.example/"

    def test_classes_partition_urls(self):
        equivalents = EquivalenceMap()
        equivalents.add("https://a.example/", "https://b.example/", shortname="ab")
        equivalents.add("https://c.example/", shortname="c")
        classes = equivalents.classes()
        assert len(classes) == 2
        seen = [url for item in classes for url in item.urls]
        assert len(seen) == len(set(seen)) == 3
        assert equivalents.class_of("https://b.example/").shortnames == ("ab",)

    def test_unknown_url_is_its_own_class(self):
        equivalents = EquivalenceMap()
        assert equivalents.representative("https://z.example/page#frag") == "https://z.example/page"
        assert equivalents.class_of("https://z.example/") is None

    def test_dated_urls_join_latest(self):
        equivalents = EquivalenceMap.build(
            [
                SpecDescriptor(
                    url="https://www.w3.org/TR/b/",
                    shortname="b",
                    nightly_url="https://w3c.github.io/b/",
                )
            ]
        )
        assert equivalents.same(
            "https://www.w3.org/TR/2020/REC-b-20200101/", "https://w3c.github.io/b/"
        )


class TestResolver:
    def _resolver(self, *specs):
        return SpecIdentityResolver(list(specs) or [_css_color(), _dom()])

    def test_dated_url_with_level_resolves_to_series(self):
        resolution = self._resolver().resolve("https://www.w3.org/TR/2021/REC-css-color-4-20210101/")
        assert resolution.status is ResolutionStatus.RESOLVED
        assert resolution.descriptor.shortname == "css-color"
        assert resolution.dated is True

    def test_exact_url(self):
        resolution = self._resolver().resolve("https://dom.spec.whatwg.org/#concept-node")
        assert resolution.resolved
        assert resolution.descriptor.shortname == "dom"

    def test_alias(self):
        resolution = self._resolver().resolve("https://www.w3.org/TR/css3-color/")
        assert resolution.resolved
        assert resolution.shortname == "css-color"

    def test_outdated(self):
        resolution = self._resolver().resolve("https://www.w3.org/TR/cors/")
        assert resolution.status is ResolutionStatus.OUTDATED_SPEC
        assert resolution.replacement == "fetch"

    def test_non_normative(self):
        resolution = self._resolver().resolve("https://www.w3.org/TR/clreq/")
        assert resolution.status is ResolutionStatus.NON_NORMATIVE

    def test_unknown(self):
        assert self._resolver().resolve("https://www.w3.org/TR/no-such-spec/").status is ResolutionStatus.UNKNOWN_SPEC
        assert self._resolver().resolve("https://example.org/foo").status is ResolutionStatus.UNKNOWN_SPEC

    def test_unknown_dated(self):
        resolution = self._resolver().resolve("https://www.w3.org/TR/2019/WD-foo-bar-20190101/")
        assert resolution.status is ResolutionStatus.DATED_URL
        assert resolution.shortname == "foo-bar"

    def test_self_link_via_nightly(self):
        css_color = _css_color()
        resolver = self._resolver(css_color, _dom())
        resolution = resolver.resolve("https://drafts.csswg.org/css-color/#foo", css_color)
        assert resolution.status is ResolutionStatus.SELF

    def test_dated_self_link(self):
        dom = _dom()
        resolver = self._resolver(_css_color(), dom)
        resolution = resolver.resolve("https://www.w3.org/TR/2015/REC-dom-20151119/", dom)
        assert resolution.status is ResolutionStatus.SELF
        assert resolution.dated is True

    def test_resolution_is_deterministic(self):
        resolver = self._resolver()
        url = "https://www.w3.org/TR/2021/REC-css-color-4-20210101/"
        assert resolver.resolve(url) == resolver.resolve(url)

    def test_find_by_series_shortname(self):
        spec = SpecDescriptor(
            url="https://www.w3.org/TR/css-grid-2/",
            shortname="css-grid-2",
            series=SeriesInfo("css-grid", "css-grid-2"),
        )
        assert self._resolver(spec).find_by_shortname("css-grid") is spec


class TestLevels:
    def _series(self):
        level4 = SpecDescriptor(
            url="https://a.example/4/",
            shortname="css-color-4",
            series=SeriesInfo("css-color", "css-color-5"),
            series_version="4",
        )
        level5 = SpecDescriptor(
            url="https://a.example/5/",
            shortname="css-color-5",
            series=SeriesInfo("css-color", "css-color-5"),
            series_version="5",
        )
        return level4, level5

    def test_spec_level(self):
        level4, _ = self._series()
        assert spec_level(level4) == 4.0
        assert spec_level(SpecDescriptor(url="https://x/", shortname="css-grid-2")) == 2.0
        assert spec_level(SpecDescriptor(url="https://x/", shortname="dom")) == 0.0

    def test_latest_level(self):
        level4, level5 = self._series()
        specs = [level4, level5]
        assert not is_latest_level_that_passes(level4, specs)
        assert is_latest_level_that_passes(level5, specs)

    def test_latest_level_with_predicate(self):
        level4, level5 = self._series()
        specs = [level4, level5]
        passes = lambda spec: spec is level4  # noqa: E731
        assert is_latest_level_that_passes(level4, specs, passes)
        assert not is_latest_level_that_passes(level5, specs, passes)

    def test_delta_loses_to_full(self):
        level4, _ = self._series()
        delta = SpecDescriptor(
            url="https://a.example/4-delta/",
            shortname="css-color-4-delta",
            series=SeriesInfo("css-color", "css-color-4"),
            series_version="4",
            series_composition="delta",
        )
        specs = [delta, level4]
        assert is_latest_level_that_passes(level4, specs)
        assert not is_latest_level_that_passes(delta, specs)
