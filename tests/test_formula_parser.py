"""Tests for best-effort extraction from formula source files."""

import textwrap

import pytest

from brewcatalog.domain.errors import FormulaParseError
from brewcatalog.services.formula_parser import (
    load_formula_source,
    parse_formula_source,
    version_from_url,
)

FORMULA = textwrap.dedent(
    """
    class Mytool < Formula
      desc "A tool from a third-party tap"
      homepage "https://mytool.example.org"
      url "https://mytool.example.org/releases/mytool-2.3.1.tar.gz"
      url "https://mirror.example.org/mytool-2.3.1.tar.gz"
      license "Apache-2.0"
      revision 2

      depends_on "pkg-config" => :build
      depends_on "openssl@3"
      depends_on "zlib"
      depends_on "openssl@3"

      conflicts_with "othertool", because: "both install `mytool`"

      deprecate! date: "2024-01-01", because: :unmaintained
    end
    """
)


class TestParseFormulaSource:
    def test_full_formula(self):
        pkg = parse_formula_source(FORMULA, "mytool", "someone/tap")

        assert pkg.name == "mytool"
        assert pkg.tap == "someone/tap"
        assert pkg.version == "2.3.1"
        assert pkg.revision == 2
        assert pkg.desc == "A tool from a third-party tap"
        assert pkg.homepage == "https://mytool.example.org"
        assert pkg.urls == [
            "https://mytool.example.org/releases/mytool-2.3.1.tar.gz",
            "https://mirror.example.org/mytool-2.3.1.tar.gz",
        ]
        assert pkg.license == "Apache-2.0"
        assert pkg.dependencies == ["openssl@3", "zlib"]
        assert pkg.build_dependencies == ["pkg-config"]
        assert pkg.conflicts == ["othertool"]
        assert pkg.is_deprecated
        assert not pkg.is_disabled
        assert not pkg.is_cask

    def test_explicit_version_and_tag(self):
        content = 'desc "x"\nhomepage "https://x.test"\nversion "1.0"\n'
        assert parse_formula_source(content, "x").version == "1.0"

        content = 'desc "x"\nhomepage "https://x.test"\nurl "https://x.test/x.git", tag: "v3.4.5"\n'
        assert parse_formula_source(content, "x").version == "3.4.5"

    @pytest.mark.parametrize(
        "content, missing",
        [
            ('homepage "https://x.test"\nversion "1.0"\n', "desc"),
            ('desc "x"\nversion "1.0"\n', "homepage"),
            ('desc "x"\nhomepage "https://x.test"\n', "version"),
        ],
    )
    def test_required_fields(self, content, missing):
        with pytest.raises(FormulaParseError, match=missing):
            parse_formula_source(content, "x")

    def test_disabled_marker(self):
        content = 'desc "x"\nhomepage "https://x.test"\nversion "1"\ndisable! date: "2024-01-01"\n'
        assert parse_formula_source(content, "x").is_disabled


class TestVersionFromUrl:
    @pytest.mark.parametrize(
        "url, expected",
        [
            ("https://x.test/foo-1.2.3.tar.gz", "1.2.3"),
            ("https://x.test/v2.0.1.zip", "2.0.1"),
            ("https://x.test/download/latest", ""),
        ],
    )
    def test_version_from_url(self, url, expected):
        assert version_from_url(url) == expected


class TestLoadFormulaSource:
    async def test_reads_file(self, tmp_path):
        path = tmp_path / "mytool.rb"
        path.write_text(FORMULA)
        pkg = await load_formula_source(str(path), "mytool", "someone/tap")
        assert pkg.version == "2.3.1"

    async def test_missing_file(self, tmp_path):
        with pytest.raises(FormulaParseError):
            await load_formula_source(str(tmp_path / "absent.rb"), "absent")

    async def test_no_path(self):
        with pytest.raises(FormulaParseError):
            await load_formula_source("", "absent")
