"""Tests for data model classes."""

import unittest

from domain_funnel.models import (
    DomainRecord,
    FunnelPass,
    ProbeResult,
    ResolveResult,
    Stage,
    TextResult,
)

RESOLVED = ResolveResult(has_dns=True, dns_ips=("93.184.216.34",))
PROBED = ProbeResult(http_ok=True, final_url="https://example-ok.test/", status_code=200, used_https=True)
EXTRACTED = TextResult(text_ok=True, homepage_text="x" * 250)


class TestStageResults(unittest.TestCase):
    """Verify the per-stage result shapes."""

    def test_failed_constructors_are_not_ok(self):
        """failed() should yield a negative result with absent payload fields."""
        resolve = ResolveResult.failed("NXDOMAIN")
        probe = ProbeResult.failed("BareIpHost")
        text = TextResult.failed("TextTooShort")
        self.assertFalse(resolve.ok)
        self.assertIsNone(resolve.dns_ips)
        self.assertFalse(probe.ok)
        self.assertIsNone(probe.final_url)
        self.assertIsNone(probe.status_code)
        self.assertFalse(probe.used_https)
        self.assertFalse(text.ok)
        self.assertIsNone(text.homepage_text)
        self.assertEqual(text.error_type, "TextTooShort")

    def test_results_are_immutable(self):
        """Frozen dataclass should raise on attribute assignment."""
        with self.assertRaises(AttributeError):
            RESOLVED.has_dns = False


class TestDomainRecordFromStages(unittest.TestCase):
    """Verify the fold from stage results to a record."""

    def test_all_stages_ok(self):
        """Every stage succeeding should reach stage=text with all fields set."""
        record = DomainRecord.from_stages("example-ok.test", RESOLVED, PROBED, EXTRACTED)
        self.assertIs(record.stage, Stage.TEXT)
        self.assertTrue(record.has_dns and record.http_ok and record.text_ok)
        self.assertEqual(record.dns_ips, ("93.184.216.34",))
        self.assertEqual(record.final_url, "https://example-ok.test/")
        self.assertTrue(record.used_https)
        self.assertEqual(len(record.homepage_text), 250)

    def test_dns_failure(self):
        """A failed lookup should produce stage=fail with everything absent."""
        record = DomainRecord.from_stages("no-dns.test", ResolveResult.failed("NXDOMAIN"))
        self.assertIs(record.stage, Stage.FAIL)
        self.assertFalse(record.has_dns)
        self.assertIsNone(record.dns_ips)
        self.assertFalse(record.http_ok)
        self.assertIsNone(record.final_url)
        self.assertIsNone(record.status_code)
        self.assertFalse(record.text_ok)
        self.assertIsNone(record.homepage_text)

    def test_probe_failure(self):
        """A failed probe should stop at stage=dns."""
        record = DomainRecord.from_stages("a.test", RESOLVED, ProbeResult.failed("HTTP_500"))
        self.assertIs(record.stage, Stage.DNS)
        self.assertTrue(record.has_dns)
        self.assertFalse(record.http_ok)
        self.assertFalse(record.used_https)
        self.assertIsNone(record.final_url)

    def test_text_failure(self):
        """A failed extraction should stop at stage=http and keep the probe fields."""
        record = DomainRecord.from_stages("a.test", RESOLVED, PROBED, TextResult.failed("TextTooShort"))
        self.assertIs(record.stage, Stage.HTTP)
        self.assertTrue(record.http_ok)
        self.assertEqual(record.status_code, 200)
        self.assertFalse(record.text_ok)
        self.assertIsNone(record.homepage_text)

    def test_later_results_ignored_after_failure(self):
        """Results for stages after the first failure must not leak into the record."""
        record = DomainRecord.from_stages("a.test", ResolveResult.failed(), PROBED, EXTRACTED)
        self.assertIs(record.stage, Stage.FAIL)
        self.assertFalse(record.http_ok)
        self.assertIsNone(record.homepage_text)

    def test_failed_record(self):
        """DomainRecord.failed should be the all-absent stage=fail record."""
        record = DomainRecord.failed("boom.test")
        self.assertEqual(record, DomainRecord.from_stages("boom.test", ResolveResult.failed()))


class TestDomainRecordInvariants(unittest.TestCase):
    """Verify that inconsistent records are rejected."""

    def _kwargs(self, **overrides):
        kwargs = DomainRecord.from_stages("a.test", RESOLVED, PROBED, EXTRACTED).__dict__.copy()
        kwargs.update(overrides)
        return kwargs

    def test_empty_domain_rejected(self):
        with self.assertRaises(ValueError):
            DomainRecord(**self._kwargs(domain=""))

    def test_dns_ips_without_has_dns_rejected(self):
        with self.assertRaises(ValueError):
            DomainRecord(**self._kwargs(has_dns=False))

    def test_empty_string_text_is_not_absent(self):
        """An empty string is present-but-empty, so text_ok=False with "" must fail."""
        with self.assertRaises(ValueError):
            DomainRecord(**self._kwargs(text_ok=False, homepage_text="", stage=Stage.HTTP))

    def test_stage_must_match_flags(self):
        with self.assertRaises(ValueError):
            DomainRecord(**self._kwargs(stage=Stage.DNS))

    def test_used_https_requires_http_ok(self):
        with self.assertRaises(ValueError):
            DomainRecord(
                domain="a.test",
                has_dns=True,
                dns_ips=("1.2.3.4",),
                http_ok=False,
                final_url=None,
                status_code=None,
                used_https=True,
                text_ok=False,
                homepage_text=None,
                stage=Stage.DNS,
            )


class TestDomainRecordToRow(unittest.TestCase):
    """Verify the storage row shape."""

    def test_row_uses_none_for_absent_fields(self):
        row = DomainRecord.from_stages("a.test", RESOLVED, ProbeResult.failed()).to_row()
        self.assertEqual(row["dns_ips"], ["93.184.216.34"])
        self.assertIsNone(row["final_url"])
        self.assertIsNone(row["status_code"])
        self.assertIsNone(row["homepage_text"])
        self.assertEqual(row["stage"], "dns")

    def test_funnel_pass_defaults(self):
        result = FunnelPass(record=DomainRecord.failed("a.test"))
        self.assertFalse(result.fault)
        self.assertIsNone(result.error_type)
        self.assertEqual(result.latencies_ms, {})


if __name__ == "__main__":
    unittest.main()
