import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import requests

from securelog_analyzer.src import reputation as rep
from securelog_analyzer.src.models import UNKNOWN_ADDRESS, ReputationRecord, RiskLevel, Trend
from securelog_analyzer.src.utils import TTLCache

NOW = datetime(2024, 1, 16, 12, 0, tzinfo=timezone.utc)


def make_record(**overrides):
    fields = dict(
        address="45.33.32.156",
        abuse_score=0,
        report_count=0,
        last_reported_at=None,
        is_listed=False,
        country="US",
        organization="Example ISP",
        trend=Trend.STABLE,
        categories=[],
        risk_level=RiskLevel.LOW,
        source=rep.SOURCE_ABUSEIPDB,
        updated_at=NOW,
    )
    fields.update(overrides)
    return ReputationRecord(**fields)


class FakeService:
    """Stands in for AbuseIPDBClient and records every address it is asked about."""

    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def check(self, address, now=None):
        self.calls.append(address)
        if self.error is not None:
            raise self.error
        return make_record(address=address, abuse_score=80, report_count=40)

    def test_connection(self):
        return {"connected": True, "message": "ok"}


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def make_client(service=None, clock=None, sleeps=None):
    clock = clock or FakeClock()
    sleeps = sleeps if sleeps is not None else []
    return rep.ReputationClient(
        cache=TTLCache(24 * 3600, clock=clock),
        service=service,
        batch_delay=1.0,
        sleep=sleeps.append,
        clock=clock,
    )


class TestReputationBoost(unittest.TestCase):
    def test_worst_case_is_capped(self):
        record = rep.LocalReputationStore().lookup("192.0.2.100", now=NOW)
        self.assertEqual(rep.reputation_boost(record, now=NOW), 50.0)

    def test_no_report_date_gets_no_recency(self):
        self.assertEqual(rep.reputation_boost(make_record(abuse_score=50), now=NOW), 20.0)

    def test_recency_bands(self):
        for days, expected in ((3, 10.0), (20, 5.0), (60, 2.0), (120, 0.0)):
            with self.subTest(days=days):
                record = make_record(last_reported_at=NOW - timedelta(days=days))
                self.assertEqual(rep.reputation_boost(record, now=NOW), expected)

    def test_improving_trend_lowers_boost(self):
        self.assertEqual(rep.reputation_boost(make_record(trend=Trend.IMPROVING), now=NOW), -5.0)

    def test_high_risk_country_and_listing(self):
        record = make_record(country="IR", is_listed=True, report_count=50)
        self.assertEqual(rep.reputation_boost(record, now=NOW), 35.0)


class TestLocalStore(unittest.TestCase):
    def setUp(self):
        self.store = rep.LocalReputationStore()

    def test_seeded_address(self):
        record = self.store.lookup("198.51.100.100", now=NOW)
        self.assertEqual(record.abuse_score, 78)
        self.assertTrue(record.is_listed)
        self.assertEqual(record.last_reported_at, NOW - timedelta(days=2))
        self.assertEqual(record.source, rep.SOURCE_LOCAL)

    def test_known_range(self):
        record = self.store.lookup("203.0.113.7", now=NOW)
        self.assertEqual(record.categories, ["botnet_c2"])
        self.assertEqual(record.risk_level, RiskLevel.CRITICAL)
        self.assertEqual(record.abuse_score, 85)
        self.assertTrue(record.is_listed)

    def test_cidr_uses_real_masking(self):
        self.assertEqual(self.store.lookup("172.17.5.5", now=NOW).categories, ["private_network"])
        self.assertNotEqual(self.store.lookup("172.32.0.1", now=NOW).categories, ["private_network"])

    def test_generated_records_are_deterministic(self):
        first = self.store.lookup("45.33.32.156", now=NOW)
        second = rep.LocalReputationStore().lookup("45.33.32.156", now=NOW)
        self.assertEqual(first, second)
        self.assertEqual(first.country, "Unknown")
        self.assertLess(first.report_count, 5)

    def test_suspicious_asn_annotation(self):
        record = self.store.lookup("198.18.0.1", now=NOW)
        self.assertEqual(record.country, "RU")
        self.assertIn("suspicious_asn", record.categories)
        self.assertIn("AS6128", record.organization)
        self.assertEqual(record.risk_level, RiskLevel.LOW)

    def test_invalid_and_sentinel_are_neutral(self):
        for address in ("999.1.1.1", UNKNOWN_ADDRESS):
            with self.subTest(address=address):
                record = self.store.lookup(address, now=NOW)
                self.assertEqual(record.abuse_score, 0)
                self.assertIsNone(record.last_reported_at)
                self.assertEqual(rep.reputation_boost(record, now=NOW), 0.0)


class TestReputationClient(unittest.TestCase):
    def test_cache_prevents_repeat_calls(self):
        service = FakeService()
        client = make_client(service)
        first = client.lookup("45.33.32.156", now=NOW)
        second = client.lookup("45.33.32.156", now=NOW)
        self.assertIs(first, second)
        self.assertEqual(service.calls, ["45.33.32.156"])
        self.assertEqual(first.source, rep.SOURCE_ABUSEIPDB)

    def test_cache_expires(self):
        clock = FakeClock()
        service = FakeService()
        client = make_client(service, clock=clock)
        client.lookup("45.33.32.156", now=NOW)
        clock.now += 24 * 3600 + 1
        client.lookup("45.33.32.156", now=NOW)
        self.assertEqual(len(service.calls), 2)

    def test_without_service_uses_local_store(self):
        record = make_client().lookup("192.0.2.100", now=NOW)
        self.assertEqual(record.source, rep.SOURCE_LOCAL)
        self.assertEqual(record.abuse_score, 95)

    def test_invalid_addresses_never_reach_service(self):
        service = FakeService()
        client = make_client(service)
        client.lookup("999.1.1.1", now=NOW)
        client.lookup(UNKNOWN_ADDRESS, now=NOW)
        self.assertEqual(service.calls, [])

    def test_rate_limit_backs_off_and_falls_back(self):
        clock = FakeClock()
        service = FakeService(error=rep.ReputationRateLimitError("slow down", retry_after=60))
        client = make_client(service, clock=clock)

        record = client.lookup("203.0.113.7", now=NOW)
        self.assertEqual(record.source, rep.SOURCE_LOCAL)
        # fallback result is cached
        self.assertIs(client.lookup("203.0.113.7", now=NOW), record)

        client.lookup("45.33.32.156", now=NOW)
        self.assertEqual(service.calls, ["203.0.113.7"])

        clock.now += 61
        client.lookup("45.33.32.157", now=NOW)
        self.assertEqual(service.calls, ["203.0.113.7", "45.33.32.157"])

    def test_auth_error_disables_service(self):
        clock = FakeClock()
        service = FakeService(error=rep.ReputationAuthError("bad key"))
        client = make_client(service, clock=clock)
        client.lookup("45.33.32.1", now=NOW)
        clock.now += 10 * 24 * 3600
        client.lookup("45.33.32.2", now=NOW)
        self.assertEqual(service.calls, ["45.33.32.1"])
        self.assertFalse(client.stats()["service_available"])

    def test_transient_error_does_not_disable(self):
        service = FakeService(error=rep.ReputationServiceError("boom"))
        client = make_client(service)
        client.lookup("45.33.32.1", now=NOW)
        client.lookup("45.33.32.2", now=NOW)
        self.assertEqual(len(service.calls), 2)

    def test_lookup_many_dedupes_and_delays_between_external_calls(self):
        sleeps = []
        service = FakeService()
        client = make_client(service, sleeps=sleeps)
        results = client.lookup_many(["45.33.32.1", "45.33.32.2", "45.33.32.1"], now=NOW)
        self.assertEqual(list(results), ["45.33.32.1", "45.33.32.2"])
        self.assertEqual(service.calls, ["45.33.32.1", "45.33.32.2"])
        self.assertEqual(sleeps, [1.0])

    def test_lookup_many_local_only_never_sleeps(self):
        sleeps = []
        client = make_client(sleeps=sleeps)
        client.lookup_many(["45.33.32.1", "45.33.32.2", "45.33.32.3"], now=NOW)
        self.assertEqual(sleeps, [])

    def test_stats_and_clear(self):
        client = make_client()
        client.lookup("45.33.32.1", now=NOW)
        stats = client.stats()
        self.assertEqual(stats["cached_addresses"], 1)
        self.assertEqual(stats["cache_ttl_hours"], 24)
        client.clear_cache()
        self.assertEqual(client.stats()["cached_addresses"], 0)

    def test_connection_without_service(self):
        self.assertFalse(make_client().test_connection()["connected"])
        self.assertTrue(make_client(FakeService()).test_connection()["connected"])


class TestAbuseIPDBClient(unittest.TestCase):
    def make_response(self, status=200, body=None, headers=None):
        resp = Mock()
        resp.status_code = status
        resp.ok = 200 <= status < 300
        resp.reason = "Error" if status >= 400 else "OK"
        resp.headers = headers or {}
        resp.json.return_value = body
        return resp

    def make_client(self, resp):
        session = Mock()
        session.get.return_value = resp
        return rep.AbuseIPDBClient("secret", base_url="https://abuse.test/api/v2", session=session), session

    def test_check_converts_response(self):
        body = {
            "data": {
                "ipAddress": "45.33.32.156",
                "abuseConfidenceScore": 88,
                "countryCode": "CN",
                "isp": "Example Hosting",
                "totalReports": 150,
                "lastReportedAt": "2024-01-15T08:00:00+00:00",
                "isWhitelisted": False,
                "reports": [{"abuseCategory": [22, 18]}, {"abuseCategory": [18]}],
            }
        }
        client, session = self.make_client(self.make_response(body=body))
        record = client.check("45.33.32.156", now=NOW)

        kwargs = session.get.call_args.kwargs
        self.assertEqual(session.get.call_args.args[0], "https://abuse.test/api/v2/check")
        self.assertEqual(kwargs["headers"]["Key"], "secret")
        self.assertEqual(kwargs["params"]["ipAddress"], "45.33.32.156")
        self.assertEqual(kwargs["params"]["maxAgeInDays"], 90)

        self.assertEqual(record.source, rep.SOURCE_ABUSEIPDB)
        self.assertEqual(record.risk_level, RiskLevel.CRITICAL)
        self.assertTrue(record.is_listed)
        self.assertEqual(record.trend, Trend.DECLINING)
        self.assertEqual(record.categories, ["sql_injection", "category_22"])
        self.assertEqual(record.last_reported_at, datetime(2024, 1, 15, 8, tzinfo=timezone.utc))

    def test_whitelisted_is_not_listed(self):
        body = {"data": {"ipAddress": "8.8.4.4", "abuseConfidenceScore": 90, "isWhitelisted": True,
                         "totalReports": 3, "lastReportedAt": None}}
        client, _ = self.make_client(self.make_response(body=body))
        record = client.check("8.8.4.4", now=NOW)
        self.assertFalse(record.is_listed)
        self.assertEqual(record.trend, Trend.IMPROVING)
        self.assertIsNone(record.last_reported_at)
        self.assertEqual(record.categories, ["suspicious"])

    def test_unauthorized(self):
        client, _ = self.make_client(self.make_response(status=401))
        with self.assertRaises(rep.ReputationAuthError):
            client.check("45.33.32.156")

    def test_rate_limited_carries_retry_after(self):
        client, _ = self.make_client(self.make_response(status=429, headers={"Retry-After": "120"}))
        with self.assertRaises(rep.ReputationRateLimitError) as ctx:
            client.check("45.33.32.156")
        self.assertEqual(ctx.exception.retry_after, 120.0)

    def test_rate_limited_default_backoff(self):
        client, _ = self.make_client(self.make_response(status=429))
        with self.assertRaises(rep.ReputationRateLimitError) as ctx:
            client.check("45.33.32.156")
        self.assertEqual(ctx.exception.retry_after, 60.0)

    def test_server_error(self):
        client, _ = self.make_client(self.make_response(status=503))
        with self.assertRaises(rep.ReputationServiceError):
            client.check("45.33.32.156")

    def test_network_failure(self):
        session = Mock()
        session.get.side_effect = requests.ConnectionError("unreachable")
        client = rep.AbuseIPDBClient("secret", session=session)
        with self.assertRaises(rep.ReputationServiceError):
            client.check("45.33.32.156")

    def test_malformed_body(self):
        resp = self.make_response(body=None)
        resp.json.side_effect = ValueError("not json")
        client, _ = self.make_client(resp)
        with self.assertRaises(rep.ReputationServiceError):
            client.check("45.33.32.156")

        client, _ = self.make_client(self.make_response(body={"data": {"ipAddress": "1.2.3.4"}}))
        with self.assertRaises(rep.ReputationServiceError):
            client.check("1.2.3.4")

    def test_connection_reports_quota(self):
        ok = self.make_response(body={"data": {}}, headers={"X-RateLimit-Remaining": "998"})
        client, _ = self.make_client(ok)
        result = client.test_connection()
        self.assertTrue(result["connected"])
        self.assertEqual(result["quota_remaining"], 998)

        client, _ = self.make_client(self.make_response(status=401))
        self.assertFalse(client.test_connection()["connected"])


class TestRecommendationsAndConfidence(unittest.TestCase):
    def test_critical_listed_botnet(self):
        record = make_record(abuse_score=90, is_listed=True, report_count=150,
                             categories=["botnets", "ddos"], trend=Trend.DECLINING)
        recs = rep.reputation_recommendations(record)
        self.assertTrue(recs[0].startswith("CRITICAL: IP has CRITICAL abuse score (90/100)"))
        self.assertIn("IP is blacklisted - Add to firewall blocklist", recs)
        self.assertIn("Botnet activity detected - Check for C2 communication", recs)
        self.assertIn("DDoS participant - Enable DDoS protection", recs)
        self.assertIn("Reputation declining - Increase monitoring", recs)

    def test_clean_record(self):
        self.assertEqual(rep.reputation_recommendations(make_record()), ["No abuse history - IP appears safe"])
        self.assertEqual(
            rep.reputation_recommendations(make_record(abuse_score=20, report_count=2)),
            ["Monitor for future activity"],
        )

    def test_local_records_get_risk_level_advice(self):
        critical = make_record(risk_level=RiskLevel.CRITICAL, country="RU", source=rep.SOURCE_LOCAL)
        recs = rep.reputation_recommendations(critical)
        self.assertIn("Block source IP range on firewall or WAF", recs)
        self.assertIn("Enable geo-blocking for RU if not needed", recs)

        unknown = make_record(risk_level=RiskLevel.CRITICAL, country="Unknown", source=rep.SOURCE_LOCAL)
        self.assertFalse(any("geo-blocking" in r for r in rep.reputation_recommendations(unknown)))

        high = make_record(risk_level=RiskLevel.HIGH, source=rep.SOURCE_LOCAL)
        self.assertIn("Add IP to watchlist - Monitor for escalation", rep.reputation_recommendations(high))
        medium = make_record(risk_level=RiskLevel.MEDIUM, abuse_score=30, report_count=3, source=rep.SOURCE_LOCAL)
        self.assertEqual(rep.reputation_recommendations(medium), ["Monitor requests from this IP closely"])

    def test_service_records_skip_risk_level_advice(self):
        record = make_record(risk_level=RiskLevel.CRITICAL, country="RU", abuse_score=30, report_count=3)
        self.assertEqual(rep.reputation_recommendations(record), ["Monitor for future activity"])

    def test_confidence_by_source(self):
        self.assertEqual(rep.reputation_confidence(make_record(report_count=200)), 70.0)
        self.assertEqual(rep.reputation_confidence(make_record(report_count=1000)), 100.0)
        local = make_record(report_count=100, source=rep.SOURCE_LOCAL)
        self.assertEqual(rep.reputation_confidence(local), 80.0)


class TestTTLCache(unittest.TestCase):
    def test_expiry(self):
        clock = FakeClock()
        cache = TTLCache(10, clock=clock)
        cache.put("a", 1)
        self.assertEqual(cache.get("a"), 1)
        clock.now += 11
        self.assertIsNone(cache.get("a"))
        self.assertEqual(len(cache), 0)


if __name__ == "__main__":
    unittest.main()
