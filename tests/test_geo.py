import io
import json
import urllib.error

from app.ipverify import geo
from app.ipverify.geo import GeoInfo, GeoLookupClient, geo_client_from_config, parse_ipwhois


def test_parse_ipwhois():
    info = parse_ipwhois(
        {
            "success": True,
            "city": "Lisbon",
            "region": "Lisbon",
            "country": "Portugal",
            "latitude": 38.72,
            "longitude": "-9.14",
            "connection": {"isp": "ExampleNet"},
        }
    )
    assert info == GeoInfo("Lisbon", "Lisbon", "Portugal", 38.72, -9.14, "ExampleNet")
    assert info.as_dict()["isp"] == "ExampleNet"

    assert parse_ipwhois({"success": False, "message": "reserved range"}) is None
    assert parse_ipwhois({"success": True, "latitude": "n/a"}).latitude is None


def test_lookup_success(monkeypatch):
    seen = {}

    def fake_urlopen(req, timeout=None):
        seen["url"] = req.full_url
        seen["timeout"] = timeout
        return io.BytesIO(json.dumps({"success": True, "city": "Porto"}).encode("utf-8"))

    monkeypatch.setattr(geo.urllib.request, "urlopen", fake_urlopen)
    info = GeoLookupClient(base_url="https://geo.example.com/", timeout_seconds=2).lookup("198.51.100.7")
    assert info.city == "Porto"
    assert seen == {"url": "https://geo.example.com/198.51.100.7", "timeout": 2}


def test_lookup_failure_means_no_enrichment(monkeypatch):
    def down(req, timeout=None):
        raise urllib.error.URLError("connection refused")

    monkeypatch.setattr(geo.urllib.request, "urlopen", down)
    assert GeoLookupClient().lookup("198.51.100.7") is None

    monkeypatch.setattr(geo.urllib.request, "urlopen", lambda req, timeout=None: io.BytesIO(b"<html>"))
    assert GeoLookupClient().lookup("198.51.100.7") is None


def test_client_from_config():
    assert geo_client_from_config({"GEO_LOOKUP_ENABLED": False}) is None
    client = geo_client_from_config({"GEO_LOOKUP_ENABLED": True, "GEO_LOOKUP_TIMEOUT": 3})
    assert client.base_url == "https://ipwho.is"
    assert client.timeout_seconds == 3
